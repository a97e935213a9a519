"""Normalization of raw notification delivery requests.

Business events hand over loosely typed mappings (JSON bodies, ORM snapshots).
:func:`normalize_payload` turns them into a :class:`NotificationPayload` or
rejects them; nothing downstream sees an unnormalized payload.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping


MAX_USER_ID_LENGTH = 128
MAX_TITLE_LENGTH = 150
MAX_MESSAGE_LENGTH = 2000
MAX_TYPE_LENGTH = 32
MAX_RELATED_ID_LENGTH = 128
MAX_SENDER_ID_LENGTH = 128


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    user_id: str
    title: str
    message: str
    type: str
    related_id: str | None = None
    sender_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_text(value: Any, max_length: int) -> str:
    """Trim ``value`` and truncate it to ``max_length``; non-strings become ``""``."""
    if not isinstance(value, str):
        return ""
    trimmed = value.strip()
    if not trimmed:
        return ""
    return trimmed if len(trimmed) <= max_length else trimmed[:max_length]


def _field(raw: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in raw:
        return raw[snake]
    return raw.get(camel)


def normalize_payload(raw: Mapping[str, Any] | NotificationPayload | None) -> NotificationPayload | None:
    """Return the canonical payload, or ``None`` when a required field is empty.

    Required fields are ``user_id``, ``title``, ``message`` and ``type``.
    Over-long values are truncated rather than rejected. Keys may be given in
    snake_case or camelCase (``userId``, ``relatedId``, ``senderId``).
    """
    if raw is None:
        return None
    if isinstance(raw, NotificationPayload):
        raw = raw.as_dict()
    if not isinstance(raw, Mapping):
        return None

    user_id = normalize_text(_field(raw, "user_id", "userId"), MAX_USER_ID_LENGTH)
    title = normalize_text(raw.get("title"), MAX_TITLE_LENGTH)
    message = normalize_text(raw.get("message"), MAX_MESSAGE_LENGTH)
    notification_type = normalize_text(raw.get("type"), MAX_TYPE_LENGTH)
    related_id = normalize_text(_field(raw, "related_id", "relatedId"), MAX_RELATED_ID_LENGTH) or None
    sender_id = normalize_text(_field(raw, "sender_id", "senderId"), MAX_SENDER_ID_LENGTH) or None

    if not user_id or not title or not message or not notification_type:
        return None
    return NotificationPayload(
        user_id=user_id,
        title=title,
        message=message,
        type=notification_type,
        related_id=related_id,
        sender_id=sender_id,
    )
