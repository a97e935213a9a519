from __future__ import annotations


class InboxGuardError(Exception):
    """Base error for inboxguard."""


class StoreTimeoutError(InboxGuardError):
    """A store operation exceeded its configured timeout."""
