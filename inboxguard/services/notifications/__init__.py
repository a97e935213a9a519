from inboxguard.services.notifications.delivery import (
    DeliverNotificationResult,
    deliver_in_app_notification,
    enqueue_notification_retry,
)
from inboxguard.services.notifications.health import (
    HealthThresholds,
    NotificationDeliveryHealth,
    NotificationDeliveryStats,
    evaluate_delivery_health,
    get_notification_delivery_health,
    get_notification_delivery_stats,
)
from inboxguard.services.notifications.metrics import record_delivery_metric
from inboxguard.services.notifications.payload import NotificationPayload, normalize_payload
from inboxguard.services.notifications.retry_queue import (
    ProcessNotificationRetryResult,
    process_notification_retry_queue,
)

__all__ = [
    "DeliverNotificationResult",
    "HealthThresholds",
    "NotificationDeliveryHealth",
    "NotificationDeliveryStats",
    "NotificationPayload",
    "ProcessNotificationRetryResult",
    "deliver_in_app_notification",
    "enqueue_notification_retry",
    "evaluate_delivery_health",
    "get_notification_delivery_health",
    "get_notification_delivery_stats",
    "normalize_payload",
    "process_notification_retry_queue",
    "record_delivery_metric",
]
