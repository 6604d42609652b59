from wakti_realtime.services.notification_queue_service import process_notification_queue, queue_notification
from wakti_realtime.services.onesignal import OneSignalClient, get_push_client, send_push_to_users
from wakti_realtime.services.reminder_service import cancel_reminder, create_scheduled_reminder, get_pending_reminders

__all__ = [
    "process_notification_queue",
    "queue_notification",
    "OneSignalClient",
    "get_push_client",
    "send_push_to_users",
    "cancel_reminder",
    "create_scheduled_reminder",
    "get_pending_reminders",
]
