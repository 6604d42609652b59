from wakti_realtime.models.contact import Contact
from wakti_realtime.models.message import Message
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.models.notification_queue import NotificationQueue
from wakti_realtime.models.profile import Profile
from wakti_realtime.models.tr_item import TRReminder, TRTask
from wakti_realtime.models.user_document import UserDocument

__all__ = [
    "Contact",
    "Message",
    "NotificationHistory",
    "NotificationQueue",
    "Profile",
    "TRReminder",
    "TRTask",
    "UserDocument",
]
