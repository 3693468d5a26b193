"""Tables owned by the hosted platform that the server-side functions touch."""
from liftr_chat.infrastructure.db.models.notification import NotificationModel
from liftr_chat.infrastructure.db.models.profile import ProfileModel

__all__ = [
    "NotificationModel",
    "ProfileModel",
]
