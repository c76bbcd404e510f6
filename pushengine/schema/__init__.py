"""Schema package exports."""

from .notification_jobs import NotificationJob
from .notifications import DeliveryRecord
from .push_tokens import PushToken
from .users import StudentProfile, User

__all__ = ["DeliveryRecord", "NotificationJob", "PushToken", "StudentProfile", "User"]
