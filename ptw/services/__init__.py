"""Services for notification delivery and scheduled reminders."""

from ptw.services.notifications import NotificationService
from ptw.services.reminders import send_expiry_reminders

__all__ = ["NotificationService", "send_expiry_reminders"]
