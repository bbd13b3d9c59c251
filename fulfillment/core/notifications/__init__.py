# fulfillment/core/notifications/__init__.py
"""
Модуль уведомлений: in-app + мобильный и web push.
"""

from fulfillment.core.notifications.models import Notification, NotificationPayload, OutgoingNotification
from fulfillment.core.notifications.service import NotificationService

__all__ = ["Notification", "NotificationPayload", "OutgoingNotification", "NotificationService"]
