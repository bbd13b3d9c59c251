# fulfillment/core/notifications/models.py
"""
Модели уведомлений и push-подписок.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from fulfillment.common.constants import DevicePlatform, NotificationType


class NotificationPayload(BaseModel):
    """Содержимое уведомления, передаваемое в notify()."""

    type: NotificationType
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    link: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class Notification(BaseModel):
    """In-app уведомление (источник истины «пользователь уведомлён»)."""

    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class DeviceToken(BaseModel):
    """Expo push токен мобильного устройства."""

    id: str
    user_id: str
    token: str
    platform: DevicePlatform
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PushSubscription(BaseModel):
    """Web Push подписка браузера."""

    id: str
    user_id: str
    endpoint: str
    p256dh: str
    auth: str
    user_agent: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def subscription_info(self) -> dict[str, Any]:
        """Формат subscription_info для pywebpush."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass
class PushMessage:
    """Сообщение для push-каналов, собранное из сохранённого уведомления."""

    title: str
    body: str
    notification_id: str
    link: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_notification(cls, notification: Notification) -> "PushMessage":
        data = {**notification.data, "notificationId": notification.id, "type": notification.type.value}
        if notification.link:
            data["url"] = notification.link
        return cls(
            title=notification.title,
            body=notification.message,
            notification_id=notification.id,
            link=notification.link,
            data=data,
        )


@dataclass
class DeliveryReport:
    """Итог отправки по одному каналу."""

    channel: str
    sent: int = 0
    failed: int = 0
    # Адреса (токены / endpoint'ы), которые провайдер считает удалёнными
    gone: list[str] = field(default_factory=list)


@dataclass
class OutgoingNotification:
    """Адресат и содержимое для broadcast()."""

    user_id: str
    payload: NotificationPayload
