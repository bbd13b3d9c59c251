# fulfillment/core/notifications/service.py
"""
Сервис уведомлений: in-app запись + доставка по двум push-каналам.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from fulfillment.common.constants import DevicePlatform, TypeMsg
from fulfillment.common.exceptions import ForbiddenError, NotFoundError, UnprocessableError
from fulfillment.common.logger import log_error, log_info, log_warning
from fulfillment.core.notifications.channels import PushChannel, is_expo_push_token
from fulfillment.core.notifications.models import (
    DeviceToken,
    Notification,
    NotificationPayload,
    OutgoingNotification,
    PushMessage,
    PushSubscription,
)
from fulfillment.core.notifications.repository import NotificationRepository
from fulfillment.shared.models.common import Actor


class NotificationService:
    """
    Fan-out уведомлений.

    Контракт notify():
    - запись в notifications обязательна, её ошибка пробрасывается;
    - мобильный и web каналы работают параллельно и независимо,
      их ошибки логируются и никогда не пробрасываются;
    - адреса, которые провайдер пометил удалёнными, деактивируются.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        mobile_channel: PushChannel,
        web_channel: PushChannel,
    ) -> None:
        self._repository = repository
        self._mobile = mobile_channel
        self._web = web_channel

    async def notify(self, user_id: str, payload: NotificationPayload) -> Notification:
        """
        Создаёт in-app уведомление и отправляет push.

        Raises:
            Любая ошибка записи уведомления в БД.
        """
        notification = await self._repository.create(user_id, payload)
        message = PushMessage.from_notification(notification)

        await asyncio.gather(
            self._deliver_mobile(user_id, message),
            self._deliver_web(user_id, message),
        )
        return notification

    async def broadcast(self, messages: Sequence[OutgoingNotification]) -> list[Notification]:
        """
        Отправляет несколько уведомлений параллельно.

        Используется как побочный эффект после коммита: ошибки записи
        логируются, а не пробрасываются, так как изменение уже зафиксировано.
        """
        if not messages:
            return []

        results = await asyncio.gather(
            *(self.notify(m.user_id, m.payload) for m in messages),
            return_exceptions=True,
        )

        delivered: list[Notification] = []
        for outgoing, result in zip(messages, results):
            if isinstance(result, Notification):
                delivered.append(result)
            else:
                await log_error(
                    f"Не удалось создать уведомление: {result}",
                    extra={"user_id": outgoing.user_id, "title": outgoing.payload.title},
                )
        return delivered

    # =========================================================================
    # ДОСТАВКА ПО КАНАЛАМ
    # =========================================================================

    async def _deliver_mobile(self, user_id: str, message: PushMessage) -> None:
        try:
            tokens = await self._repository.get_active_device_tokens(user_id)
            if not tokens:
                return
            report = await self._mobile.send(tokens, message)
            if report.gone:
                count = await self._repository.deactivate_device_tokens(report.gone)
                await log_info(
                    f"Деактивировано токенов устройств: {count}",
                    type_msg=TypeMsg.DEBUG,
                    extra={"user_id": user_id},
                )
        except Exception as e:
            await log_warning(
                f"Мобильный push не доставлен: {e}",
                extra={"user_id": user_id, "notification_id": message.notification_id},
            )

    async def _deliver_web(self, user_id: str, message: PushMessage) -> None:
        try:
            subscriptions = await self._repository.get_active_web_subscriptions(user_id)
            if not subscriptions:
                return
            report = await self._web.send(subscriptions, message)
            if report.gone:
                count = await self._repository.deactivate_web_subscriptions(report.gone)
                await log_info(
                    f"Деактивировано web push подписок: {count}",
                    type_msg=TypeMsg.DEBUG,
                    extra={"user_id": user_id},
                )
        except Exception as e:
            await log_warning(
                f"Web push не доставлен: {e}",
                extra={"user_id": user_id, "notification_id": message.notification_id},
            )

    # =========================================================================
    # ВХОДЯЩИЕ (INBOX)
    # =========================================================================

    async def list_notifications(
        self,
        actor: Actor,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        return await self._repository.list_for_user(actor.user_id, unread_only, limit, offset)

    async def mark_read(self, notification_id: str, actor: Actor) -> Notification:
        """Помечает уведомление прочитанным. Только для владельца."""
        notification = await self._repository.get_by_id(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.user_id != actor.user_id:
            raise ForbiddenError("Notification belongs to another user")
        if notification.read:
            return notification

        updated = await self._repository.mark_read(notification_id)
        return updated or notification

    # =========================================================================
    # ПОДПИСКИ
    # =========================================================================

    async def register_device(self, actor: Actor, token: str, platform: DevicePlatform) -> DeviceToken:
        if not is_expo_push_token(token):
            raise UnprocessableError("Invalid Expo push token format")
        device = await self._repository.upsert_device_token(actor.user_id, token, platform.value)
        await log_info(
            "Зарегистрирован токен устройства",
            extra={"user_id": actor.user_id, "platform": platform.value},
        )
        return device

    async def unregister_device(self, actor: Actor, token: str) -> None:
        if not await self._repository.deactivate_device_token(actor.user_id, token):
            raise NotFoundError("Device token not found")

    async def subscribe_web(
        self,
        actor: Actor,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        subscription = await self._repository.upsert_web_subscription(
            actor.user_id, endpoint, p256dh, auth, user_agent
        )
        await log_info("Сохранена web push подписка", extra={"user_id": actor.user_id})
        return subscription

    async def unsubscribe_web(self, actor: Actor, endpoint: str) -> None:
        if not await self._repository.deactivate_web_subscription(actor.user_id, endpoint):
            raise NotFoundError("Push subscription not found")
