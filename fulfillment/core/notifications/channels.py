# fulfillment/core/notifications/channels.py
"""
Push-каналы доставки: мобильный (Expo push API) и браузерный (Web Push / VAPID).

Канал только отправляет и сообщает результат в DeliveryReport.
Деактивацией «мёртвых» адресов занимается NotificationService.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Iterator, Sequence

import httpx
from pywebpush import WebPushException, webpush

from fulfillment.common.logger import log_warning
from fulfillment.core.notifications.models import (
    DeliveryReport,
    DeviceToken,
    PushMessage,
    PushSubscription,
)

# Коды Web Push, после которых подписка больше не действительна
WEB_PUSH_GONE_STATUSES = frozenset({404, 410})
EXPO_GONE_ERROR = "DeviceNotRegistered"


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def is_expo_push_token(token: str) -> bool:
    """Проверяет формат ExponentPushToken[...] / ExpoPushToken[...]."""
    return (token.startswith("ExponentPushToken[") or token.startswith("ExpoPushToken[")) and token.endswith("]")


class PushChannel(ABC):
    """Канал доставки push-уведомлений."""

    name: str = "push"

    @abstractmethod
    async def send(self, targets: Sequence[Any], message: PushMessage) -> DeliveryReport:
        """Отправляет сообщение на все адреса канала."""


class ExpoPushChannel(PushChannel):
    """Мобильные push через Expo push API (батчи до 100 сообщений)."""

    name = "mobile"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        access_token: str = "",
        batch_size: int = 100,
        ttl: int = 86400,
        timeout: float = 10.0,
    ) -> None:
        self._client = http_client
        self._url = url
        self._access_token = access_token
        self._batch_size = batch_size
        self._ttl = ttl
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def _build(self, token: str, message: PushMessage) -> dict[str, Any]:
        return {
            "to": token,
            "title": message.title,
            "body": message.body,
            "data": message.data,
            "sound": "default",
            "priority": "high",
            "badge": 1,
            "ttl": self._ttl,
        }

    async def send(self, targets: Sequence[DeviceToken], message: PushMessage) -> DeliveryReport:
        report = DeliveryReport(channel=self.name)

        valid: list[DeviceToken] = []
        for device in targets:
            if is_expo_push_token(device.token):
                valid.append(device)
            else:
                report.failed += 1
                await log_warning(
                    "Пропущен токен не в формате Expo",
                    extra={"device_token_id": device.id, "user_id": device.user_id},
                )

        for batch in _chunks(valid, self._batch_size):
            try:
                response = await self._client.post(
                    self._url,
                    json=[self._build(device.token, message) for device in batch],
                    headers=self._headers(),
                    timeout=self._timeout,
                )
                response.raise_for_status()
                tickets = response.json().get("data", [])
            except (httpx.HTTPError, ValueError) as e:
                # Транзиентная ошибка: токены не трогаем, повтор при следующем уведомлении
                report.failed += len(batch)
                await log_warning(
                    f"Ошибка отправки батча Expo push: {e}",
                    extra={"notification_id": message.notification_id, "batch_size": len(batch)},
                )
                continue

            for device, ticket in zip(batch, tickets):
                if ticket.get("status") == "ok":
                    report.sent += 1
                elif (ticket.get("details") or {}).get("error") == EXPO_GONE_ERROR:
                    report.gone.append(device.token)
                else:
                    report.failed += 1

        return report


class WebPushChannel(PushChannel):
    """Браузерные push через pywebpush с VAPID."""

    name = "web"

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        ttl: int = 86400,
        timeout: float = 10.0,
        icon: str = "/icon-192x192.png",
    ) -> None:
        self._vapid_private_key = vapid_private_key
        self._vapid_subject = vapid_subject
        self._ttl = ttl
        self._timeout = timeout
        self._icon = icon

    @property
    def enabled(self) -> bool:
        return bool(self._vapid_private_key)

    def _payload(self, message: PushMessage) -> str:
        return json.dumps(
            {
                "title": message.title,
                "body": message.body,
                "icon": self._icon,
                "url": message.link or "/",
                "tag": f"edmich-{message.notification_id}",
                "data": message.data,
            },
            ensure_ascii=False,
            default=str,
        )

    def _send_sync(self, subscription: PushSubscription, payload: str) -> None:
        webpush(
            subscription_info=subscription.subscription_info(),
            data=payload,
            vapid_private_key=self._vapid_private_key,
            # pywebpush дописывает aud/exp в переданный словарь, поэтому он новый на каждый вызов
            vapid_claims={"sub": self._vapid_subject},
            ttl=self._ttl,
            timeout=self._timeout,
            headers={"Urgency": "high"},
        )

    async def send(self, targets: Sequence[PushSubscription], message: PushMessage) -> DeliveryReport:
        report = DeliveryReport(channel=self.name)
        if not targets:
            return report
        if not self.enabled:
            await log_warning("VAPID ключи не настроены, web push пропущен")
            return report

        payload = self._payload(message)
        results = await asyncio.gather(
            *(asyncio.to_thread(self._send_sync, subscription, payload) for subscription in targets),
            return_exceptions=True,
        )

        for subscription, result in zip(targets, results):
            if not isinstance(result, BaseException):
                report.sent += 1
                continue

            status_code = None
            if isinstance(result, WebPushException) and result.response is not None:
                status_code = result.response.status_code

            if status_code in WEB_PUSH_GONE_STATUSES:
                report.gone.append(subscription.endpoint)
            else:
                report.failed += 1
                await log_warning(
                    f"Ошибка отправки web push: {status_code or result}",
                    extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
                )

        return report
