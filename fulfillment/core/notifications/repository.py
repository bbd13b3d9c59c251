# fulfillment/core/notifications/repository.py
"""
Репозиторий уведомлений, токенов устройств и web push подписок.
"""

from __future__ import annotations

import json
from typing import Any, Optional
from uuid import uuid4

from asyncpg import Record

from fulfillment.core.notifications.models import (
    DeviceToken,
    Notification,
    NotificationPayload,
    PushSubscription,
)
from fulfillment.infra.database import DatabaseManager


_NOTIFICATION_COLUMNS = "id, user_id, type, title, message, link, data, read, created_at"
_DEVICE_COLUMNS = "id, user_id, token, platform, is_active, created_at, updated_at"
_SUBSCRIPTION_COLUMNS = "id, user_id, endpoint, p256dh, auth, user_agent, is_active, created_at, updated_at"


def _decode_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


class NotificationRepository:
    """Репозиторий уведомлений. Ошибки БД пробрасываются вызывающему."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # =========================================================================
    # IN-APP УВЕДОМЛЕНИЯ
    # =========================================================================

    async def create(self, user_id: str, payload: NotificationPayload) -> Notification:
        row = await self._db.fetchrow(
            f"""
            INSERT INTO notifications (id, user_id, type, title, message, link, data)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            RETURNING {_NOTIFICATION_COLUMNS}
            """,
            str(uuid4()),
            user_id,
            payload.type.value,
            payload.title,
            payload.body,
            payload.link,
            json.dumps(payload.data, ensure_ascii=False, default=str),
        )
        return self._row_to_notification(row)

    async def get_by_id(self, notification_id: str) -> Optional[Notification]:
        row = await self._db.fetchrow(
            f"SELECT {_NOTIFICATION_COLUMNS} FROM notifications WHERE id = $1",
            notification_id,
        )
        return self._row_to_notification(row) if row else None

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        rows = await self._db.fetch(
            f"""
            SELECT {_NOTIFICATION_COLUMNS}
            FROM notifications
            WHERE user_id = $1 AND ($2::boolean IS FALSE OR read = FALSE)
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            user_id,
            unread_only,
            limit,
            offset,
        )
        return [self._row_to_notification(row) for row in rows]

    async def mark_read(self, notification_id: str) -> Optional[Notification]:
        row = await self._db.fetchrow(
            f"""
            UPDATE notifications SET read = TRUE
            WHERE id = $1
            RETURNING {_NOTIFICATION_COLUMNS}
            """,
            notification_id,
        )
        return self._row_to_notification(row) if row else None

    # =========================================================================
    # МОБИЛЬНЫЕ ТОКЕНЫ
    # =========================================================================

    async def get_active_device_tokens(self, user_id: str) -> list[DeviceToken]:
        rows = await self._db.fetch(
            f"SELECT {_DEVICE_COLUMNS} FROM device_tokens WHERE user_id = $1 AND is_active = TRUE",
            user_id,
        )
        return [DeviceToken(**dict(row)) for row in rows]

    async def upsert_device_token(self, user_id: str, token: str, platform: str) -> DeviceToken:
        """Регистрирует токен; повторная регистрация переносит его на пользователя и активирует."""
        row = await self._db.fetchrow(
            f"""
            INSERT INTO device_tokens (id, user_id, token, platform)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (token) DO UPDATE
                SET user_id = EXCLUDED.user_id,
                    platform = EXCLUDED.platform,
                    is_active = TRUE,
                    updated_at = NOW()
            RETURNING {_DEVICE_COLUMNS}
            """,
            str(uuid4()),
            user_id,
            token,
            platform,
        )
        return DeviceToken(**dict(row))

    async def deactivate_device_token(self, user_id: str, token: str) -> bool:
        result = await self._db.execute(
            """
            UPDATE device_tokens SET is_active = FALSE, updated_at = NOW()
            WHERE user_id = $1 AND token = $2
            """,
            user_id,
            token,
        )
        return result != "UPDATE 0"

    async def deactivate_device_tokens(self, tokens: list[str]) -> int:
        result = await self._db.execute(
            """
            UPDATE device_tokens SET is_active = FALSE, updated_at = NOW()
            WHERE token = ANY($1::text[]) AND is_active = TRUE
            """,
            tokens,
        )
        return int(result.split()[-1])

    # =========================================================================
    # WEB PUSH ПОДПИСКИ
    # =========================================================================

    async def get_active_web_subscriptions(self, user_id: str) -> list[PushSubscription]:
        rows = await self._db.fetch(
            f"SELECT {_SUBSCRIPTION_COLUMNS} FROM push_subscriptions WHERE user_id = $1 AND is_active = TRUE",
            user_id,
        )
        return [PushSubscription(**dict(row)) for row in rows]

    async def upsert_web_subscription(
        self,
        user_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        row = await self._db.fetchrow(
            f"""
            INSERT INTO push_subscriptions (id, user_id, endpoint, p256dh, auth, user_agent)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (endpoint) DO UPDATE
                SET user_id = EXCLUDED.user_id,
                    p256dh = EXCLUDED.p256dh,
                    auth = EXCLUDED.auth,
                    user_agent = EXCLUDED.user_agent,
                    is_active = TRUE,
                    updated_at = NOW()
            RETURNING {_SUBSCRIPTION_COLUMNS}
            """,
            str(uuid4()),
            user_id,
            endpoint,
            p256dh,
            auth,
            user_agent,
        )
        return PushSubscription(**dict(row))

    async def deactivate_web_subscription(self, user_id: str, endpoint: str) -> bool:
        result = await self._db.execute(
            """
            UPDATE push_subscriptions SET is_active = FALSE, updated_at = NOW()
            WHERE user_id = $1 AND endpoint = $2
            """,
            user_id,
            endpoint,
        )
        return result != "UPDATE 0"

    async def deactivate_web_subscriptions(self, endpoints: list[str]) -> int:
        result = await self._db.execute(
            """
            UPDATE push_subscriptions SET is_active = FALSE, updated_at = NOW()
            WHERE endpoint = ANY($1::text[]) AND is_active = TRUE
            """,
            endpoints,
        )
        return int(result.split()[-1])

    @staticmethod
    def _row_to_notification(row: Record) -> Notification:
        data = dict(row)
        data["data"] = _decode_json(data.get("data"))
        return Notification(**data)
