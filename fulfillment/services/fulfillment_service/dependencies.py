# fulfillment/services/fulfillment_service/dependencies.py
"""
Dependency Injection для Fulfillment Service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Optional

import httpx
from fastapi import Header

from fulfillment.common.constants import UserRole
from fulfillment.common.exceptions import UnauthenticatedError
from fulfillment.shared.models.common import Actor

if TYPE_CHECKING:
    from fulfillment.core.assignment.service import AssignmentService
    from fulfillment.core.notifications.service import NotificationService
    from fulfillment.core.orders.repository import SubjectRepository
    from fulfillment.core.orders.service import StatusService
    from fulfillment.core.payments.service import PaymentReconciliationService
    from fulfillment.core.tracking.service import TrackingService
    from fulfillment.infra.database import DatabaseManager
    from fulfillment.infra.event_bus import EventBus
    from fulfillment.infra.redis_client import RedisClient


# Синглтоны для инфраструктуры
_db: "DatabaseManager | None" = None
_redis: "RedisClient | None" = None
_event_bus: "EventBus | None" = None
_http_client: "httpx.AsyncClient | None" = None

# Синглтоны для сервисов
_notification_service: "NotificationService | None" = None
_subjects: "SubjectRepository | None" = None
_status_service: "StatusService | None" = None
_tracking_service: "TrackingService | None" = None
_assignment_service: "AssignmentService | None" = None
_payment_service: "PaymentReconciliationService | None" = None

# Роли, которые принимаются из заголовка (SYSTEM только внутренняя)
HEADER_ROLES = frozenset(role for role in UserRole if role != UserRole.SYSTEM)


async def init_dependencies(
    db: "DatabaseManager",
    redis: "RedisClient",
    event_bus: "EventBus",
    http_client: httpx.AsyncClient,
) -> None:
    """Инициализировать зависимости при старте приложения."""
    global _db, _redis, _event_bus, _http_client
    _db = db
    _redis = redis
    _event_bus = event_bus
    _http_client = http_client


def get_db() -> "DatabaseManager":
    if _db is None:
        raise RuntimeError("База данных не инициализирована. Вызовите init_dependencies()")
    return _db


def get_redis() -> "RedisClient":
    if _redis is None:
        raise RuntimeError("Redis не инициализирован. Вызовите init_dependencies()")
    return _redis


def get_event_bus() -> "EventBus":
    if _event_bus is None:
        raise RuntimeError("EventBus не инициализирован. Вызовите init_dependencies()")
    return _event_bus


def get_http_client() -> httpx.AsyncClient:
    if _http_client is None:
        raise RuntimeError("HTTP клиент не инициализирован. Вызовите init_dependencies()")
    return _http_client


# =============================================================================
# АКТОР
# =============================================================================

async def get_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
) -> Actor:
    """Идентичность, проверенная внешним шлюзом и переданная заголовками."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthenticatedError("Missing X-User-Id header")
    if not x_user_role:
        raise UnauthenticatedError("Missing X-User-Role header")

    try:
        role = UserRole(x_user_role.strip().upper())
    except ValueError:
        raise UnauthenticatedError(f"Unknown role '{x_user_role}'") from None
    if role not in HEADER_ROLES:
        raise UnauthenticatedError(f"Role '{x_user_role}' is not accepted from clients")

    return Actor(user_id=x_user_id.strip(), role=role)


# =============================================================================
# СЕРВИСЫ
# =============================================================================

def get_notification_service() -> "NotificationService":
    global _notification_service

    if _notification_service is None:
        from fulfillment.config import settings
        from fulfillment.core.notifications.channels import ExpoPushChannel, WebPushChannel
        from fulfillment.core.notifications.repository import NotificationRepository
        from fulfillment.core.notifications.service import NotificationService

        push = settings.push
        _notification_service = NotificationService(
            repository=NotificationRepository(get_db()),
            mobile_channel=ExpoPushChannel(
                http_client=get_http_client(),
                url=push.EXPO_PUSH_URL,
                access_token=push.EXPO_ACCESS_TOKEN,
                batch_size=push.EXPO_BATCH_SIZE,
                ttl=push.PUSH_TTL,
                timeout=push.PUSH_TIMEOUT,
            ),
            web_channel=WebPushChannel(
                vapid_private_key=push.VAPID_PRIVATE_KEY,
                vapid_subject=push.VAPID_SUBJECT,
                ttl=push.PUSH_TTL,
                timeout=push.PUSH_TIMEOUT,
                icon=push.NOTIFICATION_ICON,
            ),
        )

    return _notification_service


def _get_subjects() -> "SubjectRepository":
    global _subjects

    if _subjects is None:
        from fulfillment.core.orders.repository import BookingRepository, OrderRepository, SubjectRepository
        _subjects = SubjectRepository(OrderRepository(get_db()), BookingRepository(get_db()))

    return _subjects


def get_status_service() -> "StatusService":
    global _status_service

    if _status_service is None:
        from fulfillment.core.orders.repository import BookingRepository, OrderRepository
        from fulfillment.core.orders.service import StatusService
        _status_service = StatusService(
            db=get_db(),
            orders=OrderRepository(get_db()),
            bookings=BookingRepository(get_db()),
            notifications=get_notification_service(),
            event_bus=get_event_bus(),
        )

    return _status_service


def get_tracking_service() -> "TrackingService":
    global _tracking_service

    if _tracking_service is None:
        from fulfillment.config import settings
        from fulfillment.core.assignment.repository import ProviderRepository
        from fulfillment.core.tracking.repository import TrackingRepository
        from fulfillment.core.tracking.service import TrackingService
        _tracking_service = TrackingService(
            db=get_db(),
            repository=TrackingRepository(get_db()),
            subjects=_get_subjects(),
            providers=ProviderRepository(get_db()),
            notifications=get_notification_service(),
            redis=get_redis(),
            event_bus=get_event_bus(),
            cache_ttl=settings.redis_ttl.TRACKING_TTL,
            history_page_size=settings.tracking.HISTORY_PAGE_SIZE,
            history_max_page_size=settings.tracking.HISTORY_MAX_PAGE_SIZE,
        )

    return _tracking_service


def get_assignment_service() -> "AssignmentService":
    global _assignment_service

    if _assignment_service is None:
        from fulfillment.core.assignment.repository import ProviderRepository
        from fulfillment.core.assignment.service import AssignmentService
        from fulfillment.core.tracking.repository import TrackingRepository
        _assignment_service = AssignmentService(
            db=get_db(),
            subjects=_get_subjects(),
            providers=ProviderRepository(get_db()),
            tracking_repository=TrackingRepository(get_db()),
            tracking=get_tracking_service(),
            notifications=get_notification_service(),
            event_bus=get_event_bus(),
        )

    return _assignment_service


def get_payment_service() -> "PaymentReconciliationService":
    global _payment_service

    if _payment_service is None:
        from fulfillment.config import settings
        from fulfillment.core.orders.repository import OrderRepository
        from fulfillment.core.payments.gateway import PaystackGateway
        from fulfillment.core.payments.repository import PaymentRepository
        from fulfillment.core.payments.service import PaymentReconciliationService
        _payment_service = PaymentReconciliationService(
            db=get_db(),
            payments=PaymentRepository(get_db()),
            orders=OrderRepository(get_db()),
            status_service=get_status_service(),
            notifications=get_notification_service(),
            event_bus=get_event_bus(),
            gateway=PaystackGateway(
                http_client=get_http_client(),
                secret_key=settings.payments.PAYSTACK_SECRET_KEY,
                base_url=settings.payments.PAYSTACK_BASE_URL,
                timeout=settings.payments.GATEWAY_TIMEOUT,
            ),
        )

    return _payment_service


async def cleanup_dependencies() -> None:
    """Очистить ресурсы при остановке приложения."""
    global _notification_service, _subjects, _status_service
    global _tracking_service, _assignment_service, _payment_service
    _notification_service = None
    _subjects = None
    _status_service = None
    _tracking_service = None
    _assignment_service = None
    _payment_service = None
