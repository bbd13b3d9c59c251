# tests/conftest.py
"""
Общие фикстуры и in-memory подделки репозиториев для тестов.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")

from fulfillment.common.constants import (
    BookingStatus,
    BookingType,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderType,
    SubjectType,
    TrackingStatus,
    UserRole,
)
from fulfillment.core.assignment.models import ProviderProfile
from fulfillment.core.notifications.models import Notification
from fulfillment.core.orders.models import Booking, Order, Subject
from fulfillment.core.payments.models import Payment
from fulfillment.core.tracking.models import TrackingEvent, TrackingRecord
from fulfillment.shared.models.common import Actor


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_conn() -> AsyncMock:
    """Мок соединения внутри транзакции."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.fetchval = AsyncMock(return_value=None)
    return conn


@pytest.fixture
def mock_db(mock_conn: AsyncMock) -> AsyncMock:
    """Мок менеджера базы данных; transaction() отдаёт mock_conn."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)

    @asynccontextmanager
    async def transaction():
        yield mock_conn

    db.transaction = transaction
    db.acquire = transaction
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def mock_notifications() -> AsyncMock:
    """Мок NotificationService: broadcast никогда не падает."""
    notifications = AsyncMock()
    notifications.broadcast = AsyncMock(return_value=[])
    return notifications


# =============================================================================
# АКТОРЫ
# =============================================================================

@pytest.fixture
def buyer() -> Actor:
    return Actor(user_id="buyer-1", role=UserRole.BUYER)


@pytest.fixture
def supplier() -> Actor:
    return Actor(user_id="supplier-1", role=UserRole.SUPPLIER)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=UserRole.ADMIN)


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def make_order():
    """Фабрика заказов с разумными значениями по умолчанию."""
    def _make(**overrides: Any) -> Order:
        data: dict[str, Any] = {
            "id": "o1",
            "buyer_id": "buyer-1",
            "tracking_id": "EDM-0001",
            "status": OrderStatus.PENDING,
            "payment_status": OrderPaymentStatus.PENDING,
            "payment_method": PaymentMethod.PAYSTACK,
            "total_amount": Decimal("15000.00"),
            "supplier_ids": ["supplier-1"],
            "created_at": _now(),
        }
        data.update(overrides)
        return Order(**data)
    return _make


@pytest.fixture
def make_booking():
    def _make(**overrides: Any) -> Booking:
        data: dict[str, Any] = {
            "id": "b1",
            "booking_type": BookingType.MECHANIC,
            "requester_id": "buyer-1",
            "provider_id": "mechanic-1",
            "status": BookingStatus.PENDING,
        }
        data.update(overrides)
        return Booking(**data)
    return _make


@pytest.fixture
def make_profile():
    def _make(**overrides: Any) -> ProviderProfile:
        data: dict[str, Any] = {
            "user_id": "p2",
            "provider_type": ProviderType.LOGISTICS,
            "display_name": "Swift Logistics",
            "phone": "+2348000000000",
            "verified": True,
            "approved": True,
        }
        data.update(overrides)
        return ProviderProfile(**data)
    return _make


@pytest.fixture
def make_notification():
    def _make(user_id: str = "buyer-1", **overrides: Any) -> Notification:
        data: dict[str, Any] = {
            "id": str(uuid4()),
            "user_id": user_id,
            "type": "ORDER",
            "title": "Order Update",
            "message": "Your order has been updated",
            "created_at": _now(),
        }
        data.update(overrides)
        return Notification(**data)
    return _make


# =============================================================================
# IN-MEMORY ПОДДЕЛКИ ДЛЯ СКВОЗНЫХ СЦЕНАРИЕВ
# =============================================================================

class FakeDatabase:
    """transaction() отдаёт фиктивное соединение; данные живут в репозиториях."""

    def __init__(self) -> None:
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield object()


class InMemoryOrders:
    """Повторяет контракт OrderRepository: CAS по статусу, mark_paid по payment_status."""

    def __init__(self, *orders: Order) -> None:
        self.orders: dict[str, Order] = {order.id: order for order in orders}
        self.settled: list[tuple[Optional[str], Optional[str]]] = []

    async def get_by_id(self, order_id: str, conn: Any = None, for_update: bool = False) -> Optional[Order]:
        return self.orders.get(order_id)

    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        return next((o for o in self.orders.values() if o.tracking_id == tracking_id), None)

    async def compare_and_set_status(self, conn: Any, order: Order, new_status: OrderStatus) -> Optional[Order]:
        stored = self.orders.get(order.id)
        if stored is None or stored.status != order.status:
            return None
        updated = stored.model_copy(update={"status": new_status, "updated_at": _now()})
        self.orders[order.id] = updated
        return updated

    async def mark_paid(self, conn: Any, order_id: str) -> Optional[datetime]:
        stored = self.orders[order_id]
        if stored.payment_status != OrderPaymentStatus.PENDING:
            return None
        paid_at = _now()
        self.orders[order_id] = stored.model_copy(
            update={"payment_status": OrderPaymentStatus.PAID, "paid_at": paid_at}
        )
        return paid_at

    async def settle_trade_ins(self, conn: Any, trade_in_id: Optional[str], trade_in_offer_id: Optional[str]) -> None:
        if trade_in_id or trade_in_offer_id:
            self.settled.append((trade_in_id, trade_in_offer_id))


class InMemoryBookings:
    def __init__(self, *bookings: Booking) -> None:
        self.bookings: dict[str, Booking] = {booking.id: booking for booking in bookings}

    async def get_by_id(self, booking_id: str, conn: Any = None, for_update: bool = False) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def compare_and_set_status(self, conn: Any, booking: Booking, new_status: BookingStatus) -> Optional[Booking]:
        stored = self.bookings.get(booking.id)
        if stored is None or stored.status != booking.status:
            return None
        updated = stored.model_copy(update={"status": new_status})
        self.bookings[booking.id] = updated
        return updated

    async def set_provider(self, conn: Any, booking_id: str, provider_id: str) -> None:
        self.bookings[booking_id] = self.bookings[booking_id].model_copy(update={"provider_id": provider_id})


class InMemorySubjects:
    """Повторяет SubjectRepository поверх in-memory заказов и бронирований."""

    def __init__(self, orders: InMemoryOrders, bookings: InMemoryBookings) -> None:
        self._orders = orders
        self._bookings = bookings

    async def get(self, subject_id: str, conn: Any = None) -> Optional[Subject]:
        order = await self._orders.get_by_id(subject_id)
        if order is not None:
            return Subject.from_order(order)
        booking = await self._bookings.get_by_id(subject_id)
        return Subject.from_booking(booking) if booking is not None else None

    async def get_by_tracking_code(self, tracking_code: str) -> Optional[Subject]:
        order = await self._orders.get_by_tracking_id(tracking_code)
        return Subject.from_order(order) if order is not None else None

    async def set_booking_provider(self, conn: Any, booking_id: str, provider_id: str) -> None:
        await self._bookings.set_provider(conn, booking_id, provider_id)


class InMemoryPayments:
    """Повторяет PaymentRepository: finalize только из pending."""

    def __init__(self, *payments: Payment) -> None:
        self.payments: dict[str, Payment] = {p.gateway_reference: p for p in payments}

    async def get_by_reference(self, reference: str, conn: Any = None, for_update: bool = False) -> Optional[Payment]:
        return self.payments.get(reference)

    async def get_cod_for_order(self, conn: Any, order_id: str) -> Optional[Payment]:
        return next(
            (
                p for p in self.payments.values()
                if p.order_id == order_id and p.method == PaymentMethod.CASH_ON_DELIVERY
            ),
            None,
        )

    async def create(self, conn: Any, order_id: str, method: PaymentMethod, reference: str, amount: Decimal) -> Payment:
        if reference not in self.payments:
            self.payments[reference] = Payment(
                id=str(uuid4()),
                order_id=order_id,
                method=method,
                gateway_reference=reference,
                amount=amount,
                created_at=_now(),
            )
        return self.payments[reference]

    async def finalize(self, conn: Any, payment_id: str, status: PaymentStatus) -> Optional[Payment]:
        for reference, payment in self.payments.items():
            if payment.id == payment_id:
                if payment.status != PaymentStatus.PENDING:
                    return None
                updated = payment.model_copy(update={"status": status, "verified_at": _now()})
                self.payments[reference] = updated
                return updated
        return None


class InMemoryProviders:
    def __init__(self, *profiles: ProviderProfile) -> None:
        self.profiles = {profile.user_id: profile for profile in profiles}

    async def get_profile(self, user_id: str, conn: Any = None) -> Optional[ProviderProfile]:
        return self.profiles.get(user_id)


class InMemoryTracking:
    """Повторяет TrackingRepository: одна запись на объект, журнал только на дозапись."""

    def __init__(self) -> None:
        self.records: dict[str, TrackingRecord] = {}
        self.events: dict[str, list[TrackingEvent]] = {}

    async def get_by_subject(self, subject_id: str, conn: Any = None, for_update: bool = False) -> Optional[TrackingRecord]:
        return self.records.get(subject_id)

    async def create(self, conn: Any, subject_id: str, subject_type: SubjectType, status: TrackingStatus) -> TrackingRecord:
        if subject_id not in self.records:
            self.records[subject_id] = TrackingRecord(
                id=f"tr-{subject_id}",
                subject_id=subject_id,
                subject_type=subject_type,
                status=status,
                created_at=_now(),
                updated_at=_now(),
            )
        return self.records[subject_id]

    async def update_record(self, conn: Any, record_id: str, status: TrackingStatus, location=None, estimated_arrival=None) -> TrackingRecord:
        record = next(r for r in self.records.values() if r.id == record_id)
        update: dict[str, Any] = {"status": status, "updated_at": _now()}
        if location is not None:
            update["current_location"] = location
        if estimated_arrival is not None:
            update["estimated_arrival"] = estimated_arrival
        updated = record.model_copy(update=update)
        self.records[record.subject_id] = updated
        return updated

    async def upsert_assignment(self, conn: Any, subject_id: str, subject_type: SubjectType, provider_id: str) -> tuple[TrackingRecord, bool]:
        existing = self.records.get(subject_id)
        if existing is None:
            record = TrackingRecord(
                id=f"tr-{subject_id}",
                subject_id=subject_id,
                subject_type=subject_type,
                status=TrackingStatus.ASSIGNED,
                assigned_provider_id=provider_id,
                created_at=_now(),
                updated_at=_now(),
            )
            self.records[subject_id] = record
            return record, True
        record = existing.model_copy(update={"assigned_provider_id": provider_id, "updated_at": _now()})
        self.records[subject_id] = record
        return record, False

    async def append_event(self, conn: Any, record_id: str, status: TrackingStatus, message: str, location=None) -> TrackingEvent:
        event = TrackingEvent(
            id=str(uuid4()),
            tracking_record_id=record_id,
            status=status,
            location=location,
            message=message,
            created_at=_now(),
        )
        self.events.setdefault(record_id, []).append(event)
        return event

    async def list_events(self, record_id: str, limit: Optional[int] = None, offset: int = 0) -> list[TrackingEvent]:
        events = self.events.get(record_id, [])
        end = None if limit is None else offset + limit
        return events[offset:end]

    async def count_events(self, record_id: str) -> int:
        return len(self.events.get(record_id, []))


class RecordingNotifications:
    """Записывает broadcast() вместо отправки."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def broadcast(self, messages) -> list:
        for message in messages:
            self.sent.append((message.user_id, message.payload.title))
        return []

    def titles_for(self, user_id: str) -> list[str]:
        return [title for uid, title in self.sent if uid == user_id]


class RecordingEventBus:
    def __init__(self) -> None:
        self.events: list[Any] = []

    async def publish(self, event: Any) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def recording_notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def recording_event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def in_memory() -> dict[str, type]:
    """Классы in-memory репозиториев для сборки сервисов в тестах."""
    return {
        "orders": InMemoryOrders,
        "bookings": InMemoryBookings,
        "subjects": InMemorySubjects,
        "payments": InMemoryPayments,
        "providers": InMemoryProviders,
        "tracking": InMemoryTracking,
    }
