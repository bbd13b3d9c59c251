# tests/core/test_status_service.py
"""
Тесты сервиса смены статусов заказов и бронирований.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from fulfillment.common.constants import (
    BookingStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    SubjectType,
    UserRole,
)
from fulfillment.common.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnprocessableError,
)
from fulfillment.core.orders.models import TransitionResult
from fulfillment.core.orders.service import StatusService, parse_status
from fulfillment.infra.event_bus import EventTypes
from fulfillment.shared.models.common import Actor


@pytest.fixture
def orders() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def bookings() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def service(mock_db, orders, bookings, mock_notifications, mock_event_bus) -> StatusService:
    return StatusService(mock_db, orders, bookings, mock_notifications, mock_event_bus)


def _recipients(mock_notifications: AsyncMock) -> list[str]:
    messages = mock_notifications.broadcast.call_args.args[0]
    return [message.user_id for message in messages]


class TestParseStatus:
    def test_known_value(self) -> None:
        assert parse_status(OrderStatus, "SHIPPED") is OrderStatus.SHIPPED

    def test_unknown_value_lists_allowed(self) -> None:
        with pytest.raises(UnprocessableError) as exc:
            parse_status(OrderStatus, "LOST")
        assert "SHIPPED" in exc.value.details["allowed"]


class TestTransitionOrder:
    @pytest.mark.asyncio
    async def test_supplier_ships_confirmed_order(
        self, service, orders, make_order, supplier, mock_notifications, mock_event_bus
    ) -> None:
        order = make_order(status=OrderStatus.CONFIRMED, supplier_ids=["supplier-1", "supplier-2"])
        orders.get_by_id.return_value = order
        orders.compare_and_set_status.return_value = order.model_copy(update={"status": OrderStatus.SHIPPED})

        result = await service.transition_order("o1", "SHIPPED", supplier)

        assert result.previous_status == "CONFIRMED"
        assert result.new_status == "SHIPPED"
        assert result.order.status == OrderStatus.SHIPPED
        assert _recipients(mock_notifications) == ["buyer-1", "supplier-1", "supplier-2"]
        event = mock_event_bus.publish.call_args.args[0]
        assert event.event_type == EventTypes.ORDER_STATUS_CHANGED
        assert event.payload["new_status"] == "SHIPPED"

    @pytest.mark.asyncio
    async def test_unknown_order(self, service, orders, supplier, mock_notifications) -> None:
        orders.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.transition_order("missing", "SHIPPED", supplier)
        mock_notifications.broadcast.assert_not_called()

    @pytest.mark.asyncio
    async def test_unrelated_supplier_forbidden(self, service, orders, make_order) -> None:
        orders.get_by_id.return_value = make_order(status=OrderStatus.CONFIRMED)
        stranger = Actor(user_id="supplier-9", role=UserRole.SUPPLIER)

        with pytest.raises(ForbiddenError):
            await service.transition_order("o1", "SHIPPED", stranger)
        orders.compare_and_set_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_relation_checked_before_graph(self, service, orders, make_order) -> None:
        """Чужой заказ даёт Forbidden даже для несуществующего ребра."""
        orders.get_by_id.return_value = make_order(status=OrderStatus.DELIVERED)
        other_buyer = Actor(user_id="buyer-2", role=UserRole.BUYER)

        with pytest.raises(ForbiddenError):
            await service.transition_order("o1", "SHIPPED", other_buyer)

    @pytest.mark.asyncio
    async def test_missing_edge(self, service, orders, make_order, supplier) -> None:
        orders.get_by_id.return_value = make_order(status=OrderStatus.PENDING)

        with pytest.raises(InvalidTransitionError) as exc:
            await service.transition_order("o1", "SHIPPED", supplier)
        assert exc.value.details["current_status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_supplier_cannot_mark_delivered(self, service, orders, make_order, supplier) -> None:
        orders.get_by_id.return_value = make_order(status=OrderStatus.SHIPPED)

        with pytest.raises(ForbiddenError) as exc:
            await service.transition_order("o1", "DELIVERED", supplier)
        assert exc.value.details["allowed"] == []

    @pytest.mark.asyncio
    async def test_concurrent_change_is_conflict(self, service, orders, make_order, supplier, mock_notifications) -> None:
        orders.get_by_id.return_value = make_order(status=OrderStatus.CONFIRMED)
        orders.compare_and_set_status.return_value = None

        with pytest.raises(ConflictError):
            await service.transition_order("o1", "SHIPPED", supplier)
        mock_notifications.broadcast.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_status_string(self, service, orders, supplier) -> None:
        with pytest.raises(UnprocessableError):
            await service.transition_order("o1", "TELEPORTED", supplier)
        orders.get_by_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_cod_delivery_marks_paid(self, service, orders, make_order, buyer, mock_conn) -> None:
        order = make_order(status=OrderStatus.SHIPPED, payment_method=PaymentMethod.CASH_ON_DELIVERY)
        orders.get_by_id.return_value = order
        orders.compare_and_set_status.return_value = order.model_copy(update={"status": OrderStatus.DELIVERED})
        paid_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        orders.mark_paid.return_value = paid_at

        result = await service.transition_order("o1", "DELIVERED", buyer)

        orders.mark_paid.assert_awaited_once_with(mock_conn, "o1")
        assert result.order.payment_status == OrderPaymentStatus.PAID
        assert result.order.paid_at == paid_at

    @pytest.mark.asyncio
    async def test_prepaid_delivery_does_not_touch_payment(self, service, orders, make_order, buyer) -> None:
        order = make_order(status=OrderStatus.SHIPPED)
        orders.get_by_id.return_value = order
        orders.compare_and_set_status.return_value = order.model_copy(update={"status": OrderStatus.DELIVERED})

        await service.transition_order("o1", "DELIVERED", buyer)

        orders.mark_paid.assert_not_called()


class TestBuildNotifications:
    def test_suppliers_deduplicated(self, service, make_order, supplier) -> None:
        order = make_order(status=OrderStatus.SHIPPED, supplier_ids=["s1", "s2", "s1"])
        result = TransitionResult(
            subject_id="o1",
            subject_type=SubjectType.ORDER,
            previous_status="CONFIRMED",
            new_status="SHIPPED",
            actor=supplier,
            order=order,
        )

        messages = service.build_notifications(result)
        assert [m.user_id for m in messages] == ["buyer-1", "s1", "s2"]
        assert messages[0].payload.title == "Order Shipped! 🚚"

        without_buyer = service.build_notifications(result, notify_buyer=False)
        assert [m.user_id for m in without_buyer] == ["s1", "s2"]


class TestTransitionBooking:
    @pytest.mark.asyncio
    async def test_provider_accepts(self, service, bookings, make_booking, mock_notifications, mock_event_bus) -> None:
        booking = make_booking()
        bookings.get_by_id.return_value = booking
        bookings.compare_and_set_status.return_value = booking.model_copy(update={"status": BookingStatus.ACCEPTED})
        mechanic = Actor(user_id="mechanic-1", role=UserRole.MECHANIC)

        result = await service.transition_booking("b1", "ACCEPTED", mechanic)

        assert result.new_status == "ACCEPTED"
        assert _recipients(mock_notifications) == ["buyer-1", "mechanic-1"]
        assert mock_event_bus.publish.call_args.args[0].event_type == EventTypes.BOOKING_STATUS_CHANGED

    @pytest.mark.asyncio
    async def test_requester_cannot_accept(self, service, bookings, make_booking, buyer) -> None:
        bookings.get_by_id.return_value = make_booking()

        with pytest.raises(ForbiddenError):
            await service.transition_booking("b1", "ACCEPTED", buyer)

    @pytest.mark.asyncio
    async def test_requester_cancels(self, service, bookings, make_booking, buyer) -> None:
        booking = make_booking(status=BookingStatus.ACCEPTED)
        bookings.get_by_id.return_value = booking
        bookings.compare_and_set_status.return_value = booking.model_copy(update={"status": BookingStatus.CANCELLED})

        result = await service.transition_booking("b1", "CANCELLED", buyer)
        assert result.previous_status == "ACCEPTED"

    @pytest.mark.asyncio
    async def test_stranger_forbidden(self, service, bookings, make_booking) -> None:
        bookings.get_by_id.return_value = make_booking()
        stranger = Actor(user_id="someone", role=UserRole.MECHANIC)

        with pytest.raises(ForbiddenError):
            await service.transition_booking("b1", "ACCEPTED", stranger)

    @pytest.mark.asyncio
    async def test_completed_booking_is_terminal(self, service, bookings, make_booking, admin) -> None:
        bookings.get_by_id.return_value = make_booking(status=BookingStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            await service.transition_booking("b1", "CANCELLED", admin)

    @pytest.mark.asyncio
    async def test_missing_booking(self, service, bookings, admin) -> None:
        bookings.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.transition_booking("b404", "ACCEPTED", admin)

    @pytest.mark.asyncio
    async def test_booking_conflict(self, service, bookings, make_booking) -> None:
        bookings.get_by_id.return_value = make_booking()
        bookings.compare_and_set_status.return_value = None
        mechanic = Actor(user_id="mechanic-1", role=UserRole.MECHANIC)

        with pytest.raises(ConflictError):
            await service.transition_booking("b1", "ACCEPTED", mechanic)
