# fulfillment/core/orders/service.py
"""
Сервис смены бизнес-статуса заказов и бронирований.
Единственный владелец поля status у заказа и бронирования.
"""

from __future__ import annotations

from enum import Enum
from typing import Type, TypeVar

from asyncpg import Connection

from fulfillment.common.constants import (
    BookingStatus,
    OrderPaymentStatus,
    OrderStatus,
    SubjectType,
    TypeMsg,
    UserRole,
)
from fulfillment.common.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnprocessableError,
)
from fulfillment.common.logger import log_info
from fulfillment.core.notifications.models import OutgoingNotification
from fulfillment.core.notifications.service import NotificationService
from fulfillment.core.notifications.templates import booking_status_payloads, order_status_payloads
from fulfillment.core.orders.models import Booking, Order, TransitionResult
from fulfillment.core.orders.repository import BookingRepository, OrderRepository
from fulfillment.core.orders.state_machine import BookingParty, BookingStateMachine, OrderStateMachine
from fulfillment.infra.database import DatabaseManager
from fulfillment.infra.event_bus import DomainEvent, EventBus, EventTypes
from fulfillment.shared.models.common import Actor

E = TypeVar("E", bound=Enum)


def parse_status(enum_class: Type[E], value: str) -> E:
    """Приводит строку к значению перечисления, иначе Unprocessable."""
    try:
        return enum_class(value)
    except ValueError:
        raise UnprocessableError(
            f"Unknown status '{value}'",
            details={"allowed": [member.value for member in enum_class]},
        ) from None


class StatusService:
    """
    Переходы статусов с проверками в порядке:
    существование -> отношение к объекту -> ребро графа -> ребро роли -> CAS.
    """

    def __init__(
        self,
        db: DatabaseManager,
        orders: OrderRepository,
        bookings: BookingRepository,
        notifications: NotificationService,
        event_bus: EventBus,
    ) -> None:
        self._db = db
        self._orders = orders
        self._bookings = bookings
        self._notifications = notifications
        self._event_bus = event_bus

    # =========================================================================
    # ЗАКАЗЫ
    # =========================================================================

    async def transition_order(self, order_id: str, requested_status: str, actor: Actor) -> TransitionResult:
        """
        Переводит заказ в новый статус.

        Raises:
            UnprocessableError: неизвестный статус
            NotFoundError: заказа нет
            ForbiddenError: актор не связан с заказом или роли ребро недоступно
            InvalidTransitionError: ребра нет в графе
            ConflictError: статус изменился параллельно
        """
        target = parse_status(OrderStatus, requested_status)

        async with self._db.transaction() as conn:
            order = await self._orders.get_by_id(order_id, conn=conn)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            result = await self.apply_order_transition(conn, order, target, actor)

        await self.announce(result)
        return result

    async def apply_order_transition(
        self,
        conn: Connection,
        order: Order,
        target: OrderStatus,
        actor: Actor,
    ) -> TransitionResult:
        """
        Переход заказа в транзакции вызывающего. Уведомления не отправляет.

        Используется сверкой платежей, чтобы переход и фиксация оплаты
        попали в одну транзакцию.
        """
        self._ensure_order_relation(order, actor)

        current = order.status
        if not OrderStateMachine.can_transition(current, target):
            raise InvalidTransitionError(
                f"Order cannot move from {current.value} to {target.value}",
                details={
                    "current_status": current.value,
                    "allowed": [s.value for s in OrderStateMachine.next_statuses(current)],
                },
            )
        if not OrderStateMachine.is_allowed(actor.role, current, target):
            raise ForbiddenError(
                f"Role {actor.role.value} may not move order from {current.value} to {target.value}",
                details={
                    "current_status": current.value,
                    "allowed": [s.value for s in OrderStateMachine.next_statuses(current, actor.role)],
                },
            )

        updated = await self._orders.compare_and_set_status(conn, order, target)
        if updated is None:
            raise ConflictError(
                f"Order {order.id} status changed concurrently, re-read and retry",
                details={"expected_status": current.value},
            )

        if target == OrderStatus.DELIVERED and order.is_cash_on_delivery:
            paid_at = await self._orders.mark_paid(conn, order.id)
            if paid_at is not None:
                updated = updated.model_copy(update={"payment_status": OrderPaymentStatus.PAID, "paid_at": paid_at})

        await log_info(
            f"Заказ {order.id}: {current.value} -> {target.value}",
            extra={"order_id": order.id, "actor_id": actor.user_id, "role": actor.role.value},
        )

        return TransitionResult(
            subject_id=order.id,
            subject_type=SubjectType.ORDER,
            previous_status=current.value,
            new_status=target.value,
            actor=actor,
            order=updated,
        )

    @staticmethod
    def _ensure_order_relation(order: Order, actor: Actor) -> None:
        if actor.role in (UserRole.ADMIN, UserRole.SYSTEM):
            return
        if actor.role == UserRole.BUYER and order.buyer_id == actor.user_id:
            return
        if actor.role == UserRole.SUPPLIER and actor.user_id in order.supplier_ids:
            return
        raise ForbiddenError("Actor is not a party to this order")

    # =========================================================================
    # БРОНИРОВАНИЯ
    # =========================================================================

    async def transition_booking(self, booking_id: str, requested_status: str, actor: Actor) -> TransitionResult:
        target = parse_status(BookingStatus, requested_status)

        async with self._db.transaction() as conn:
            booking = await self._bookings.get_by_id(booking_id, conn=conn)
            if booking is None:
                raise NotFoundError(f"Booking {booking_id} not found")

            party = self._booking_party(booking, actor)
            current = booking.status
            if not BookingStateMachine.can_transition(current, target):
                raise InvalidTransitionError(
                    f"Booking cannot move from {current.value} to {target.value}",
                    details={
                        "current_status": current.value,
                        "allowed": [s.value for s in BookingStateMachine.next_statuses(current)],
                    },
                )
            if not BookingStateMachine.is_allowed(party, current, target):
                raise ForbiddenError(
                    f"{party.value.capitalize()} may not move booking from {current.value} to {target.value}",
                    details={
                        "current_status": current.value,
                        "allowed": [s.value for s in BookingStateMachine.next_statuses(current, party)],
                    },
                )

            updated = await self._bookings.compare_and_set_status(conn, booking, target)
            if updated is None:
                raise ConflictError(
                    f"Booking {booking.id} status changed concurrently, re-read and retry",
                    details={"expected_status": current.value},
                )

        await log_info(
            f"Бронирование {booking.id}: {current.value} -> {target.value}",
            extra={"booking_id": booking.id, "actor_id": actor.user_id, "party": party.value},
        )

        result = TransitionResult(
            subject_id=booking.id,
            subject_type=booking.subject_type,
            previous_status=current.value,
            new_status=target.value,
            actor=actor,
            booking=updated,
        )
        await self.announce(result)
        return result

    @staticmethod
    def _booking_party(booking: Booking, actor: Actor) -> BookingParty:
        if actor.role == UserRole.ADMIN:
            return BookingParty.ADMIN
        if booking.provider_id is not None and booking.provider_id == actor.user_id:
            return BookingParty.PROVIDER
        if booking.requester_id == actor.user_id:
            return BookingParty.REQUESTER
        raise ForbiddenError("Actor is not a party to this booking")

    # =========================================================================
    # ПОБОЧНЫЕ ЭФФЕКТЫ
    # =========================================================================

    def build_notifications(
        self,
        result: TransitionResult,
        notify_buyer: bool = True,
    ) -> list[OutgoingNotification]:
        """Уведомления о переходе: покупателю и каждому уникальному поставщику."""
        messages: list[OutgoingNotification] = []

        if result.order is not None:
            order = result.order
            buyer_payload, supplier_payload = order_status_payloads(order.status, order.id, order.tracking_id)
            if notify_buyer:
                messages.append(OutgoingNotification(user_id=order.buyer_id, payload=buyer_payload))
            for supplier_id in dict.fromkeys(order.supplier_ids):
                messages.append(OutgoingNotification(user_id=supplier_id, payload=supplier_payload))

        elif result.booking is not None:
            booking = result.booking
            requester_payload, provider_payload = booking_status_payloads(
                booking.status, booking.id, booking.booking_type
            )
            messages.append(OutgoingNotification(user_id=booking.requester_id, payload=requester_payload))
            if booking.provider_id:
                messages.append(OutgoingNotification(user_id=booking.provider_id, payload=provider_payload))

        return messages

    async def announce(self, result: TransitionResult, notify_buyer: bool = True) -> None:
        """
        Уведомления и доменное событие после коммита.
        Ошибки логируются внутри broadcast/publish и не пробрасываются.
        """
        await self._notifications.broadcast(self.build_notifications(result, notify_buyer=notify_buyer))

        event_type = EventTypes.ORDER_STATUS_CHANGED if result.order is not None else EventTypes.BOOKING_STATUS_CHANGED
        await self._event_bus.publish(DomainEvent(
            event_type=event_type,
            payload={
                "subject_id": result.subject_id,
                "subject_type": result.subject_type.value,
                "previous_status": result.previous_status,
                "new_status": result.new_status,
                "actor_id": result.actor.user_id,
                "actor_role": result.actor.role.value,
            },
        ))
        await log_info(
            f"Переход {result.subject_id} объявлен",
            type_msg=TypeMsg.DEBUG,
            extra={"subject_id": result.subject_id, "new_status": result.new_status},
        )
