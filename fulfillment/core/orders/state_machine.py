# fulfillment/core/orders/state_machine.py
"""
Графы статусов заказа и бронирования и ролевые таблицы переходов.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from fulfillment.common.constants import BookingStatus, OrderStatus, UserRole


class BookingParty(str, Enum):
    """Отношение участника к бронированию."""
    REQUESTER = "REQUESTER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


class StatusGraph:
    """Граф допустимых переходов плюс ограничения по ролям."""

    ALLOWED_TRANSITIONS: ClassVar[dict[Any, list[Any]]] = {}
    ROLE_TRANSITIONS: ClassVar[dict[Any, dict[Any, list[Any]]]] = {}

    @classmethod
    def can_transition(cls, current: Any, new: Any) -> bool:
        """Есть ли ребро current -> new в графе."""
        return new in cls.ALLOWED_TRANSITIONS.get(current, [])

    @classmethod
    def is_allowed(cls, party: Any, current: Any, new: Any) -> bool:
        """Может ли участник пройти ребро current -> new."""
        return new in cls.ROLE_TRANSITIONS.get(party, {}).get(current, [])

    @classmethod
    def next_statuses(cls, current: Any, party: Any | None = None) -> list[Any]:
        if party is None:
            return list(cls.ALLOWED_TRANSITIONS.get(current, []))
        return list(cls.ROLE_TRANSITIONS.get(party, {}).get(current, []))

    @classmethod
    def is_terminal(cls, status: Any) -> bool:
        return not cls.ALLOWED_TRANSITIONS.get(status)


class OrderStateMachine(StatusGraph):
    ALLOWED_TRANSITIONS = {
        OrderStatus.PENDING: [
            OrderStatus.CONFIRMED,
            OrderStatus.PENDING_COD_CONFIRMATION,
            OrderStatus.CANCELLED,
        ],
        OrderStatus.PENDING_COD_CONFIRMATION: [OrderStatus.COD_CONFIRMED, OrderStatus.CANCELLED],
        OrderStatus.CONFIRMED: [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED],
        OrderStatus.COD_CONFIRMED: [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED],
        OrderStatus.PROCESSING: [OrderStatus.SHIPPED, OrderStatus.CANCELLED],
        OrderStatus.SHIPPED: [OrderStatus.DELIVERED],
        OrderStatus.DELIVERED: [],
        OrderStatus.CANCELLED: [],
    }

    ROLE_TRANSITIONS = {
        UserRole.BUYER: {
            OrderStatus.PENDING: [OrderStatus.PENDING_COD_CONFIRMATION, OrderStatus.CANCELLED],
            OrderStatus.PENDING_COD_CONFIRMATION: [OrderStatus.CANCELLED],
            # Доставку подтверждает только покупатель
            OrderStatus.SHIPPED: [OrderStatus.DELIVERED],
        },
        UserRole.SUPPLIER: {
            OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
            OrderStatus.CONFIRMED: [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED],
            OrderStatus.COD_CONFIRMED: [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED],
            OrderStatus.PROCESSING: [OrderStatus.SHIPPED, OrderStatus.CANCELLED],
        },
        UserRole.ADMIN: {
            status: [target for target in targets if target != OrderStatus.DELIVERED]
            for status, targets in ALLOWED_TRANSITIONS.items()
        },
        UserRole.SYSTEM: {
            OrderStatus.PENDING: [OrderStatus.CONFIRMED],
        },
    }


class BookingStateMachine(StatusGraph):
    ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: [BookingStatus.ACCEPTED, BookingStatus.CANCELLED],
        BookingStatus.ACCEPTED: [BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED],
        BookingStatus.IN_PROGRESS: [BookingStatus.COMPLETED, BookingStatus.CANCELLED],
        BookingStatus.COMPLETED: [],
        BookingStatus.CANCELLED: [],
    }

    ROLE_TRANSITIONS = {
        BookingParty.REQUESTER: {
            BookingStatus.PENDING: [BookingStatus.CANCELLED],
            BookingStatus.ACCEPTED: [BookingStatus.CANCELLED],
        },
        BookingParty.PROVIDER: {
            BookingStatus.PENDING: [BookingStatus.ACCEPTED, BookingStatus.CANCELLED],
            BookingStatus.ACCEPTED: [BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED],
            BookingStatus.IN_PROGRESS: [BookingStatus.COMPLETED, BookingStatus.CANCELLED],
        },
        BookingParty.ADMIN: dict(ALLOWED_TRANSITIONS),
    }
