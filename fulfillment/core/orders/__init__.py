# fulfillment/core/orders/__init__.py
"""Жизненный цикл заказов и бронирований."""

from fulfillment.core.orders.models import Booking, Order, Subject, TransitionResult
from fulfillment.core.orders.repository import BookingRepository, OrderRepository, SubjectRepository
from fulfillment.core.orders.service import StatusService
from fulfillment.core.orders.state_machine import BookingParty, BookingStateMachine, OrderStateMachine

__all__ = [
    "Booking",
    "BookingParty",
    "BookingRepository",
    "BookingStateMachine",
    "Order",
    "OrderRepository",
    "OrderStateMachine",
    "StatusService",
    "Subject",
    "SubjectRepository",
    "TransitionResult",
]
