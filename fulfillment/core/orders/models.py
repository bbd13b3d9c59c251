# fulfillment/core/orders/models.py
"""
Модели заказов, бронирований и результата смены статуса.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from fulfillment.common.constants import (
    BookingStatus,
    BookingType,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    ProviderType,
    SubjectType,
)
from fulfillment.shared.models.common import Actor


class Order(BaseModel):
    """Заказ покупателя (может включать товары нескольких поставщиков)."""

    id: str
    buyer_id: str
    tracking_id: str = Field(..., description="Внешний код для покупателя")
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    payment_method: PaymentMethod
    total_amount: Decimal = Decimal("0")
    trade_in_id: Optional[str] = None
    trade_in_offer_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Уникальные поставщики из позиций заказа
    supplier_ids: list[str] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @property
    def is_cash_on_delivery(self) -> bool:
        return self.payment_method == PaymentMethod.CASH_ON_DELIVERY


class Booking(BaseModel):
    """Бронирование механика или логистики (один исполнитель)."""

    id: str
    booking_type: BookingType
    requester_id: str
    provider_id: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def subject_type(self) -> SubjectType:
        if self.booking_type == BookingType.MECHANIC:
            return SubjectType.MECHANIC_BOOKING
        return SubjectType.LOGISTICS_BOOKING


class Subject(BaseModel):
    """
    Заказ или бронирование, к которому привязан трекинг.

    Общий вид для трекинга и назначений: владелец, поставщики,
    текущий бизнес-статус.
    """

    id: str
    subject_type: SubjectType
    owner_id: str
    status: str
    supplier_ids: list[str] = Field(default_factory=list)
    provider_id: Optional[str] = None
    tracking_code: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "Subject":
        return cls(
            id=order.id,
            subject_type=SubjectType.ORDER,
            owner_id=order.buyer_id,
            status=order.status.value,
            supplier_ids=order.supplier_ids,
            tracking_code=order.tracking_id,
        )

    @classmethod
    def from_booking(cls, booking: Booking) -> "Subject":
        return cls(
            id=booking.id,
            subject_type=booking.subject_type,
            owner_id=booking.requester_id,
            status=booking.status.value,
            provider_id=booking.provider_id,
        )

    @property
    def is_order(self) -> bool:
        return self.subject_type == SubjectType.ORDER

    @property
    def required_provider_type(self) -> ProviderType:
        """Тип исполнителя, которого можно назначить на объект."""
        if self.subject_type == SubjectType.MECHANIC_BOOKING:
            return ProviderType.MECHANIC
        return ProviderType.LOGISTICS


class TransitionResult(BaseModel):
    """Результат успешной смены бизнес-статуса."""

    subject_id: str
    subject_type: SubjectType
    previous_status: str
    new_status: str
    actor: Actor
    order: Optional[Order] = None
    booking: Optional[Booking] = None
