# fulfillment/core/payments/models.py
"""
Модели платежей и результатов сверки.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from fulfillment.common.constants import PaymentMethod, PaymentStatus
from fulfillment.core.orders.models import Order, TransitionResult


class PaymentOutcome(str, Enum):
    """Итог, сообщённый шлюзом или администратором."""
    SUCCESS = "success"
    FAILED = "failed"


# data.status в ответе verify -> итог; остальные статусы считаются незавершёнными
GATEWAY_STATUS_OUTCOMES: dict[str, PaymentOutcome] = {
    "success": PaymentOutcome.SUCCESS,
    "failed": PaymentOutcome.FAILED,
    "reversed": PaymentOutcome.FAILED,
    "abandoned": PaymentOutcome.FAILED,
}


class Payment(BaseModel):
    """Одна попытка оплаты заказа."""

    id: str
    order_id: str
    method: PaymentMethod
    gateway_reference: str
    amount: Decimal = Decimal("0")
    status: PaymentStatus = PaymentStatus.PENDING
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.status in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)


class GatewayVerification(BaseModel):
    """Ответ шлюза на verify."""

    reference: str
    gateway_status: str
    outcome: Optional[PaymentOutcome] = None
    amount: Optional[Decimal] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ReconciliationResult(BaseModel):
    """
    Результат применения итога оплаты.

    applied=False означает no-op: платёж уже был в терминальном статусе.
    """

    payment: Payment
    applied: bool
    outcome: Optional[PaymentOutcome] = None
    order: Optional[Order] = None
    transition: Optional[TransitionResult] = None


class VerificationResult(BaseModel):
    verified: bool
    payment: Payment
    gateway_status: Optional[str] = None
    applied: bool = False


class WebhookAck(BaseModel):
    """Ответ шлюзу: received=True всегда, иначе он будет повторять доставку."""

    received: bool = True
    processed: bool = False
    reference: Optional[str] = None
    reason: Optional[str] = None
