# fulfillment/core/payments/__init__.py
"""Сверка платежей."""

from fulfillment.core.payments.gateway import PaystackGateway, compute_signature
from fulfillment.core.payments.models import (
    Payment,
    PaymentOutcome,
    ReconciliationResult,
    VerificationResult,
    WebhookAck,
)
from fulfillment.core.payments.repository import PaymentRepository
from fulfillment.core.payments.service import PaymentReconciliationService

__all__ = [
    "Payment",
    "PaymentOutcome",
    "PaymentReconciliationService",
    "PaymentRepository",
    "PaystackGateway",
    "ReconciliationResult",
    "VerificationResult",
    "WebhookAck",
    "compute_signature",
]
