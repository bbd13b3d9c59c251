# fulfillment/core/payments/service.py
"""
Сверка платежей.

Три входа (webhook, verify по reference, ручное подтверждение COD)
сходятся в одной функции _apply_outcome_locked. Терминальный платёж
повторно не обрабатывается, поэтому повторы и гонки безопасны.
"""

from __future__ import annotations

import json
from typing import Optional

from asyncpg import Connection

from fulfillment.common.constants import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    TypeMsg,
)
from fulfillment.common.exceptions import ForbiddenError, NotFoundError, UnprocessableError
from fulfillment.common.logger import log_info, log_warning
from fulfillment.core.notifications.models import OutgoingNotification
from fulfillment.core.notifications.service import NotificationService
from fulfillment.core.notifications.templates import payment_failed_payload, payment_succeeded_payload
from fulfillment.core.orders.models import Order
from fulfillment.core.orders.repository import OrderRepository
from fulfillment.core.orders.service import StatusService
from fulfillment.core.payments.gateway import PaystackGateway
from fulfillment.core.payments.models import (
    Payment,
    PaymentOutcome,
    ReconciliationResult,
    VerificationResult,
    WebhookAck,
)
from fulfillment.core.payments.repository import PaymentRepository
from fulfillment.infra.database import DatabaseManager
from fulfillment.infra.event_bus import DomainEvent, EventBus, EventTypes
from fulfillment.shared.models.common import SYSTEM_ACTOR, Actor

CHARGE_SUCCESS_EVENT = "charge.success"


def cod_reference(order_id: str) -> str:
    return f"cod:{order_id}"


class PaymentReconciliationService:
    """Сервис сверки платежей."""

    def __init__(
        self,
        db: DatabaseManager,
        payments: PaymentRepository,
        orders: OrderRepository,
        status_service: StatusService,
        notifications: NotificationService,
        event_bus: EventBus,
        gateway: PaystackGateway,
    ) -> None:
        self._db = db
        self._payments = payments
        self._orders = orders
        self._status = status_service
        self._notifications = notifications
        self._event_bus = event_bus
        self._gateway = gateway

    # =========================================================================
    # ВХОДЫ
    # =========================================================================

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Webhook шлюза. Подпись проверяется до разбора тела.

        Raises:
            InvalidSignatureError: подпись отсутствует или не совпала
            UnprocessableError: тело не JSON или нет reference
        """
        self._gateway.verify_signature(raw_body, signature)

        try:
            event = json.loads(raw_body)
        except ValueError:
            raise UnprocessableError("Malformed webhook payload") from None
        if not isinstance(event, dict):
            raise UnprocessableError("Malformed webhook payload")

        event_type = event.get("event")
        if event_type != CHARGE_SUCCESS_EVENT:
            await log_info(
                f"Webhook {event_type} пропущен",
                type_msg=TypeMsg.DEBUG,
                extra={"event": event_type},
            )
            return WebhookAck(processed=False, reason="ignored_event")

        data = event.get("data") or {}
        if not isinstance(data, dict):
            raise UnprocessableError("Malformed webhook payload")
        reference = data.get("reference")
        if not reference or not isinstance(reference, str):
            raise UnprocessableError("Webhook event has no payment reference")

        result = await self._reconcile(reference, PaymentOutcome.SUCCESS, SYSTEM_ACTOR)
        if result is None:
            # Подтверждаем, иначе шлюз будет повторять доставку бесконечно
            await log_warning(
                "Webhook для неизвестного reference",
                extra={"reference": reference},
            )
            return WebhookAck(processed=False, reference=reference, reason="unknown_reference")

        return WebhookAck(
            processed=result.applied,
            reference=reference,
            reason=None if result.applied else "already_settled",
        )

    async def verify_by_reference(self, reference: str, actor: Actor) -> VerificationResult:
        """
        Проверка статуса у шлюза и применение итога.

        Незавершённый статус шлюза (ongoing, pending, ...) ничего не меняет.
        Для уже терминального платежа шлюз не вызывается.

        Raises:
            NotFoundError: платежа нет
            ForbiddenError: не покупатель заказа и не администратор
            UpstreamFailureError: шлюз недоступен
            UnprocessableError: шлюз отклонил запрос
        """
        payment = await self._payments.get_by_reference(reference)
        if payment is None:
            raise NotFoundError(f"Payment {reference} not found")

        if not actor.is_admin:
            order = await self._orders.get_by_id(payment.order_id)
            if order is None or order.buyer_id != actor.user_id:
                raise ForbiddenError("Payment belongs to another user")

        if payment.is_terminal:
            # Итог уже зафиксирован, шлюз не нужен
            return VerificationResult(
                verified=payment.status == PaymentStatus.COMPLETED,
                payment=payment,
                applied=False,
            )

        verification = await self._gateway.verify(reference)
        if verification.outcome is None:
            await log_info(
                f"Платёж {reference} ещё не завершён: {verification.gateway_status}",
                extra={"reference": reference},
            )
            return VerificationResult(
                verified=False,
                payment=payment,
                gateway_status=verification.gateway_status,
            )

        result = await self._reconcile(reference, verification.outcome, SYSTEM_ACTOR)
        if result is None:
            raise NotFoundError(f"Payment {reference} not found")

        return VerificationResult(
            verified=result.payment.status == PaymentStatus.COMPLETED,
            payment=result.payment,
            gateway_status=verification.gateway_status,
            applied=result.applied,
        )

    async def confirm_cod(self, order_id: str, actor: Actor) -> ReconciliationResult:
        """
        Ручное подтверждение оплаты наличными при доставке.

        Raises:
            ForbiddenError: не администратор
            NotFoundError: заказа нет
            UnprocessableError: заказ не ожидает подтверждения COD
        """
        if not actor.is_admin:
            raise ForbiddenError("Only an admin may confirm cash on delivery")

        async with self._db.transaction() as conn:
            order = await self._orders.get_by_id(order_id, conn=conn, for_update=True)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if order.status != OrderStatus.PENDING_COD_CONFIRMATION:
                raise UnprocessableError(
                    "Order is not awaiting cash on delivery confirmation",
                    details={"status": order.status.value},
                )

            payment = await self._payments.get_cod_for_order(conn, order_id)
            if payment is None:
                payment = await self._payments.create(
                    conn,
                    order_id,
                    PaymentMethod.CASH_ON_DELIVERY,
                    cod_reference(order_id),
                    order.total_amount,
                )
            result = await self._apply_outcome_locked(conn, payment, PaymentOutcome.SUCCESS, actor, order=order)

        await self._announce(result)
        return result

    # =========================================================================
    # ПРИМЕНЕНИЕ ИТОГА
    # =========================================================================

    async def _reconcile(
        self,
        reference: str,
        outcome: PaymentOutcome,
        actor: Actor,
    ) -> Optional[ReconciliationResult]:
        """
        Блокирует заказ, затем платёж, и применяет итог. None - reference неизвестен.

        Порядок блокировок совпадает с confirm_cod.
        """
        async with self._db.transaction() as conn:
            known = await self._payments.get_by_reference(reference, conn=conn)
            if known is None:
                return None
            order = await self._orders.get_by_id(known.order_id, conn=conn, for_update=True)
            payment = await self._payments.get_by_reference(reference, conn=conn, for_update=True)
            if payment is None:
                return None
            result = await self._apply_outcome_locked(conn, payment, outcome, actor, order=order)

        await self._announce(result)
        return result

    async def _apply_outcome_locked(
        self,
        conn: Connection,
        payment: Payment,
        outcome: PaymentOutcome,
        actor: Actor,
        order: Optional[Order] = None,
    ) -> ReconciliationResult:
        """
        Единственное место проверки терминального статуса.

        Вызывается в транзакции, где строка платежа уже заблокирована.
        Терминальный платёж возвращается без изменений (applied=False).
        """
        if payment.is_terminal:
            await log_info(
                f"Платёж {payment.gateway_reference} уже {payment.status.value}, пропуск",
                type_msg=TypeMsg.DEBUG,
                extra={"payment_id": payment.id, "order_id": payment.order_id},
            )
            return ReconciliationResult(payment=payment, applied=False)

        new_status = PaymentStatus.COMPLETED if outcome == PaymentOutcome.SUCCESS else PaymentStatus.FAILED
        finalized = await self._payments.finalize(conn, payment.id, new_status)
        if finalized is None:
            current = await self._payments.get_by_reference(payment.gateway_reference, conn=conn)
            return ReconciliationResult(payment=current or payment, applied=False)

        if order is None:
            order = await self._orders.get_by_id(payment.order_id, conn=conn, for_update=True)
        if order is None:
            raise NotFoundError(f"Order {payment.order_id} not found")

        if outcome == PaymentOutcome.FAILED:
            await log_info(
                f"Платёж {payment.gateway_reference} не прошёл",
                type_msg=TypeMsg.WARNING,
                extra={"payment_id": payment.id, "order_id": order.id},
            )
            return ReconciliationResult(payment=finalized, applied=True, outcome=outcome, order=order)

        if payment.method == PaymentMethod.CASH_ON_DELIVERY:
            source, target = OrderStatus.PENDING_COD_CONFIRMATION, OrderStatus.COD_CONFIRMED
        else:
            source, target = OrderStatus.PENDING, OrderStatus.CONFIRMED

        transition = None
        if order.status == source:
            transition = await self._status.apply_order_transition(conn, order, target, actor)
            order = transition.order
        else:
            await log_warning(
                f"Заказ {order.id} уже в статусе {order.status.value}, переход пропущен",
                extra={"order_id": order.id, "payment_id": payment.id},
            )

        paid_at = await self._orders.mark_paid(conn, order.id)
        if paid_at is not None:
            order = order.model_copy(update={"payment_status": OrderPaymentStatus.PAID, "paid_at": paid_at})
        await self._orders.settle_trade_ins(conn, order.trade_in_id, order.trade_in_offer_id)

        await log_info(
            f"Платёж {payment.gateway_reference} подтверждён",
            extra={"payment_id": payment.id, "order_id": order.id, "actor_id": actor.user_id},
        )
        return ReconciliationResult(
            payment=finalized,
            applied=True,
            outcome=outcome,
            order=order,
            transition=transition,
        )

    async def _announce(self, result: ReconciliationResult) -> None:
        """Уведомления и события после коммита. No-op ничего не отправляет."""
        if not result.applied or result.order is None:
            return

        order = result.order
        payment = result.payment

        if result.outcome == PaymentOutcome.SUCCESS:
            await self._notifications.broadcast([
                OutgoingNotification(
                    user_id=order.buyer_id,
                    payload=payment_succeeded_payload(order.id, order.tracking_id, order.is_cash_on_delivery),
                )
            ])
            if result.transition is not None:
                # Покупатель уже получил уведомление об оплате
                await self._status.announce(result.transition, notify_buyer=False)
            event_type = EventTypes.PAYMENT_COMPLETED
        else:
            await self._notifications.broadcast([
                OutgoingNotification(
                    user_id=order.buyer_id,
                    payload=payment_failed_payload(order.id, order.tracking_id),
                )
            ])
            event_type = EventTypes.PAYMENT_FAILED

        await self._event_bus.publish(DomainEvent(
            event_type=event_type,
            payload={
                "payment_id": payment.id,
                "order_id": order.id,
                "reference": payment.gateway_reference,
                "method": payment.method.value,
                "status": payment.status.value,
            },
        ))
