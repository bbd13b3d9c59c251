# tests/core/test_payment_reconciliation.py
"""
Тесты сверки платежей: webhook, verify, подтверждение COD, идемпотентность.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fulfillment.common.constants import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    UserRole,
)
from fulfillment.common.exceptions import (
    ForbiddenError,
    InvalidSignatureError,
    NotFoundError,
    UnprocessableError,
    UpstreamFailureError,
)
from fulfillment.core.orders.service import StatusService
from fulfillment.core.payments.gateway import PaystackGateway, compute_signature
from fulfillment.core.payments.models import Payment
from fulfillment.core.payments.service import PaymentReconciliationService, cod_reference
from fulfillment.infra.event_bus import EventTypes
from fulfillment.shared.models.common import Actor

SECRET = "sk_test_secret"


def _payment(order_id: str, reference: str, method: PaymentMethod = PaymentMethod.PAYSTACK, **overrides) -> Payment:
    data = {
        "id": f"pay-{reference}",
        "order_id": order_id,
        "method": method,
        "gateway_reference": reference,
        "amount": Decimal("15000.00"),
        "created_at": datetime(2026, 10, 1, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return Payment(**data)


def _charge_body(reference: str, event: str = "charge.success") -> bytes:
    return json.dumps({"event": event, "data": {"reference": reference, "amount": 1500000}}).encode()


@pytest.fixture
def gateway_reply() -> dict:
    """Ответ Paystack verify, который вернёт mock транспорт."""
    return {"status": True, "data": {"status": "success", "amount": 1500000}}


@pytest.fixture
def env(in_memory, make_order, fake_db, recording_notifications, recording_event_bus, gateway_reply):
    orders = in_memory["orders"](
        make_order(id="o1", tracking_id="EDM-0001", trade_in_id="ti-1", trade_in_offer_id="tio-1"),
        make_order(
            id="o2",
            tracking_id="EDM-0002",
            status=OrderStatus.PENDING_COD_CONFIRMATION,
            payment_method=PaymentMethod.CASH_ON_DELIVERY,
        ),
    )
    payments = in_memory["payments"](_payment("o1", "ref-1"))
    bookings = in_memory["bookings"]()
    status_service = StatusService(fake_db, orders, bookings, recording_notifications, recording_event_bus)

    def handler(request: httpx.Request) -> httpx.Response:
        if gateway_reply.get("unreachable"):
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=gateway_reply)

    gateway = PaystackGateway(httpx.AsyncClient(transport=httpx.MockTransport(handler)), SECRET)
    service = PaymentReconciliationService(
        fake_db, payments, orders, status_service, recording_notifications, recording_event_bus, gateway
    )
    return {"service": service, "orders": orders, "payments": payments}


async def _send_webhook(service: PaymentReconciliationService, body: bytes):
    return await service.handle_webhook(body, compute_signature(SECRET, body))


class TestWebhook:
    @pytest.mark.asyncio
    async def test_success_confirms_order_once(
        self, env, recording_notifications, recording_event_bus
    ) -> None:
        body = _charge_body("ref-1")

        first = await _send_webhook(env["service"], body)

        assert first.processed is True
        assert first.reason is None
        payment = env["payments"].payments["ref-1"]
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.verified_at is not None
        order = env["orders"].orders["o1"]
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == OrderPaymentStatus.PAID
        assert env["orders"].settled == [("ti-1", "tio-1")]
        assert recording_notifications.titles_for("buyer-1") == ["Payment Successful"]
        assert recording_notifications.titles_for("supplier-1") == ["Order Confirmed"]
        assert EventTypes.PAYMENT_COMPLETED in recording_event_bus.types()
        assert EventTypes.ORDER_STATUS_CHANGED in recording_event_bus.types()

        sent_before = list(recording_notifications.sent)
        events_before = list(recording_event_bus.events)

        second = await _send_webhook(env["service"], body)

        assert second.received is True
        assert second.processed is False
        assert second.reason == "already_settled"
        assert recording_notifications.sent == sent_before
        assert recording_event_bus.events == events_before
        assert env["orders"].orders["o1"].status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_bad_signature_changes_nothing(self, env) -> None:
        body = _charge_body("ref-1")

        with pytest.raises(InvalidSignatureError):
            await env["service"].handle_webhook(body, "deadbeef")
        assert env["payments"].payments["ref-1"].status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_reference_acknowledged(self, env, recording_notifications) -> None:
        ack = await _send_webhook(env["service"], _charge_body("ref-unknown"))

        assert ack.received is True
        assert ack.processed is False
        assert ack.reason == "unknown_reference"
        assert recording_notifications.sent == []

    @pytest.mark.asyncio
    async def test_other_events_ignored(self, env) -> None:
        ack = await _send_webhook(env["service"], _charge_body("ref-1", event="transfer.success"))

        assert ack.reason == "ignored_event"
        assert env["payments"].payments["ref-1"].status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        b"not json",
        b"[1, 2]",
        b'{"event": "charge.success", "data": {}}',
        b'{"event": "charge.success", "data": "ref-1"}',
        b'{"event": "charge.success", "data": {"reference": 42}}',
    ])
    async def test_malformed_payload(self, env, body: bytes) -> None:
        with pytest.raises(UnprocessableError):
            await _send_webhook(env["service"], body)

    @pytest.mark.asyncio
    async def test_order_already_moved_still_records_payment(self, env) -> None:
        env["orders"].orders["o1"] = env["orders"].orders["o1"].model_copy(update={"status": OrderStatus.CANCELLED})

        ack = await _send_webhook(env["service"], _charge_body("ref-1"))

        assert ack.processed is True
        assert env["payments"].payments["ref-1"].status == PaymentStatus.COMPLETED
        assert env["orders"].orders["o1"].status == OrderStatus.CANCELLED
        assert env["orders"].orders["o1"].payment_status == OrderPaymentStatus.PAID


class TestVerifyByReference:
    @pytest.mark.asyncio
    async def test_buyer_verifies_success(self, env, buyer) -> None:
        result = await env["service"].verify_by_reference("ref-1", buyer)

        assert result.verified is True
        assert result.applied is True
        assert result.gateway_status == "success"
        assert env["orders"].orders["o1"].status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_failed_payment(self, env, admin, gateway_reply, recording_notifications, recording_event_bus) -> None:
        gateway_reply["data"]["status"] = "failed"

        result = await env["service"].verify_by_reference("ref-1", admin)

        assert result.verified is False
        assert result.payment.status == PaymentStatus.FAILED
        order = env["orders"].orders["o1"]
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == OrderPaymentStatus.PENDING
        assert recording_notifications.titles_for("buyer-1") == ["Payment Failed"]
        assert recording_event_bus.types() == [EventTypes.PAYMENT_FAILED]

    @pytest.mark.asyncio
    async def test_ongoing_payment_changes_nothing(self, env, buyer, gateway_reply, recording_notifications) -> None:
        gateway_reply["data"]["status"] = "ongoing"

        result = await env["service"].verify_by_reference("ref-1", buyer)

        assert result.verified is False
        assert result.gateway_status == "ongoing"
        assert env["payments"].payments["ref-1"].status == PaymentStatus.PENDING
        assert recording_notifications.sent == []

    @pytest.mark.asyncio
    async def test_after_webhook_is_noop(self, env, buyer, recording_notifications) -> None:
        await _send_webhook(env["service"], _charge_body("ref-1"))
        sent_before = list(recording_notifications.sent)

        result = await env["service"].verify_by_reference("ref-1", buyer)

        assert result.verified is True
        assert result.applied is False
        assert recording_notifications.sent == sent_before

    @pytest.mark.asyncio
    async def test_settled_payment_answers_without_gateway(self, env, buyer, gateway_reply) -> None:
        await _send_webhook(env["service"], _charge_body("ref-1"))
        gateway_reply["unreachable"] = True

        result = await env["service"].verify_by_reference("ref-1", buyer)

        assert result.verified is True
        assert result.applied is False
        assert result.payment.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pending_payment_with_gateway_down(self, env, buyer, gateway_reply) -> None:
        gateway_reply["unreachable"] = True

        with pytest.raises(UpstreamFailureError):
            await env["service"].verify_by_reference("ref-1", buyer)
        assert env["payments"].payments["ref-1"].status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_other_buyer_forbidden(self, env) -> None:
        stranger = Actor(user_id="buyer-2", role=UserRole.BUYER)

        with pytest.raises(ForbiddenError):
            await env["service"].verify_by_reference("ref-1", stranger)

    @pytest.mark.asyncio
    async def test_unknown_reference(self, env, admin) -> None:
        with pytest.raises(NotFoundError):
            await env["service"].verify_by_reference("ref-404", admin)


class TestConfirmCod:
    @pytest.mark.asyncio
    async def test_confirm_once(self, env, admin, recording_notifications) -> None:
        result = await env["service"].confirm_cod("o2", admin)

        assert result.applied is True
        order = env["orders"].orders["o2"]
        assert order.status == OrderStatus.COD_CONFIRMED
        assert order.payment_status == OrderPaymentStatus.PAID
        payment = env["payments"].payments[cod_reference("o2")]
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.method == PaymentMethod.CASH_ON_DELIVERY
        assert recording_notifications.titles_for("buyer-1") == ["Order COD Confirmed"]
        assert recording_notifications.titles_for("supplier-1") == ["Order COD Confirmed"]

        sent_before = list(recording_notifications.sent)
        with pytest.raises(UnprocessableError):
            await env["service"].confirm_cod("o2", admin)
        assert recording_notifications.sent == sent_before

    @pytest.mark.asyncio
    async def test_reuses_existing_cod_payment(self, env, admin) -> None:
        existing = _payment("o2", "cod-manual", method=PaymentMethod.CASH_ON_DELIVERY)
        env["payments"].payments["cod-manual"] = existing

        result = await env["service"].confirm_cod("o2", admin)

        assert result.payment.id == existing.id
        assert cod_reference("o2") not in env["payments"].payments

    @pytest.mark.asyncio
    async def test_admin_only(self, env, supplier) -> None:
        with pytest.raises(ForbiddenError):
            await env["service"].confirm_cod("o2", supplier)

    @pytest.mark.asyncio
    async def test_prepaid_order_rejected(self, env, admin) -> None:
        with pytest.raises(UnprocessableError) as exc:
            await env["service"].confirm_cod("o1", admin)
        assert exc.value.details["status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_missing_order(self, env, admin) -> None:
        with pytest.raises(NotFoundError):
            await env["service"].confirm_cod("o404", admin)


class TestLockOrder:
    @pytest.mark.asyncio
    async def test_webhook_locks_order_before_payment(
        self, mock_db, make_order, mock_notifications, mock_event_bus
    ) -> None:
        """Тот же порядок блокировок, что и в confirm_cod: заказ, затем платёж."""
        calls = MagicMock()
        orders = AsyncMock()
        payments = AsyncMock()
        calls.attach_mock(orders, "orders")
        calls.attach_mock(payments, "payments")
        reference = cod_reference("o2")
        payments.get_by_reference.return_value = _payment(
            "o2", reference, method=PaymentMethod.CASH_ON_DELIVERY, status=PaymentStatus.COMPLETED
        )
        orders.get_by_id.return_value = make_order(id="o2", status=OrderStatus.COD_CONFIRMED)
        gateway = PaystackGateway(httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))), SECRET)
        service = PaymentReconciliationService(
            mock_db, payments, orders, AsyncMock(), mock_notifications, mock_event_bus, gateway
        )

        ack = await _send_webhook(service, _charge_body(reference))

        assert ack.reason == "already_settled"
        locking = [c[0] for c in calls.mock_calls if c.kwargs.get("for_update")]
        assert locking == ["orders.get_by_id", "payments.get_by_reference"]
        mock_notifications.broadcast.assert_not_called()
