# fulfillment/core/payments/gateway.py
"""
Клиент платёжного шлюза Paystack: проверка подписи webhook и verify по reference.
"""

from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import httpx

from fulfillment.common.exceptions import InvalidSignatureError, UnprocessableError, UpstreamFailureError
from fulfillment.common.logger import log_warning
from fulfillment.core.payments.models import GATEWAY_STATUS_OUTCOMES, GatewayVerification


def compute_signature(secret_key: str, raw_body: bytes) -> str:
    """hex HMAC-SHA512 тела запроса."""
    return hmac.new(secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaystackGateway:
    """
    Paystack API.

    Сетевые ошибки и 5xx -> UpstreamFailureError: вызывающий (шлюз или
    планировщик повторной проверки) повторит запрос сам.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
    ) -> None:
        self._client = http_client
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Raises:
            InvalidSignatureError: подписи нет, секрет не задан или подпись не совпала
        """
        if not signature:
            raise InvalidSignatureError("Missing webhook signature")
        if not self._secret_key:
            raise InvalidSignatureError("Webhook secret is not configured")

        expected = compute_signature(self._secret_key, raw_body)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise InvalidSignatureError("Webhook signature mismatch")

    async def verify(self, reference: str) -> GatewayVerification:
        url = f"{self._base_url}/transaction/verify/{quote(reference, safe='')}"
        try:
            response = await self._client.get(
                url,
                headers={"Authorization": f"Bearer {self._secret_key}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            await log_warning(f"Paystack недоступен: {e}", extra={"reference": reference})
            raise UpstreamFailureError("Payment gateway is unreachable", details={"reference": reference}) from e

        if response.status_code >= 500:
            await log_warning(
                f"Paystack вернул {response.status_code}",
                extra={"reference": reference},
            )
            raise UpstreamFailureError(
                "Payment gateway error",
                details={"reference": reference, "gateway_status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamFailureError("Payment gateway returned malformed response") from e
        if not isinstance(body, dict):
            raise UpstreamFailureError("Payment gateway returned malformed response")

        if not body.get("status"):
            raise UnprocessableError(
                body.get("message") or "Payment gateway could not verify this reference",
                details={"reference": reference},
            )

        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise UpstreamFailureError("Payment gateway returned malformed response")
        gateway_status = str(data.get("status") or "")
        amount = data.get("amount")
        return GatewayVerification(
            reference=reference,
            gateway_status=gateway_status,
            outcome=GATEWAY_STATUS_OUTCOMES.get(gateway_status),
            # Суммы Paystack в минимальных единицах (kobo)
            amount=Decimal(str(amount)) / 100 if amount is not None else None,
            raw=data,
        )
