# fulfillment/core/payments/repository.py
"""
Репозиторий платежей.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import uuid4

from asyncpg import Connection

from fulfillment.common.constants import PaymentMethod, PaymentStatus
from fulfillment.core.payments.models import Payment
from fulfillment.infra.database import DatabaseManager

_PAYMENT_COLUMNS = "id, order_id, method, gateway_reference, amount, status, verified_at, created_at"


class PaymentRepository:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_by_reference(
        self,
        reference: str,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[Payment]:
        executor = conn if conn is not None else self._db
        query = f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE gateway_reference = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await executor.fetchrow(query, reference)
        return Payment(**dict(row)) if row else None

    async def get_cod_for_order(self, conn: Connection, order_id: str) -> Optional[Payment]:
        """Последний COD-платёж заказа (с блокировкой)."""
        row = await conn.fetchrow(
            f"""
            SELECT {_PAYMENT_COLUMNS} FROM payments
            WHERE order_id = $1 AND method = $2
            ORDER BY created_at DESC
            LIMIT 1
            FOR UPDATE
            """,
            order_id,
            PaymentMethod.CASH_ON_DELIVERY.value,
        )
        return Payment(**dict(row)) if row else None

    async def create(
        self,
        conn: Connection,
        order_id: str,
        method: PaymentMethod,
        reference: str,
        amount: Decimal,
    ) -> Payment:
        """Создаёт pending-платёж; при существующем reference возвращает его."""
        row = await conn.fetchrow(
            f"""
            INSERT INTO payments (id, order_id, method, gateway_reference, amount)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (gateway_reference) DO NOTHING
            RETURNING {_PAYMENT_COLUMNS}
            """,
            str(uuid4()),
            order_id,
            method.value,
            reference,
            amount,
        )
        if row is None:
            existing = await self.get_by_reference(reference, conn=conn, for_update=True)
            if existing is None:
                raise RuntimeError(f"Payment {reference} vanished during creation")
            return existing
        return Payment(**dict(row))

    async def finalize(self, conn: Connection, payment_id: str, status: PaymentStatus) -> Optional[Payment]:
        """pending -> completed|failed. None, если платёж уже терминальный."""
        row = await conn.fetchrow(
            f"""
            UPDATE payments
            SET status = $2, verified_at = NOW()
            WHERE id = $1 AND status = $3
            RETURNING {_PAYMENT_COLUMNS}
            """,
            payment_id,
            status.value,
            PaymentStatus.PENDING.value,
        )
        return Payment(**dict(row)) if row else None
