# fulfillment/core/orders/repository.py
"""
Репозитории заказов и бронирований.

Методы принимают необязательный conn: при его передаче запросы
выполняются в транзакции вызывающего.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from asyncpg import Connection, Record

from fulfillment.common.constants import (
    BookingStatus,
    OrderPaymentStatus,
    OrderStatus,
    TRADE_IN_SETTLED,
)
from fulfillment.core.orders.models import Booking, Order, Subject
from fulfillment.infra.database import DatabaseManager

Executor = Union[DatabaseManager, Connection]

_ORDER_COLUMNS = (
    "id, buyer_id, tracking_id, status, payment_status, payment_method, total_amount, "
    "trade_in_id, trade_in_offer_id, paid_at, created_at, updated_at"
)

_ORDER_SELECT = """
    SELECT o.id, o.buyer_id, o.tracking_id, o.status, o.payment_status, o.payment_method,
           o.total_amount, o.trade_in_id, o.trade_in_offer_id, o.paid_at, o.created_at, o.updated_at,
           ARRAY(
               SELECT DISTINCT oi.supplier_id FROM order_items oi
               WHERE oi.order_id = o.id
               ORDER BY oi.supplier_id
           ) AS supplier_ids
    FROM orders o
"""

_BOOKING_COLUMNS = "id, booking_type, requester_id, provider_id, status, created_at, updated_at"


def _row_to_order(row: Record, supplier_ids: Optional[list[str]] = None) -> Order:
    data = dict(row)
    if supplier_ids is not None:
        data["supplier_ids"] = supplier_ids
    data["supplier_ids"] = list(data.get("supplier_ids") or [])
    return Order(**data)


class OrderRepository:
    """Репозиторий заказов."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Optional[Connection]) -> Executor:
        return conn if conn is not None else self._db

    async def get_by_id(
        self,
        order_id: str,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[Order]:
        """Заказ с уникальными поставщиками. for_update блокирует строку заказа."""
        query = _ORDER_SELECT + " WHERE o.id = $1"
        if for_update:
            query += " FOR UPDATE OF o"
        row = await self._executor(conn).fetchrow(query, order_id)
        return _row_to_order(row) if row else None

    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        row = await self._db.fetchrow(_ORDER_SELECT + " WHERE o.tracking_id = $1", tracking_id)
        return _row_to_order(row) if row else None

    async def compare_and_set_status(
        self,
        conn: Connection,
        order: Order,
        new_status: OrderStatus,
    ) -> Optional[Order]:
        """
        Условное обновление статуса.

        Returns:
            Обновлённый заказ или None, если статус в БД уже не равен order.status
        """
        row = await conn.fetchrow(
            f"""
            UPDATE orders
            SET status = $3, updated_at = NOW()
            WHERE id = $1 AND status = $2
            RETURNING {_ORDER_COLUMNS}
            """,
            order.id,
            order.status.value,
            new_status.value,
        )
        return _row_to_order(row, order.supplier_ids) if row else None

    async def mark_paid(self, conn: Connection, order_id: str) -> Optional[datetime]:
        """PENDING -> PAID. Returns paid_at или None, если оплата уже проставлена."""
        return await conn.fetchval(
            """
            UPDATE orders
            SET payment_status = $2, paid_at = NOW(), updated_at = NOW()
            WHERE id = $1 AND payment_status = $3
            RETURNING paid_at
            """,
            order_id,
            OrderPaymentStatus.PAID.value,
            OrderPaymentStatus.PENDING.value,
        )

    async def settle_trade_ins(
        self,
        conn: Connection,
        trade_in_id: Optional[str],
        trade_in_offer_id: Optional[str],
    ) -> None:
        if trade_in_id:
            await conn.execute(
                "UPDATE trade_ins SET status = $2, updated_at = NOW() WHERE id = $1",
                trade_in_id,
                TRADE_IN_SETTLED,
            )
        if trade_in_offer_id:
            await conn.execute(
                "UPDATE trade_in_offers SET status = $2, updated_at = NOW() WHERE id = $1",
                trade_in_offer_id,
                TRADE_IN_SETTLED,
            )


class BookingRepository:
    """Репозиторий бронирований механиков и логистики."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_by_id(
        self,
        booking_id: str,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[Booking]:
        executor: Executor = conn if conn is not None else self._db
        query = f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await executor.fetchrow(query, booking_id)
        return Booking(**dict(row)) if row else None

    async def compare_and_set_status(
        self,
        conn: Connection,
        booking: Booking,
        new_status: BookingStatus,
    ) -> Optional[Booking]:
        row = await conn.fetchrow(
            f"""
            UPDATE bookings
            SET status = $3, updated_at = NOW()
            WHERE id = $1 AND status = $2
            RETURNING {_BOOKING_COLUMNS}
            """,
            booking.id,
            booking.status.value,
            new_status.value,
        )
        return Booking(**dict(row)) if row else None

    async def set_provider(self, conn: Connection, booking_id: str, provider_id: str) -> None:
        await conn.execute(
            "UPDATE bookings SET provider_id = $2, updated_at = NOW() WHERE id = $1",
            booking_id,
            provider_id,
        )


class SubjectRepository:
    """Поиск объекта трекинга: сначала среди заказов, затем среди бронирований."""

    def __init__(self, orders: OrderRepository, bookings: BookingRepository) -> None:
        self._orders = orders
        self._bookings = bookings

    async def get(self, subject_id: str, conn: Optional[Connection] = None) -> Optional[Subject]:
        order = await self._orders.get_by_id(subject_id, conn=conn)
        if order is not None:
            return Subject.from_order(order)
        booking = await self._bookings.get_by_id(subject_id, conn=conn)
        if booking is not None:
            return Subject.from_booking(booking)
        return None

    async def get_by_tracking_code(self, tracking_code: str) -> Optional[Subject]:
        order = await self._orders.get_by_tracking_id(tracking_code)
        return Subject.from_order(order) if order else None

    async def set_booking_provider(self, conn: Connection, booking_id: str, provider_id: str) -> None:
        await self._bookings.set_provider(conn, booking_id, provider_id)
