# fulfillment/core/tracking/repository.py
"""
Репозиторий записей трекинга и журнала событий.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from asyncpg import Connection, Record

from fulfillment.common.constants import SubjectType, TrackingStatus
from fulfillment.core.tracking.models import TrackingEvent, TrackingRecord
from fulfillment.infra.database import DatabaseManager
from fulfillment.shared.models.common import Location

_RECORD_COLUMNS = (
    "id, subject_id, subject_type, status, assigned_provider_id, "
    "current_location, estimated_arrival, created_at, updated_at"
)
_EVENT_COLUMNS = "id, tracking_record_id, status, location, message, created_at"


def _encode_location(location: Optional[Location]) -> Optional[str]:
    if location is None:
        return None
    return json.dumps(location.model_dump(), ensure_ascii=False)


def _decode_location(value: Any) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_record(row: Record) -> TrackingRecord:
    data = dict(row)
    data["current_location"] = _decode_location(data.get("current_location"))
    return TrackingRecord(**data)


def _row_to_event(row: Record) -> TrackingEvent:
    data = dict(row)
    data["location"] = _decode_location(data.get("location"))
    return TrackingEvent(**data)


class TrackingRepository:
    """Записи трекинга и события. Изменения только в транзакции вызывающего."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_by_subject(
        self,
        subject_id: str,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[TrackingRecord]:
        executor = conn if conn is not None else self._db
        query = f"SELECT {_RECORD_COLUMNS} FROM tracking_records WHERE subject_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await executor.fetchrow(query, subject_id)
        return _row_to_record(row) if row else None

    async def create(
        self,
        conn: Connection,
        subject_id: str,
        subject_type: SubjectType,
        status: TrackingStatus,
    ) -> TrackingRecord:
        """Создаёт запись; при гонке создания возвращает существующую (заблокированную)."""
        row = await conn.fetchrow(
            f"""
            INSERT INTO tracking_records (id, subject_id, subject_type, status)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (subject_id) DO NOTHING
            RETURNING {_RECORD_COLUMNS}
            """,
            str(uuid4()),
            subject_id,
            subject_type.value,
            status.value,
        )
        if row is None:
            existing = await self.get_by_subject(subject_id, conn=conn, for_update=True)
            if existing is None:
                raise RuntimeError(f"Tracking record for {subject_id} vanished during creation")
            return existing
        return _row_to_record(row)

    async def update_record(
        self,
        conn: Connection,
        record_id: str,
        status: TrackingStatus,
        location: Optional[Location] = None,
        estimated_arrival: Optional[datetime] = None,
    ) -> TrackingRecord:
        """Позиция и ETA обновляются, только если переданы."""
        row = await conn.fetchrow(
            f"""
            UPDATE tracking_records
            SET status = $2,
                current_location = COALESCE($3::jsonb, current_location),
                estimated_arrival = COALESCE($4, estimated_arrival),
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_RECORD_COLUMNS}
            """,
            record_id,
            status.value,
            _encode_location(location),
            estimated_arrival,
        )
        return _row_to_record(row)

    async def upsert_assignment(
        self,
        conn: Connection,
        subject_id: str,
        subject_type: SubjectType,
        provider_id: str,
    ) -> tuple[TrackingRecord, bool]:
        """
        Назначает исполнителя (last-write-wins).

        Returns:
            (запись, создана ли она этим вызовом). Статус ASSIGNED
            выставляется только при создании.
        """
        row = await conn.fetchrow(
            f"""
            INSERT INTO tracking_records (id, subject_id, subject_type, status, assigned_provider_id)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (subject_id) DO UPDATE
            SET assigned_provider_id = EXCLUDED.assigned_provider_id,
                updated_at = NOW()
            RETURNING {_RECORD_COLUMNS}, (xmax = 0) AS created
            """,
            str(uuid4()),
            subject_id,
            subject_type.value,
            TrackingStatus.ASSIGNED.value,
            provider_id,
        )
        data = dict(row)
        created = bool(data.pop("created"))
        return _row_to_record(data), created

    async def append_event(
        self,
        conn: Connection,
        record_id: str,
        status: TrackingStatus,
        message: str,
        location: Optional[Location] = None,
    ) -> TrackingEvent:
        row = await conn.fetchrow(
            f"""
            INSERT INTO tracking_events (id, tracking_record_id, status, location, message)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            RETURNING {_EVENT_COLUMNS}
            """,
            str(uuid4()),
            record_id,
            status.value,
            _encode_location(location),
            message,
        )
        return _row_to_event(row)

    async def list_events(
        self,
        record_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TrackingEvent]:
        """События по возрастанию времени. limit=None - вся история."""
        rows = await self._db.fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM tracking_events
            WHERE tracking_record_id = $1
            ORDER BY created_at ASC, id ASC
            LIMIT $2 OFFSET $3
            """,
            record_id,
            limit,
            offset,
        )
        return [_row_to_event(row) for row in rows]

    async def count_events(self, record_id: str) -> int:
        return await self._db.fetchval(
            "SELECT COUNT(*) FROM tracking_events WHERE tracking_record_id = $1",
            record_id,
        )
