# fulfillment/core/assignment/repository.py
"""
Репозиторий профилей исполнителей.
"""

from __future__ import annotations

from typing import Optional

from asyncpg import Connection

from fulfillment.core.assignment.models import ProviderProfile
from fulfillment.infra.database import DatabaseManager

_PROFILE_COLUMNS = "user_id, provider_type, display_name, phone, verified, approved"


class ProviderRepository:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_profile(self, user_id: str, conn: Optional[Connection] = None) -> Optional[ProviderProfile]:
        executor = conn if conn is not None else self._db
        row = await executor.fetchrow(
            f"SELECT {_PROFILE_COLUMNS} FROM provider_profiles WHERE user_id = $1",
            user_id,
        )
        return ProviderProfile(**dict(row)) if row else None
