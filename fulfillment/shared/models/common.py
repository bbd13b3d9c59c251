# fulfillment/shared/models/common.py
"""
Общие модели для ядра и API.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from fulfillment.common.constants import UserRole


class Actor(BaseModel):
    """Аутентифицированный участник, от имени которого выполняется операция."""

    user_id: str
    role: UserRole

    class Config:
        frozen = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# Сверка платежей действует от имени системы
SYSTEM_ACTOR = Actor(user_id="system", role=UserRole.SYSTEM)


class Location(BaseModel):
    """Последняя известная позиция исполнителя."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str | None = None


class ErrorResponse(BaseModel):
    """Стандартный ответ с ошибкой."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: str = "healthy"  # healthy, degraded
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
