# fulfillment/core/tracking/models.py
"""
Модели трекинга: запись, события истории и проекция для чтения.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from fulfillment.common.constants import SubjectType, TrackingStatus
from fulfillment.core.assignment.models import ProviderSummary
from fulfillment.shared.models.common import Location


_ORDER_STATUSES = frozenset({
    TrackingStatus.PENDING,
    TrackingStatus.ASSIGNED,
    TrackingStatus.IN_TRANSIT,
    TrackingStatus.OUT_FOR_DELIVERY,
    TrackingStatus.DELIVERED,
    TrackingStatus.FAILED,
})

# Допустимые операционные статусы по типу объекта
TRACKING_STATUSES: dict[SubjectType, frozenset[TrackingStatus]] = {
    SubjectType.ORDER: _ORDER_STATUSES,
    SubjectType.LOGISTICS_BOOKING: _ORDER_STATUSES | {TrackingStatus.ACCEPTED},
    SubjectType.MECHANIC_BOOKING: frozenset({
        TrackingStatus.PENDING,
        TrackingStatus.ASSIGNED,
        TrackingStatus.IN_PROGRESS,
        TrackingStatus.COMPLETED,
        TrackingStatus.CANCELLED,
    }),
}


class TrackingRecord(BaseModel):
    """Живая проекция статуса и позиции (одна на объект)."""

    id: str
    subject_id: str
    subject_type: SubjectType
    status: TrackingStatus = TrackingStatus.PENDING
    assigned_provider_id: Optional[str] = None
    current_location: Optional[Location] = None
    estimated_arrival: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TrackingEvent(BaseModel):
    """Запись истории. Не изменяется после создания."""

    id: str
    tracking_record_id: str
    status: TrackingStatus
    location: Optional[Location] = None
    message: str
    created_at: datetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class TrackingUpdate(BaseModel):
    """Входные данные обновления трекинга."""

    status: Optional[str] = None
    location: Optional[Location] = None
    estimated_arrival: Optional[datetime] = None
    message: str = ""


class TrackingView(BaseModel):
    """
    Ответ на чтение трекинга.

    status - операционный статус трекинга, subject_status - бизнес-статус
    заказа/бронирования. Они могут временно расходиться.
    """

    subject_id: str
    subject_type: SubjectType
    status: TrackingStatus
    subject_status: Optional[str] = None
    tracking_code: Optional[str] = None
    current_location: Optional[Location] = None
    estimated_arrival: Optional[datetime] = None
    assigned_provider_id: Optional[str] = None
    assigned_provider: Optional[ProviderSummary] = None
    events: list[TrackingEvent] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def public(self) -> "TrackingView":
        """Копия без контактов исполнителя."""
        provider = None
        if self.assigned_provider is not None:
            provider = self.assigned_provider.model_copy(update={"phone": None})
        return self.model_copy(update={"assigned_provider": provider, "assigned_provider_id": None})


class TrackingHistoryPage(BaseModel):
    subject_id: str
    events: list[TrackingEvent]
    total: int
    limit: int
    offset: int

    class Config:
        alias_generator = to_camel
        populate_by_name = True
