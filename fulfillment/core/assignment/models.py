# fulfillment/core/assignment/models.py
"""
Модели исполнителей и результата назначения.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from fulfillment.common.constants import ProviderType, SubjectType


class ProviderSummary(BaseModel):
    """Исполнитель в проекции трекинга. phone скрыт в публичном ответе."""

    id: str
    name: str
    provider_type: ProviderType
    phone: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ProviderProfile(BaseModel):
    """Профиль механика или логиста."""

    user_id: str
    provider_type: ProviderType
    display_name: str
    phone: Optional[str] = None
    verified: bool = False
    approved: bool = False

    class Config:
        from_attributes = True

    @property
    def is_eligible(self) -> bool:
        return self.verified and self.approved

    def summary(self) -> ProviderSummary:
        return ProviderSummary(
            id=self.user_id,
            name=self.display_name,
            provider_type=self.provider_type,
            phone=self.phone,
        )


class AssignmentResult(BaseModel):
    subject_id: str
    subject_type: SubjectType
    provider: ProviderSummary
    previous_provider_id: Optional[str] = None
    tracking_created: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True
