# fulfillment/core/assignment/__init__.py
"""
Назначение исполнителей.

AssignmentService импортируется из fulfillment.core.assignment.service:
он зависит от трекинга, а трекинг - от моделей этого пакета.
"""

from fulfillment.core.assignment.models import AssignmentResult, ProviderProfile, ProviderSummary
from fulfillment.core.assignment.repository import ProviderRepository

__all__ = [
    "AssignmentResult",
    "ProviderProfile",
    "ProviderRepository",
    "ProviderSummary",
]
