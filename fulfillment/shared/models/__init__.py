# fulfillment/shared/models/__init__.py
from fulfillment.shared.models.common import (
    SYSTEM_ACTOR,
    Actor,
    ErrorResponse,
    HealthStatus,
    Location,
)

__all__ = [
    "Actor",
    "SYSTEM_ACTOR",
    "ErrorResponse",
    "HealthStatus",
    "Location",
]
