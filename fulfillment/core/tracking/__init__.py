# fulfillment/core/tracking/__init__.py
"""Трекинг заказов и бронирований."""

from fulfillment.core.tracking.models import (
    TRACKING_STATUSES,
    TrackingEvent,
    TrackingHistoryPage,
    TrackingRecord,
    TrackingUpdate,
    TrackingView,
)
from fulfillment.core.tracking.repository import TrackingRepository
from fulfillment.core.tracking.service import TrackingService, tracking_cache_key

__all__ = [
    "TRACKING_STATUSES",
    "TrackingEvent",
    "TrackingHistoryPage",
    "TrackingRecord",
    "TrackingRepository",
    "TrackingService",
    "TrackingUpdate",
    "TrackingView",
    "tracking_cache_key",
]
