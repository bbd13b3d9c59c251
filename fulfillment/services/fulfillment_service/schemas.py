# fulfillment/services/fulfillment_service/schemas.py
"""
Модели запросов и ответов HTTP API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from fulfillment.common.constants import DevicePlatform
from fulfillment.core.orders.models import Booking, Order
from fulfillment.core.payments.models import Payment
from fulfillment.shared.models.common import Location


# === STATUS ===

class StatusUpdateRequest(BaseModel):
    """Запрос на смену бизнес-статуса."""
    status: str = Field(..., min_length=1)


class TransitionResponse(BaseModel):
    subject_id: str
    subject_type: str
    previous_status: str
    status: str
    order: Optional[Order] = None
    booking: Optional[Booking] = None


# === TRACKING ===

class TrackingUpdateRequest(BaseModel):
    """PATCH /tracking/{subject_id}. message обязателен."""
    status: Optional[str] = None
    location: Optional[Location] = None
    estimated_delivery_date: Optional[datetime] = Field(default=None, alias="estimatedDeliveryDate")
    message: str

    class Config:
        populate_by_name = True


class AssignProviderRequest(BaseModel):
    provider_id: str = Field(..., alias="providerId", min_length=1)

    class Config:
        populate_by_name = True


# === PAYMENTS ===

class VerifyPaymentResponse(BaseModel):
    verified: bool
    payment: Payment
    gateway_status: Optional[str] = None


class ConfirmCodResponse(BaseModel):
    order: Optional[Order] = None
    payment: Payment
    applied: bool


# === PUSH ===

class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class WebSubscriptionRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)
    keys: PushKeys
    user_agent: Optional[str] = Field(default=None, alias="userAgent")

    class Config:
        populate_by_name = True


class DeviceRegistrationRequest(BaseModel):
    device_token: str = Field(..., alias="deviceToken", min_length=1)
    platform: DevicePlatform

    class Config:
        populate_by_name = True


class SuccessResponse(BaseModel):
    success: bool = True


class VapidKeyResponse(BaseModel):
    public_key: str = Field(..., alias="publicKey")

    class Config:
        populate_by_name = True
