# fulfillment/services/fulfillment_service/routes.py
"""
HTTP маршруты Fulfillment Service (префикс /api/v1).
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from fulfillment.common.exceptions import NotFoundError
from fulfillment.core.assignment.models import AssignmentResult
from fulfillment.core.assignment.service import AssignmentService
from fulfillment.core.notifications.models import DeviceToken, Notification, PushSubscription
from fulfillment.core.notifications.service import NotificationService
from fulfillment.core.orders.models import TransitionResult
from fulfillment.core.orders.service import StatusService
from fulfillment.core.payments.models import WebhookAck
from fulfillment.core.payments.service import PaymentReconciliationService
from fulfillment.core.tracking.models import TrackingHistoryPage, TrackingUpdate, TrackingView
from fulfillment.core.tracking.service import TrackingService
from fulfillment.services.fulfillment_service.dependencies import (
    get_actor,
    get_assignment_service,
    get_notification_service,
    get_payment_service,
    get_status_service,
    get_tracking_service,
)
from fulfillment.services.fulfillment_service.schemas import (
    AssignProviderRequest,
    ConfirmCodResponse,
    DeviceRegistrationRequest,
    StatusUpdateRequest,
    SuccessResponse,
    TrackingUpdateRequest,
    TransitionResponse,
    VapidKeyResponse,
    VerifyPaymentResponse,
    WebSubscriptionRequest,
)
from fulfillment.shared.models.common import Actor, ErrorResponse

router = APIRouter()

ActorDep = Annotated[Actor, Depends(get_actor)]

_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        subject_id=result.subject_id,
        subject_type=result.subject_type.value,
        previous_status=result.previous_status,
        status=result.new_status,
        order=result.order,
        booking=result.booking,
    )


# === STATUS ===

@router.patch(
    "/orders/{order_id}/status",
    response_model=TransitionResponse,
    responses={**_ERRORS, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Сменить статус заказа",
)
async def update_order_status(
    order_id: str,
    request: StatusUpdateRequest,
    actor: ActorDep,
    service: Annotated[StatusService, Depends(get_status_service)],
) -> TransitionResponse:
    result = await service.transition_order(order_id, request.status, actor)
    return _transition_response(result)


@router.patch(
    "/bookings/{booking_id}/status",
    response_model=TransitionResponse,
    responses={**_ERRORS, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    tags=["Bookings"],
    summary="Сменить статус бронирования",
)
async def update_booking_status(
    booking_id: str,
    request: StatusUpdateRequest,
    actor: ActorDep,
    service: Annotated[StatusService, Depends(get_status_service)],
) -> TransitionResponse:
    result = await service.transition_booking(booking_id, request.status, actor)
    return _transition_response(result)


# === PAYMENTS ===

@router.post(
    "/payments/webhook",
    response_model=WebhookAck,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    tags=["Payments"],
    summary="Webhook платёжного шлюза",
)
async def payment_webhook(
    request: Request,
    service: Annotated[PaymentReconciliationService, Depends(get_payment_service)],
) -> WebhookAck:
    """Подпись проверяется по сырому телу запроса."""
    from fulfillment.config import settings

    raw_body = await request.body()
    signature = request.headers.get(settings.payments.WEBHOOK_SIGNATURE_HEADER)
    return await service.handle_webhook(raw_body, signature)


@router.get(
    "/payments/verify/{reference}",
    response_model=VerifyPaymentResponse,
    responses={**_ERRORS, 422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Payments"],
    summary="Проверить платёж по reference",
)
async def verify_payment(
    reference: str,
    actor: ActorDep,
    service: Annotated[PaymentReconciliationService, Depends(get_payment_service)],
) -> VerifyPaymentResponse:
    result = await service.verify_by_reference(reference, actor)
    return VerifyPaymentResponse(
        verified=result.verified,
        payment=result.payment,
        gateway_status=result.gateway_status,
    )


@router.post(
    "/admin/orders/{order_id}/confirm-cod",
    response_model=ConfirmCodResponse,
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
    tags=["Payments"],
    summary="Подтвердить оплату наличными",
)
async def confirm_cod(
    order_id: str,
    actor: ActorDep,
    service: Annotated[PaymentReconciliationService, Depends(get_payment_service)],
) -> ConfirmCodResponse:
    result = await service.confirm_cod(order_id, actor)
    return ConfirmCodResponse(order=result.order, payment=result.payment, applied=result.applied)


# === TRACKING ===

@router.get(
    "/tracking/{subject_id}",
    response_model=TrackingView,
    responses=_ERRORS,
    tags=["Tracking"],
    summary="Трекинг заказа или бронирования",
)
async def get_tracking(
    subject_id: str,
    actor: ActorDep,
    service: Annotated[TrackingService, Depends(get_tracking_service)],
) -> TrackingView:
    return await service.get_tracking(subject_id, actor)


@router.get(
    "/tracking/{subject_id}/events",
    response_model=TrackingHistoryPage,
    responses=_ERRORS,
    tags=["Tracking"],
    summary="История трекинга (постранично)",
)
async def get_tracking_events(
    subject_id: str,
    actor: ActorDep,
    service: Annotated[TrackingService, Depends(get_tracking_service)],
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> TrackingHistoryPage:
    return await service.get_history(subject_id, actor, limit=limit, offset=offset)


@router.patch(
    "/tracking/{subject_id}",
    response_model=TrackingView,
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
    tags=["Tracking"],
    summary="Обновить трекинг",
)
async def update_tracking(
    subject_id: str,
    request: TrackingUpdateRequest,
    actor: ActorDep,
    service: Annotated[TrackingService, Depends(get_tracking_service)],
) -> TrackingView:
    update = TrackingUpdate(
        status=request.status,
        location=request.location,
        estimated_arrival=request.estimated_delivery_date,
        message=request.message,
    )
    return await service.upsert_tracking_status(subject_id, update, actor)


@router.post(
    "/tracking/{subject_id}/assign",
    response_model=AssignmentResult,
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
    tags=["Tracking"],
    summary="Назначить исполнителя",
)
async def assign_provider(
    subject_id: str,
    request: AssignProviderRequest,
    actor: ActorDep,
    service: Annotated[AssignmentService, Depends(get_assignment_service)],
) -> AssignmentResult:
    return await service.assign(subject_id, request.provider_id, actor)


@router.get(
    "/track/{tracking_code}",
    response_model=TrackingView,
    responses={404: {"model": ErrorResponse}},
    tags=["Tracking"],
    summary="Публичный трекинг по коду заказа",
)
async def track_by_code(
    tracking_code: str,
    service: Annotated[TrackingService, Depends(get_tracking_service)],
) -> TrackingView:
    return await service.track_by_code(tracking_code)


# === PUSH ===

@router.get(
    "/push/vapid-key",
    response_model=VapidKeyResponse,
    response_model_by_alias=True,
    responses={404: {"model": ErrorResponse}},
    tags=["Push"],
    summary="Публичный VAPID ключ для подписки браузера",
)
async def get_vapid_key() -> VapidKeyResponse:
    from fulfillment.config import settings

    if not settings.push.web_push_enabled:
        raise NotFoundError("Web push is not configured")
    return VapidKeyResponse(public_key=settings.push.VAPID_PUBLIC_KEY)


@router.post(
    "/push/subscriptions",
    response_model=PushSubscription,
    status_code=status.HTTP_201_CREATED,
    tags=["Push"],
    summary="Подписка браузера на web push",
)
async def subscribe_web_push(
    request: WebSubscriptionRequest,
    actor: ActorDep,
    service: Annotated[NotificationService, Depends(get_notification_service)],
) -> PushSubscription:
    return await service.subscribe_web(
        actor,
        endpoint=request.endpoint,
        p256dh=request.keys.p256dh,
        auth=request.keys.auth,
        user_agent=request.user_agent,
    )


@router.delete(
    "/push/subscriptions",
    response_model=SuccessResponse,
    responses=_ERRORS,
    tags=["Push"],
    summary="Отписка браузера",
)
async def unsubscribe_web_push(
    actor: ActorDep,
    service: Annotated[NotificationService, Depends(get_notification_service)],
    endpoint: str = Query(..., min_length=1),
) -> SuccessResponse:
    await service.unsubscribe_web(actor, endpoint)
    return SuccessResponse()


@router.post(
    "/push/devices",
    response_model=DeviceToken,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
    tags=["Push"],
    summary="Регистрация мобильного устройства",
)
async def register_device(
    request: DeviceRegistrationRequest,
    actor: ActorDep,
    service: Annotated[NotificationService, Depends(get_notification_service)],
) -> DeviceToken:
    return await service.register_device(actor, request.device_token, request.platform)


@router.delete(
    "/push/devices",
    response_model=SuccessResponse,
    responses=_ERRORS,
    tags=["Push"],
    summary="Отключение мобильного устройства",
)
async def unregister_device(
    actor: ActorDep,
    service: Annotated[NotificationService, Depends(get_notification_service)],
    device_token: str = Query(..., alias="deviceToken", min_length=1),
) -> SuccessResponse:
    await service.unregister_device(actor, device_token)
    return SuccessResponse()


# === NOTIFICATIONS ===

@router.get(
    "/notifications",
    response_model=list[Notification],
    responses={401: {"model": ErrorResponse}},
    tags=["Notifications"],
    summary="Мои уведомления",
)
async def list_notifications(
    actor: ActorDep,
    service: Annotated[NotificationService, Depends(get_notification_service)],
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[Notification]:
    return await service.list_notifications(actor, unread_only=unread_only, limit=limit, offset=offset)


@router.patch(
    "/notifications/{notification_id}/read",
    response_model=Notification,
    responses=_ERRORS,
    tags=["Notifications"],
    summary="Отметить уведомление прочитанным",
)
async def mark_notification_read(
    notification_id: str,
    actor: ActorDep,
    service: Annotated[NotificationService, Depends(get_notification_service)],
) -> Notification:
    return await service.mark_read(notification_id, actor)
