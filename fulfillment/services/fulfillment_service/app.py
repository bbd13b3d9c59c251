# fulfillment/services/fulfillment_service/app.py
"""
FastAPI приложение Fulfillment Service.

Endpoints (префикс /api/v1):
- PATCH /orders/{id}/status, /bookings/{id}/status - смена статуса
- POST /payments/webhook, GET /payments/verify/{reference} - сверка платежей
- POST /admin/orders/{id}/confirm-cod - подтверждение оплаты наличными
- GET/PATCH /tracking/{subject_id}, GET /tracking/{subject_id}/events - трекинг
- POST /tracking/{subject_id}/assign - назначение исполнителя
- GET /track/{tracking_code} - публичный трекинг
- GET /push/vapid-key - публичный VAPID ключ
- POST/DELETE /push/subscriptions, /push/devices - push-подписки
- GET /notifications, PATCH /notifications/{id}/read - входящие
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fulfillment import __version__
from fulfillment.common.constants import TypeMsg
from fulfillment.common.exceptions import FulfillmentError
from fulfillment.common.logger import log_error, log_info, setup_logging
from fulfillment.infra.database import close_db, get_db, init_db
from fulfillment.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from fulfillment.infra.redis_client import close_redis, get_redis, init_redis
from fulfillment.services.fulfillment_service.dependencies import cleanup_dependencies, init_dependencies
from fulfillment.services.fulfillment_service.routes import router
from fulfillment.shared.models.common import ErrorResponse, HealthStatus

SERVICE_NAME = "fulfillment_service"


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    from fulfillment.config import settings

    setup_logging()
    db = await init_db()
    redis = await init_redis()
    event_bus = await init_event_bus()
    http_client = httpx.AsyncClient(timeout=settings.payments.GATEWAY_TIMEOUT)

    await init_dependencies(db, redis, event_bus, http_client)
    await log_info(f"{SERVICE_NAME} запущен", type_msg=TypeMsg.INFO)

    yield

    await cleanup_dependencies()
    await http_client.aclose()
    await close_event_bus()
    await close_redis()
    await close_db()
    await log_info(f"{SERVICE_NAME} остановлен", type_msg=TypeMsg.INFO)


# === APP ===

app = FastAPI(
    title="Fulfillment Service",
    description="Статусы заказов и бронирований, сверка платежей, трекинг, назначения, уведомления.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    """Доменные ошибки -> ErrorResponse с их HTTP статусом."""
    if exc.status_code >= 500:
        await log_error(
            f"{request.method} {request.url.path}: {exc.message}",
            extra={"error_code": exc.error_code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details,
        ).model_dump(mode="json"),
    )


app.include_router(router, prefix="/api/v1")


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса и его зависимостей."""
    dependencies = {
        "postgres": "ok" if await get_db().health_check() else "unavailable",
        "redis": "ok" if await get_redis().health_check() else "unavailable",
        "rabbitmq": "ok" if await get_event_bus().health_check() else "unavailable",
    }
    healthy = all(value == "ok" for value in dependencies.values())
    return HealthStatus(
        service=SERVICE_NAME,
        status="healthy" if healthy else "degraded",
        version=__version__,
        dependencies=dependencies,
    )
