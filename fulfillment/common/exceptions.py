# fulfillment/common/exceptions.py
"""
Иерархия доменных ошибок.
Каждая ошибка несёт error_code и HTTP статус для ответа API.
"""

from __future__ import annotations

from typing import Any


class FulfillmentError(Exception):
    """Базовая ошибка доменного слоя."""

    error_code: str = "error"
    status_code: int = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(FulfillmentError):
    """Объект не найден."""
    error_code = "not_found"
    status_code = 404


class ForbiddenError(FulfillmentError):
    """Неверная роль или нет отношения к объекту."""
    error_code = "forbidden"
    status_code = 403


class InvalidTransitionError(FulfillmentError):
    """Переход отсутствует в графе статусов."""
    error_code = "invalid_transition"
    status_code = 409


class ConflictError(FulfillmentError):
    """Статус изменён конкурентным запросом, нужно перечитать и повторить."""
    error_code = "conflict"
    status_code = 409


class UnprocessableError(FulfillmentError):
    """Не выполнено бизнес-условие."""
    error_code = "unprocessable"
    status_code = 422


class InvalidSignatureError(FulfillmentError):
    """Подпись вебхука не совпала."""
    error_code = "invalid_signature"
    status_code = 401


class UpstreamFailureError(FulfillmentError):
    """Ошибка внешнего провайдера (шлюз оплаты, push)."""
    error_code = "upstream_failure"
    status_code = 502


class UnauthenticatedError(FulfillmentError):
    """Нет или неверна идентичность вызывающего."""
    error_code = "unauthenticated"
    status_code = 401
