# fulfillment/common/__init__.py
"""
Общие утилиты, константы, ошибки и логгер.
"""

from fulfillment.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from fulfillment.common.constants import TypeMsg
from fulfillment.common.exceptions import (
    ConflictError,
    ForbiddenError,
    FulfillmentError,
    InvalidSignatureError,
    InvalidTransitionError,
    NotFoundError,
    UnauthenticatedError,
    UnprocessableError,
    UpstreamFailureError,
)

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "FulfillmentError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidTransitionError",
    "ConflictError",
    "UnprocessableError",
    "InvalidSignatureError",
    "UpstreamFailureError",
    "UnauthenticatedError",
]
