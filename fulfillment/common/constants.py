# fulfillment/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    BUYER = "BUYER"
    SUPPLIER = "SUPPLIER"
    MECHANIC = "MECHANIC"
    LOGISTICS = "LOGISTICS"
    ADMIN = "ADMIN"
    # Внутренняя роль сверки платежей, из заголовков не принимается
    SYSTEM = "SYSTEM"


class SubjectType(str, Enum):
    """Тип объекта, к которому привязан трекинг."""
    ORDER = "ORDER"
    MECHANIC_BOOKING = "MECHANIC_BOOKING"
    LOGISTICS_BOOKING = "LOGISTICS_BOOKING"


class BookingType(str, Enum):
    """Типы бронирований."""
    MECHANIC = "MECHANIC"
    LOGISTICS = "LOGISTICS"


class ProviderType(str, Enum):
    """Типы исполнителей."""
    MECHANIC = "MECHANIC"
    LOGISTICS = "LOGISTICS"


class OrderStatus(str, Enum):
    """Статусы заказа."""
    PENDING = "PENDING"
    PENDING_COD_CONFIRMATION = "PENDING_COD_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    COD_CONFIRMED = "COD_CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class BookingStatus(str, Enum):
    """Статусы бронирования (механик / логистика)."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderPaymentStatus(str, Enum):
    """Статус оплаты на заказе."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentStatus(str, Enum):
    """Статусы попытки оплаты."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    PAYSTACK = "PAYSTACK"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"


class TrackingStatus(str, Enum):
    """Операционные статусы трекинга."""
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class NotificationType(str, Enum):
    """Типы in-app уведомлений."""
    ORDER = "ORDER"
    PAYMENT = "PAYMENT"
    DELIVERY = "DELIVERY"
    BOOKING = "BOOKING"
    ASSIGNMENT = "ASSIGNMENT"


class DevicePlatform(str, Enum):
    """Платформы мобильных устройств."""
    IOS = "ios"
    ANDROID = "android"


# Статус, в который переводятся trade-in и предложения по нему после оплаты
TRADE_IN_SETTLED = "SETTLED"
