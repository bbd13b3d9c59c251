# fulfillment/core/notifications/templates.py
"""
Тексты уведомлений для покупателей, поставщиков, исполнителей.
"""

from __future__ import annotations

from fulfillment.common.constants import (
    BookingStatus,
    BookingType,
    NotificationType,
    OrderStatus,
    SubjectType,
    TrackingStatus,
)
from fulfillment.core.notifications.models import NotificationPayload


def order_link(order_id: str) -> str:
    return f"/orders/{order_id}"


def tracking_link(subject_type: SubjectType, subject_id: str) -> str:
    if subject_type == SubjectType.ORDER:
        return f"/orders/{subject_id}/tracking"
    return f"/bookings/{subject_id}/tracking"


# =============================================================================
# СТАТУСЫ ЗАКАЗА
# =============================================================================

# status -> (buyer_title, buyer_message, supplier_title, supplier_message)
_ORDER_STATUS_TEXT: dict[OrderStatus, tuple[str, str, str, str]] = {
    OrderStatus.CONFIRMED: (
        "Order Confirmed",
        "Your order #{tracking_id} has been confirmed and is being prepared.",
        "Order Confirmed",
        "Order #{tracking_id} is confirmed. Please prepare it for shipping.",
    ),
    OrderStatus.PENDING_COD_CONFIRMATION: (
        "Awaiting Cash on Delivery Confirmation",
        "Your order #{tracking_id} is waiting for cash on delivery confirmation.",
        "New Cash on Delivery Order",
        "Order #{tracking_id} was placed with cash on delivery and awaits confirmation.",
    ),
    OrderStatus.COD_CONFIRMED: (
        "Order COD Confirmed",
        "Cash on delivery for your order #{tracking_id} has been confirmed.",
        "Order COD Confirmed",
        "Cash on delivery for order #{tracking_id} is confirmed. Please prepare it for shipping.",
    ),
    OrderStatus.PROCESSING: (
        "Order Processing",
        "Your order #{tracking_id} is being processed.",
        "Order Processing",
        "Order #{tracking_id} has moved to processing.",
    ),
    OrderStatus.SHIPPED: (
        "Order Shipped! 🚚",
        "Great news! Your order #{tracking_id} has been shipped and is on its way to you.",
        "Order Shipped",
        "Order #{tracking_id} has been marked as shipped.",
    ),
    OrderStatus.DELIVERED: (
        "Order Delivered! 🎉",
        "Your order #{tracking_id} has been marked as delivered. Thank you for shopping with EDMICH!",
        "Order Delivered! 💰",
        "Order #{tracking_id} has been delivered and confirmed by the buyer.",
    ),
    OrderStatus.CANCELLED: (
        "Order Cancelled",
        "Your order #{tracking_id} has been cancelled.",
        "Order Cancelled",
        "Order #{tracking_id} has been cancelled.",
    ),
}


def order_status_payloads(
    status: OrderStatus,
    order_id: str,
    tracking_id: str,
) -> tuple[NotificationPayload, NotificationPayload]:
    """Пара (покупателю, поставщику) для смены статуса заказа."""
    default = (
        "Order Update",
        "Your order #{tracking_id} status has been updated to {status}.",
        "Order Update",
        "Order #{tracking_id} status has been updated to {status}.",
    )
    buyer_title, buyer_text, supplier_title, supplier_text = _ORDER_STATUS_TEXT.get(status, default)
    data = {"orderId": order_id, "trackingId": tracking_id, "status": status.value}

    def render(text: str) -> str:
        return text.format(tracking_id=tracking_id, status=status.value)

    buyer = NotificationPayload(
        type=NotificationType.ORDER,
        title=buyer_title,
        body=render(buyer_text),
        link=order_link(order_id),
        data=data,
    )
    supplier = NotificationPayload(
        type=NotificationType.ORDER,
        title=supplier_title,
        body=render(supplier_text),
        link=f"/supplier/orders/{order_id}",
        data=data,
    )
    return buyer, supplier


# =============================================================================
# СТАТУСЫ БРОНИРОВАНИЯ
# =============================================================================

_BOOKING_STATUS_TEXT: dict[BookingStatus, str] = {
    BookingStatus.ACCEPTED: "Your booking has been accepted",
    BookingStatus.IN_PROGRESS: "Work on your booking has started",
    BookingStatus.COMPLETED: "Your booking has been completed",
    BookingStatus.CANCELLED: "Your booking has been cancelled",
}


def booking_status_payloads(
    status: BookingStatus,
    booking_id: str,
    booking_type: BookingType,
) -> tuple[NotificationPayload, NotificationPayload]:
    """Пара (заказчику, исполнителю) для смены статуса бронирования."""
    data = {"bookingId": booking_id, "bookingType": booking_type.value, "status": status.value}
    link = f"/bookings/{booking_id}"
    requester = NotificationPayload(
        type=NotificationType.BOOKING,
        title="Booking Status Update",
        body=_BOOKING_STATUS_TEXT.get(status, f"Booking status: {status.value}"),
        link=link,
        data=data,
    )
    provider = NotificationPayload(
        type=NotificationType.BOOKING,
        title="Booking Status Update",
        body=f"Booking #{booking_id[:8]} is now {status.value.replace('_', ' ').lower()}.",
        link=link,
        data=data,
    )
    return requester, provider


# =============================================================================
# ТРЕКИНГ
# =============================================================================

_TRACKING_TEXT: dict[SubjectType, dict[TrackingStatus, str]] = {
    SubjectType.ORDER: {
        TrackingStatus.PENDING: "Your order has been confirmed",
        TrackingStatus.ASSIGNED: "A delivery provider has been assigned to your order",
        TrackingStatus.IN_TRANSIT: "Your order is on its way to you",
        TrackingStatus.OUT_FOR_DELIVERY: "Your order will be delivered today",
        TrackingStatus.DELIVERED: "Your order has been delivered",
        TrackingStatus.FAILED: "There was an issue delivering your order",
    },
    SubjectType.LOGISTICS_BOOKING: {
        TrackingStatus.PENDING: "Your delivery request has been received",
        TrackingStatus.ASSIGNED: "A logistics provider has been assigned to your delivery",
        TrackingStatus.ACCEPTED: "Your delivery request has been accepted",
        TrackingStatus.IN_TRANSIT: "Your delivery is on the way",
        TrackingStatus.OUT_FOR_DELIVERY: "Your delivery is out for final delivery",
        TrackingStatus.DELIVERED: "Your delivery has been completed",
        TrackingStatus.FAILED: "There was an issue with your delivery",
    },
    SubjectType.MECHANIC_BOOKING: {
        TrackingStatus.PENDING: "Your booking has been created",
        TrackingStatus.ASSIGNED: "A mechanic has been assigned to your booking",
        TrackingStatus.IN_PROGRESS: "The mechanic has started working on your vehicle",
        TrackingStatus.COMPLETED: "Your booking has been completed",
        TrackingStatus.CANCELLED: "Your booking has been cancelled",
    },
}


def tracking_update_payload(
    subject_type: SubjectType,
    subject_id: str,
    status: TrackingStatus,
) -> NotificationPayload:
    is_order = subject_type == SubjectType.ORDER
    return NotificationPayload(
        type=NotificationType.DELIVERY if subject_type != SubjectType.MECHANIC_BOOKING else NotificationType.BOOKING,
        title="Order Status Update" if is_order else "Booking Status Update",
        body=_TRACKING_TEXT[subject_type].get(status, f"Status: {status.value}"),
        link=tracking_link(subject_type, subject_id),
        data={"subjectId": subject_id, "subjectType": subject_type.value, "trackingStatus": status.value},
    )


# =============================================================================
# НАЗНАЧЕНИЕ ИСПОЛНИТЕЛЯ
# =============================================================================

def assignment_payloads(
    subject_type: SubjectType,
    subject_id: str,
    provider_name: str,
) -> tuple[NotificationPayload, NotificationPayload]:
    """Пара (исполнителю, заказчику) при назначении."""
    data = {"subjectId": subject_id, "subjectType": subject_type.value}

    if subject_type == SubjectType.MECHANIC_BOOKING:
        requester_title = "Mechanic Assigned"
        requester_body = f"{provider_name} has been assigned to your booking and will contact you soon."
        provider_body = "You have been assigned a new mechanic booking."
    elif subject_type == SubjectType.LOGISTICS_BOOKING:
        requester_title = "Delivery Provider Assigned"
        requester_body = f"Your delivery has been assigned to {provider_name}. They will contact you shortly."
        provider_body = "You have been assigned a new delivery request."
    else:
        requester_title = "Logistics Provider Assigned"
        requester_body = f"Your order has been assigned to {provider_name}. They will be in touch soon."
        provider_body = "You have been assigned a new order delivery."

    provider = NotificationPayload(
        type=NotificationType.ASSIGNMENT,
        title="New Assignment",
        body=provider_body,
        link=f"/provider/assignments/{subject_id}",
        data=data,
    )
    requester = NotificationPayload(
        type=NotificationType.ASSIGNMENT,
        title=requester_title,
        body=requester_body,
        link=tracking_link(subject_type, subject_id),
        data=data,
    )
    return provider, requester


# =============================================================================
# ПЛАТЕЖИ
# =============================================================================

def payment_succeeded_payload(order_id: str, tracking_id: str, cash_on_delivery: bool) -> NotificationPayload:
    if cash_on_delivery:
        title = "Order COD Confirmed"
        body = f"Cash on delivery payment for order #{tracking_id} has been confirmed."
    else:
        title = "Payment Successful"
        body = f"Your payment for order #{tracking_id} was successful. Your order is confirmed."
    return NotificationPayload(
        type=NotificationType.PAYMENT,
        title=title,
        body=body,
        link=order_link(order_id),
        data={"orderId": order_id, "trackingId": tracking_id},
    )


def payment_failed_payload(order_id: str, tracking_id: str) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.PAYMENT,
        title="Payment Failed",
        body=f"Your payment for order #{tracking_id} could not be completed. Please try again.",
        link=order_link(order_id),
        data={"orderId": order_id, "trackingId": tracking_id},
    )
