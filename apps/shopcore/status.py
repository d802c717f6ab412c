"""
Order status state machine.

OrderStatus is the single source of status values and display names.
ALLOWED_TRANSITIONS is the only place edges are defined; every caller
(manual update, payment verification, webhooks, refunds, cancellation,
shipment booking) goes through check_transition before writing.

    created         -> payment_pending | processing | cancelled
    payment_pending -> paid | payment_failed | cancelled
    payment_failed  -> paid | cancelled
    paid            -> processing | cancelled | refunded
    processing      -> shipped | cancelled | refunded
    shipped         -> delivered | refunded
    delivered, cancelled, refunded are terminal
"""
from typing import Dict, FrozenSet

from django.db import models

from apps.core.exceptions import InvalidTransitionException


class OrderStatus(models.TextChoices):
    CREATED = 'created', 'Order Created'
    PAYMENT_PENDING = 'payment_pending', 'Payment Pending'
    PAYMENT_FAILED = 'payment_failed', 'Payment Failed'
    PAID = 'paid', 'Payment Confirmed'
    PROCESSING = 'processing', 'Processing'
    SHIPPED = 'shipped', 'Shipped'
    DELIVERED = 'delivered', 'Delivered'
    CANCELLED = 'cancelled', 'Cancelled'
    REFUNDED = 'refunded', 'Refunded'


class PaymentMethod(models.TextChoices):
    COD = 'cod', 'Cash on Delivery'
    RAZORPAY = 'razorpay', 'Online (Razorpay)'


ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.CREATED: frozenset({
        OrderStatus.PAYMENT_PENDING, OrderStatus.PROCESSING, OrderStatus.CANCELLED,
    }),
    OrderStatus.PAYMENT_PENDING: frozenset({
        OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED,
    }),
    # a later attempt against the same payment intent can still capture
    OrderStatus.PAYMENT_FAILED: frozenset({
        OrderStatus.PAID, OrderStatus.CANCELLED,
    }),
    OrderStatus.PAID: frozenset({
        OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED,
    }),
    OrderStatus.PROCESSING: frozenset({
        OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED,
    }),
    OrderStatus.SHIPPED: frozenset({
        OrderStatus.DELIVERED, OrderStatus.REFUNDED,
    }),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def is_legal(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(current: str, requested: str) -> None:
    """Raise InvalidTransitionException unless current -> requested is a legal edge."""
    if requested not in OrderStatus.values:
        raise InvalidTransitionException(current, requested, f"Unknown order status '{requested}'")
    if not is_legal(current, requested):
        raise InvalidTransitionException(current, requested)


def display_name(status: str) -> str:
    try:
        return OrderStatus(status).label
    except ValueError:
        return status.replace('_', ' ').capitalize()


def can_cancel(status: str) -> bool:
    return is_legal(status, OrderStatus.CANCELLED)


def can_refund(status: str, payment_method: str) -> bool:
    return payment_method == PaymentMethod.RAZORPAY and is_legal(status, OrderStatus.REFUNDED)
