from enum import Enum


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    payment_failed = "payment_failed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    refunded = "refunded"
    cancelled = "cancelled"


class PaymentMethod(str, Enum):
    pending = "pending"
    credit_card = "credit_card"
    pix = "pix"
    boleto = "boleto"


class ShippingMethod(str, Enum):
    normal = "normal"
    express = "express"


ALLOWED_TRANSITIONS = {
    "pending": ["processing", "payment_failed", "cancelled"],
    "processing": ["shipped", "cancelled"],
    "shipped": ["delivered"],
    "delivered": [],
    "payment_failed": [],
    "cancelled": []
}

# Statuses a customer may still cancel from
CUSTOMER_CANCELLABLE = ["pending", "processing"]

PAYMENT_TRANSITIONS = {
    "pending": ["approved", "rejected", "cancelled", "refunded"],
    "approved": ["refunded", "cancelled"],
    "rejected": [],
    "refunded": [],
    "cancelled": []
}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, [])


def can_transition_payment(current: str, new: str) -> bool:
    return new in PAYMENT_TRANSITIONS.get(current, [])
