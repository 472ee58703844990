import logging
import random
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Session, select

from app.config import settings
from app.constants.order_status import CUSTOMER_CANCELLABLE, OrderStatus, can_transition
from app.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from app.models.order import Order, to_cents
from app.models.order_item import OrderItem
from app.models.user import User
from app.schemas.orders_schemas import OrderCreate
from app.services.coupon_service import resolve_coupon

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = Decimal("300.00")
SHIPPING_RATES = {
    "normal": Decimal("19.90"),
    "express": Decimal("29.90"),
}
DEFAULT_CANCELLATION_REASON = "cancelled by customer"


def calculate_shipping_cost(shipping_method: str, subtotal: Decimal) -> Decimal:
    if subtotal >= FREE_SHIPPING_THRESHOLD:
        return Decimal("0.00")
    return SHIPPING_RATES.get(shipping_method, SHIPPING_RATES["normal"])


def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))
    return f"P{timestamp[-6:]}{random.randint(0, 999):03d}"


def _unique_order_number(session: Session) -> str:
    for _ in range(5):
        number = generate_order_number()
        exists = session.exec(select(Order.id).where(Order.order_number == number)).first()
        if not exists:
            return number
    raise RuntimeError("Could not allocate a unique order number")


def create_order(session: Session, user: User, data: OrderCreate) -> Order:
    if not data.items:
        raise ValidationError("Order must contain at least one item")

    if data.shipping_address is None:
        raise ValidationError("Shipping address is required")

    subtotal = to_cents(sum((i.price * i.quantity for i in data.items), Decimal("0")))

    if data.shipping_price is not None:
        shipping_cost = to_cents(data.shipping_price)
    else:
        shipping_cost = calculate_shipping_cost(data.shipping_method.value, subtotal)

    coupon = None
    discount = Decimal("0.00")
    if data.coupon_code:
        coupon, discount = resolve_coupon(session, data.coupon_code, subtotal=subtotal, user_id=user.id)

    order = Order(
        order_number=_unique_order_number(session),
        user_id=user.id,
        shipping_address=data.shipping_address.model_dump(),
        shipping_method=data.shipping_method.value,
        shipping_cost=shipping_cost,
        discount_amount=discount,
        coupon_id=coupon.id if coupon else None,
        preference_id=data.preference_id,
        payment_method=data.payment_method.value,
        payment_status="pending",
        payment_expires_at=datetime.utcnow() + timedelta(minutes=settings.payment_expiry_minutes),
    )
    order.items = [
        OrderItem(
            product_ref=i.product_ref,
            variant_ref=i.variant_ref,
            name=i.name,
            size=i.size,
            color=i.color,
            image=i.image,
            unit_price=to_cents(i.price),
            quantity=i.quantity,
        )
        for i in data.items
    ]
    order.set_status(OrderStatus.pending.value, comment="Order created", created_by=f"user:{user.id}")

    if coupon:
        coupon.uses_count += 1
        session.add(coupon)

    session.add(order)
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.order_number} created for user {user.id}, total {order.total}")
    return order


def list_user_orders(session: Session, user: User) -> List[Order]:
    return session.exec(
        select(Order)
        .where(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).all()


def get_user_order(session: Session, user: User, order_id: int) -> Order:
    order = session.get(Order, order_id)

    if not order:
        raise NotFound("Order not found")

    if order.user_id != user.id:
        logger.warning(f"User {user.id} tried to access order {order_id}")
        raise Forbidden("Not authorized to access this order")

    return order


def cancel_order(session: Session, user: User, order_id: int, reason: Optional[str] = None) -> Order:
    order = get_user_order(session, user, order_id)

    if order.status not in CUSTOMER_CANCELLABLE:
        raise InvalidTransition(f"Order can no longer be cancelled. Current status: {order.status}")

    reason = reason or DEFAULT_CANCELLATION_REASON
    order.cancelled_at = datetime.utcnow()
    order.cancellation_reason = reason
    order.set_status(OrderStatus.cancelled.value, comment=reason, created_by=f"user:{user.id}")

    session.add(order)
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.order_number} cancelled by user {user.id}")
    return order


def update_order(session: Session, user: User, order_id: int, status: str,
                 cancellation_reason: Optional[str] = None) -> Order:
    """Customer-side update; cancellation is the only change allowed."""
    if status != OrderStatus.cancelled.value:
        get_user_order(session, user, order_id)
        raise InvalidTransition("Update operation not allowed")

    return cancel_order(session, user, order_id, cancellation_reason)


def update_fulfilment_status(session: Session, admin: User, order_id: int, status: str,
                             tracking_number: Optional[str] = None,
                             comment: Optional[str] = None) -> Order:
    order = session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")

    if status not in (OrderStatus.shipped.value, OrderStatus.delivered.value):
        raise InvalidTransition(f"Status '{status}' can't be set by fulfilment")

    if not can_transition(order.status, status):
        raise InvalidTransition(f"Cannot move order from {order.status} to {status}")

    if status == OrderStatus.shipped.value:
        if not tracking_number:
            raise ValidationError("Tracking number is required to ship an order")
        order.tracking_number = tracking_number
        order.shipped_at = datetime.utcnow()
    else:
        order.delivered_at = datetime.utcnow()

    order.set_status(status, comment=comment, created_by=f"admin:{admin.id}")
    session.add(order)
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.order_number} moved to {status} by admin {admin.id}")
    return order
