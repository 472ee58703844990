import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from app.constants.order_status import OrderStatus, PaymentStatus
from app.models.order import Order

logger = logging.getLogger(__name__)

EXPIRY_REASON = "payment window expired"


def expire_unpaid_orders(session: Session, now: Optional[datetime] = None) -> int:
    """Cancel pending, unpaid orders whose payment window has closed."""
    now = now or datetime.utcnow()

    orders = session.exec(
        select(Order)
        .where(Order.status == OrderStatus.pending.value)
        .where(Order.payment_status != PaymentStatus.approved.value)
        .where(Order.payment_expires_at != None)  # noqa: E711
        .where(Order.payment_expires_at < now)
    ).all()

    for order in orders:
        order.cancelled_at = now
        order.cancellation_reason = EXPIRY_REASON
        order.set_status(OrderStatus.cancelled.value, comment=EXPIRY_REASON, created_by="expiry_job")
        session.add(order)

    session.commit()

    logger.info(f"Expired {len(orders)} unpaid orders")
    return len(orders)
