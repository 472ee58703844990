from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from app.errors import ValidationError
from app.models.coupon import Coupon
from app.models.order import Order, to_cents


def get_coupon_by_code(session: Session, code: str) -> Optional[Coupon]:
    return session.exec(
        select(Coupon).where(Coupon.code == code.strip().upper())
    ).first()


def check_coupon(session: Session, coupon: Coupon, *, subtotal: Decimal, user_id: Optional[int]) -> None:
    """Raise ValidationError with the reason when the coupon can't be used."""
    now = datetime.utcnow()

    if not coupon.is_active:
        raise ValidationError("Coupon is inactive")

    if now < coupon.start_date or (coupon.end_date and now > coupon.end_date):
        raise ValidationError("Coupon is outside its validity period")

    if coupon.max_uses is not None and coupon.uses_count >= coupon.max_uses:
        raise ValidationError("Coupon usage limit reached")

    if subtotal < coupon.minimum_purchase:
        raise ValidationError(f"Minimum purchase for this coupon: {to_cents(coupon.minimum_purchase)}")

    if user_id is not None and coupon.max_uses_per_user > 0:
        used = session.exec(
            select(func.count())
            .select_from(Order)
            .where(Order.coupon_id == coupon.id)
            .where(Order.user_id == user_id)
            .where(Order.status != "cancelled")
        ).one()
        if used >= coupon.max_uses_per_user:
            raise ValidationError("You have already used this coupon")


def calculate_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    if coupon.discount_type == "percentage":
        discount = subtotal * coupon.discount_value / Decimal("100")
        if coupon.max_discount_value and discount > coupon.max_discount_value:
            discount = coupon.max_discount_value
    else:
        discount = min(coupon.discount_value, subtotal)
    return to_cents(discount)


def resolve_coupon(session: Session, code: str, *, subtotal: Decimal, user_id: Optional[int]):
    """Look up and validate a coupon code, returning ``(coupon, discount)``."""
    coupon = get_coupon_by_code(session, code)
    if not coupon:
        raise ValidationError("Invalid coupon")

    check_coupon(session, coupon, subtotal=subtotal, user_id=user_id)
    return coupon, calculate_discount(coupon, subtotal)
