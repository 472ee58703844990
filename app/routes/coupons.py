from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session
from app.database import get_session
from app.models.coupon import Coupon
from app.models.order import to_cents
from app.models.user import User
from app.schemas.coupon_schemas import CouponCreate, CouponValidateRequest
from app.services.coupon_service import get_coupon_by_code, resolve_coupon
from app.utils.token import get_current_admin, get_current_user

router = APIRouter()


@router.post("/validate")
def validate_coupon(
    data: CouponValidateRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    subtotal = to_cents(data.subtotal)
    coupon, discount = resolve_coupon(session, data.code, subtotal=subtotal, user_id=current_user.id)

    return {
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": float(coupon.discount_value),
        "discount_amount": float(discount),
        "total_after_discount": float(subtotal - discount),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_coupon(
    data: CouponCreate,
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin)
):
    if get_coupon_by_code(session, data.code):
        raise HTTPException(400, "Coupon code already exists")

    values = data.model_dump(exclude_none=True)
    values["code"] = data.code.strip().upper()
    coupon = Coupon(**values)

    session.add(coupon)
    session.commit()
    session.refresh(coupon)

    return {"message": "Coupon created", "coupon_id": coupon.id, "code": coupon.code}
