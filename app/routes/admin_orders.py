# -------- ADMIN ORDERS --------
from fastapi import APIRouter, Depends
from sqlmodel import Session
from app.database import get_session
from app.models.user import User
from app.schemas.orders_schemas import OrderOut, OrderStatusUpdate
from app.services import order_service
from app.services.order_expiry_service import expire_unpaid_orders
from app.utils.token import get_current_admin


router = APIRouter()


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(get_current_admin)
):
    order = order_service.update_fulfilment_status(
        session,
        admin,
        order_id,
        data.status,
        tracking_number=data.tracking_number,
        comment=data.comment,
    )
    return OrderOut.from_order(order)


@router.post("/expire-unpaid")
def expire_unpaid(
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin)
):
    return {"expired": expire_unpaid_orders(session)}
