from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from typing import List
from app.database import get_session
from app.models.user import User
from app.schemas.orders_schemas import OrderCreate, OrderOut, OrderUpdate
from app.services import order_service
from app.utils.token import get_current_user

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=OrderOut)
def create_order(
    data: OrderCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    order = order_service.create_order(session, current_user, data)
    return OrderOut.from_order(order)


@router.get("", response_model=List[OrderOut])
def list_orders(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    orders = order_service.list_user_orders(session, current_user)
    return [OrderOut.from_order(o) for o in orders]


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    order = order_service.get_user_order(session, current_user, order_id)
    return OrderOut.from_order(order)


@router.patch("/{order_id}", response_model=OrderOut)
def update_order(
    order_id: int,
    data: OrderUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    """Customer cancels an order (status=cancelled is the only accepted change)"""
    order = order_service.update_order(
        session,
        current_user,
        order_id,
        data.status,
        cancellation_reason=data.cancellation_reason,
    )
    return OrderOut.from_order(order)
