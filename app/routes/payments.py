import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from app.database import get_session
from app.models.user import User
from app.schemas.payment_schemas import (
    BoletoPaymentRequest,
    CardPaymentRequest,
    PixPaymentRequest,
    PreferenceRequest,
    SavedPaymentMethodOut,
)
from app.services import payment_service
from app.services.payment_gateway import PaymentGateway, get_payment_gateway
from app.services.payment_reconciler import handle_webhook, poll_payment_status
from app.utils.token import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/preference")
def create_preference(
    data: PreferenceRequest,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    preference_id = payment_service.create_preference(session, gateway, current_user, data)
    return {"preference_id": preference_id}


@router.post("/card")
def pay_with_card(
    data: CardPaymentRequest,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    order = payment_service.charge_card(session, gateway, current_user, data)
    return {
        "status": order.payment_status,
        "payment_id": order.payment_transaction_id,
        "order_id": order.id,
        "order_number": order.order_number,
        "order_status": order.status,
    }


@router.post("/pix")
def pay_with_pix(
    data: PixPaymentRequest,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return payment_service.create_pix(session, gateway, current_user, data.order_id)


@router.post("/boleto")
def pay_with_boleto(
    data: BoletoPaymentRequest,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return payment_service.create_boleto(
        session, gateway, current_user, data.order_id, data.tax_id, data.full_name
    )


@router.get("/methods", response_model=List[SavedPaymentMethodOut])
def list_payment_methods(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return payment_service.list_saved_cards(session, current_user)


# Public: called by the gateway, always answers 200 so it stops redelivering
@router.post("/webhook")
async def payment_webhook(
    request: Request,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    params = request.query_params
    notification_type = payload.get("type") or params.get("type") or params.get("topic")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    payment_id = data.get("id") or params.get("data.id") or params.get("id")

    logger.info(f"Webhook received: type={notification_type} id={payment_id}")
    await run_in_threadpool(handle_webhook, session, gateway, notification_type, payment_id)
    return {"success": True}


@router.get("/{payment_id}")
def get_payment_status(
    payment_id: str,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return poll_payment_status(session, gateway, current_user, payment_id)
