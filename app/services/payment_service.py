import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from sqlmodel import Session, select

from app.config import settings
from app.constants.order_status import OrderStatus, PaymentMethod, PaymentStatus
from app.errors import InvalidAmount, InvalidTransition, UpstreamError, ValidationError
from app.models.order import Order, to_cents
from app.models.payment_method import SavedPaymentMethod
from app.models.user import User
from app.schemas.payment_schemas import CardPaymentRequest, PreferenceRequest
from app.services.order_service import get_user_order
from app.services.payment_gateway import GatewayError, GatewayPayment, PaymentGateway
from app.services.payment_reconciler import record_payment_attempt

logger = logging.getLogger(__name__)

PIX_DISCOUNT_RATE = Decimal("0.05")
BOLETO_BUSINESS_DAYS = 3


def add_business_days(start: date, days: int) -> date:
    current = start
    while days > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            days -= 1
    return current


def _payable_order(session: Session, user: User, order_id: int) -> Order:
    order = get_user_order(session, user, order_id)

    if order.status != OrderStatus.pending.value:
        raise InvalidTransition(f"Order cannot be paid. Current status: {order.status}")

    if order.payment_status == PaymentStatus.approved.value:
        raise InvalidTransition("Order already paid")

    return order


def _description(order: Order) -> str:
    return f"Order #{order.order_number} - Sneakers Shop"


def _call_gateway(operation: str, order: Order, fn, **kwargs) -> GatewayPayment:
    try:
        return fn(**kwargs)
    except GatewayError as e:
        # the provider's text may carry request data; it stays in the logs
        logger.error(f"Gateway {operation} failed for order {order.id}: {e}")
        raise UpstreamError() from e


def create_preference(session: Session, gateway: PaymentGateway, user: User,
                      data: PreferenceRequest) -> str:
    if not data.items:
        raise ValidationError("No items informed")

    order = None
    if data.order_id is not None:
        order = get_user_order(session, user, data.order_id)

    shipping = data.shipping_info
    try:
        preference_id = gateway.create_preference(
            items=[item.model_dump() for item in data.items],
            payer_email=user.email,
            external_reference=str(order.id) if order else None,
            shipping_cost=shipping.cost if shipping else None,
            shipping_address=shipping.address if shipping else None,
            metadata={"user_id": str(user.id)},
        )
    except GatewayError as e:
        logger.error(f"Preference creation failed for user {user.id}: {e}")
        raise UpstreamError() from e

    if order:
        order.preference_id = preference_id
        session.add(order)
        session.commit()

    logger.info(f"Preference {preference_id} created for user {user.id}")
    return preference_id


def resolve_card_amount(data: CardPaymentRequest, order: Order) -> Decimal:
    amount = data.amount if data.amount is not None else order.total
    if amount is None or amount <= 0:
        raise InvalidAmount("Invalid payment amount")
    amount = to_cents(amount)
    if amount != order.total:
        logger.warning(f"Card amount {amount} differs from order {order.id} total {order.total}")
    return amount


def _card_payer(user: User, data: CardPaymentRequest) -> dict:
    payer = data.payer
    first_name, _, last_name = user.full_name.partition(" ")
    body = {
        "email": (payer.email if payer and payer.email else user.email),
        "first_name": (payer.first_name if payer and payer.first_name else first_name or "Customer"),
        "last_name": (payer.last_name if payer and payer.last_name else last_name or "Customer"),
    }
    if payer and payer.identification:
        body["identification"] = payer.identification.model_dump()
    return body


def _save_card(session: Session, user: User, data: CardPaymentRequest, payment: GatewayPayment) -> None:
    card = payment.card or {}
    last_four = card.get("last_four_digits")
    if not last_four:
        logger.info(f"Payment {payment.id} has no card data to save")
        return

    session.add(SavedPaymentMethod(
        user_id=user.id,
        brand=payment.payment_method_id or data.payment_method_id,
        last_four=last_four,
        expiry_month=card.get("expiration_month"),
        expiry_year=card.get("expiration_year"),
        holder_name=(card.get("cardholder") or {}).get("name"),
    ))
    session.commit()


def charge_card(session: Session, gateway: PaymentGateway, user: User, data: CardPaymentRequest) -> Order:
    order = _payable_order(session, user, data.order_id)
    _drop_pix_discount(order)
    amount = resolve_card_amount(data, order)

    if data.test_mode:
        if not settings.payments_test_mode_enabled:
            raise ValidationError("Test mode payments are disabled")
        logger.warning(f"Order {order.id}: approving card payment in test mode, no gateway call")
        payment = GatewayPayment(
            id=f"test-{uuid4().hex}",
            status="approved",
            status_detail="accredited",
            payment_method_id=data.payment_method_id,
            external_reference=str(order.id),
            transaction_amount=amount,
            installments=data.installments,
        )
    else:
        payment = _call_gateway(
            "card charge",
            order,
            gateway.create_card_payment,
            amount=amount,
            token=data.token,
            installments=data.installments,
            payment_method_id=data.payment_method_id,
            issuer_id=data.issuer_id,
            payer=_card_payer(user, data),
            description=_description(order),
            external_reference=str(order.id),
        )

    details = {
        "brand": payment.payment_method_id or data.payment_method_id,
        "installments": payment.installments or data.installments,
        "last_four_digits": (payment.card or {}).get("last_four_digits"),
        "amount": str(amount),
        "test_mode": data.test_mode,
    }
    order = record_payment_attempt(
        session, order,
        method=PaymentMethod.credit_card.value,
        payment=payment,
        details=details,
        created_by="test_mode" if data.test_mode else "gateway",
    )

    if data.save_card and order.payment_status == PaymentStatus.approved.value:
        _save_card(session, user, data, payment)

    return order


def _stored_charge(order: Order, method: str) -> Optional[dict]:
    if (order.payment_method == method and order.payment_transaction_id and order.payment_details
            and order.payment_status == PaymentStatus.pending.value):
        return order.payment_details
    return None


def _drop_pix_discount(order: Order) -> None:
    """Give back the discount of an earlier, unsettled PIX charge before charging again."""
    if order.payment_method != PaymentMethod.pix.value:
        return
    discount = (order.payment_details or {}).get("pix_discount")
    if discount:
        order.discount_amount = order.discount_amount - Decimal(discount)
        order.payment_details = {**order.payment_details, "pix_discount": "0.00"}
        order.recalculate_totals()


def create_pix(session: Session, gateway: PaymentGateway, user: User, order_id: int) -> dict:
    order = _payable_order(session, user, order_id)

    stored = _stored_charge(order, PaymentMethod.pix.value)
    if stored:
        return {"transaction_id": order.payment_transaction_id, **stored}

    _drop_pix_discount(order)

    pix_amount = to_cents(order.total * (Decimal("1") - PIX_DISCOUNT_RATE))
    if pix_amount <= 0:
        raise InvalidAmount("Invalid payment amount")

    payment = _call_gateway(
        "pix charge",
        order,
        gateway.create_pix_payment,
        amount=pix_amount,
        payer={"email": user.email, "first_name": user.first_name, "last_name": user.last_name},
        description=_description(order),
        external_reference=str(order.id),
    )

    # the PIX discount is folded into discount_amount so total stays derived
    pix_discount = order.total - pix_amount
    order.discount_amount = order.discount_amount + pix_discount
    details = {
        "pix_discount": str(pix_discount),
        "qr_code": payment.qr_code,
        "qr_code_base64": payment.qr_code_base64,
        "expiration_date": payment.date_of_expiration,
        "amount": str(pix_amount),
    }
    order = record_payment_attempt(session, order, method=PaymentMethod.pix.value, payment=payment, details=details)

    return {"transaction_id": order.payment_transaction_id, **details}


def create_boleto(session: Session, gateway: PaymentGateway, user: User, order_id: int,
                  tax_id: str, full_name: str) -> dict:
    tax_id = "".join(ch for ch in (tax_id or "") if ch.isdigit())
    full_name = (full_name or "").strip()
    if not tax_id or not full_name:
        raise ValidationError("Tax id and full name are required for boleto payments")

    order = _payable_order(session, user, order_id)

    stored = _stored_charge(order, PaymentMethod.boleto.value)
    if stored:
        return {"transaction_id": order.payment_transaction_id, **stored}

    _drop_pix_discount(order)

    first_name, _, last_name = full_name.partition(" ")
    expires_on = add_business_days(datetime.now(timezone.utc).date(), BOLETO_BUSINESS_DAYS)
    expires_at = datetime(expires_on.year, expires_on.month, expires_on.day, 23, 59, 59, tzinfo=timezone.utc)

    payment = _call_gateway(
        "boleto charge",
        order,
        gateway.create_boleto_payment,
        amount=order.total,
        payer={
            "email": user.email,
            "first_name": first_name,
            "last_name": last_name or first_name,
            "identification": {"type": "CNPJ" if len(tax_id) == 14 else "CPF", "number": tax_id},
        },
        description=_description(order),
        external_reference=str(order.id),
        expires_at=expires_at,
    )

    details = {
        "barcode": payment.barcode,
        "pdf_url": payment.pdf_url,
        "expiration_date": payment.date_of_expiration or expires_at.isoformat(),
        "amount": str(order.total),
    }
    order = record_payment_attempt(session, order, method=PaymentMethod.boleto.value, payment=payment, details=details)

    return {"transaction_id": order.payment_transaction_id, **details}


def list_saved_cards(session: Session, user: User) -> List[SavedPaymentMethod]:
    return session.exec(
        select(SavedPaymentMethod)
        .where(SavedPaymentMethod.user_id == user.id)
        .order_by(SavedPaymentMethod.created_at.desc())
    ).all()
