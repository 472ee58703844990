"""Merges gateway-reported payment status into orders.

Three triggers land here: the synchronous charge response (through
``record_payment_attempt``), client polling and the gateway webhook (both
through ``reconcile_payment``). All of them write the payment state with a
single conditional UPDATE keyed on the payment/order state that was read, so a
slower, staler report loses instead of overwriting a newer one.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from app.constants.order_status import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    can_transition_payment,
)
from app.errors import Forbidden, NotFound, UpstreamError
from app.models.order import Order
from app.models.order_status_history import OrderStatusHistory
from app.models.user import User
from app.services.payment_gateway import GatewayError, GatewayPayment, PaymentGateway

logger = logging.getLogger(__name__)

GATEWAY_STATUS_MAP = {
    "approved": PaymentStatus.approved.value,
    "authorized": PaymentStatus.pending.value,
    "pending": PaymentStatus.pending.value,
    "in_process": PaymentStatus.pending.value,
    "in_mediation": PaymentStatus.pending.value,
    "rejected": PaymentStatus.rejected.value,
    "cancelled": PaymentStatus.cancelled.value,
    "refunded": PaymentStatus.refunded.value,
    "charged_back": PaymentStatus.refunded.value,
}

ASYNC_SETTLED_METHODS = (PaymentMethod.pix.value, PaymentMethod.boleto.value)


def normalize_status(gateway_status: Optional[str]) -> str:
    return GATEWAY_STATUS_MAP.get((gateway_status or "").lower(), PaymentStatus.pending.value)


def derive_order_status(payment_status: str) -> Optional[str]:
    if payment_status == PaymentStatus.approved.value:
        return OrderStatus.processing.value
    if payment_status in (PaymentStatus.rejected.value, PaymentStatus.cancelled.value):
        return OrderStatus.payment_failed.value
    return None


def _next_order_status(order: Order, payment_status: str) -> str:
    derived = derive_order_status(payment_status)
    if derived and derived != order.status and can_transition(order.status, derived):
        return derived
    return order.status


STATE_FIELDS = ["payment_transaction_id", "payment_status", "status"]


def _plan_report(order: Order, payment: GatewayPayment, new_payment_status: str, *, source: str,
                 initiated: bool = False) -> Optional[str]:
    """Order status to write for this report, or None when the report must be ignored.

    ``initiated`` marks the answer to a charge this request just created; it
    supersedes any unsettled earlier attempt. Any other report for a
    transaction other than the stored one is only taken when it is an approval.
    """
    observed_tx = order.payment_transaction_id
    observed_payment_status = order.payment_status

    if observed_tx and observed_tx != payment.id:
        if observed_payment_status == PaymentStatus.approved.value:
            logger.warning(
                f"[{source}] Order {order.id} already approved via {observed_tx}; "
                f"ignoring payment {payment.id} ({new_payment_status})"
            )
            return None
        if not initiated and new_payment_status != PaymentStatus.approved.value:
            logger.warning(
                f"[{source}] Order {order.id} tracks payment {observed_tx}; "
                f"ignoring {new_payment_status} report for payment {payment.id}"
            )
            return None
    elif observed_tx == payment.id:
        if new_payment_status == observed_payment_status:
            if _next_order_status(order, new_payment_status) == order.status:
                return None
        elif not can_transition_payment(observed_payment_status, new_payment_status):
            logger.warning(
                f"[{source}] Order {order.id}: ignoring payment status "
                f"{observed_payment_status} -> {new_payment_status}"
            )
            return None

    new_status = _next_order_status(order, new_payment_status)
    # PIX and boleto settle later; only the poll/webhook paths may fail them
    if (initiated and order.payment_method in ASYNC_SETTLED_METHODS
            and new_status == OrderStatus.payment_failed.value):
        new_status = order.status
    return new_status


def _compare_and_set(session: Session, order: Order, payment: GatewayPayment, new_payment_status: str,
                     new_status: str, *, source: str) -> bool:
    """Conditional UPDATE keyed on the payment/order state held by ``order``.

    Leaves the transaction open; the caller commits or rolls back.
    """
    observed_tx = order.payment_transaction_id
    observed_status = order.status

    values = {
        "payment_transaction_id": payment.id,
        "payment_status": new_payment_status,
    }
    if observed_status != new_status:
        values["status"] = new_status

    if observed_tx is None:
        tx_matches = Order.payment_transaction_id.is_(None)
    else:
        tx_matches = Order.payment_transaction_id == observed_tx

    result = session.exec(
        update(Order)
        .where(Order.id == order.id)
        .where(tx_matches)
        .where(Order.payment_status == order.payment_status)
        .where(Order.status == observed_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    if observed_status != new_status:
        session.add(OrderStatusHistory(
            order_id=order.id,
            status=new_status,
            comment=f"Payment {new_payment_status}",
            created_by=source,
        ))
    return True


def record_payment_attempt(session: Session, order: Order, *, method: str, payment: GatewayPayment,
                           details: Optional[dict] = None, created_by: str = "gateway") -> Order:
    """Write the gateway's immediate answer to a charge request onto the order.

    ``order`` was read before the gateway call, so a poll or webhook may have
    stored this same payment in the meantime. The state fields go through the
    same conditional update as those paths; on a lost race the stored state is
    re-read and the answer judged against it.
    """
    payment_status = normalize_status(payment.status)

    order.payment_method = method
    if details is not None:
        order.payment_details = details
    session.add(order)

    for _ in range(2):
        new_status = _plan_report(order, payment, payment_status, source=created_by, initiated=True)
        if new_status is None:
            break
        if _compare_and_set(session, order, payment, payment_status, new_status, source=created_by):
            break
        logger.warning(f"Order {order.id} changed during the {method} charge; re-reading its payment state")
        session.expire(order, STATE_FIELDS)
    else:
        logger.warning(f"Order {order.id}: payment {payment.id} state not recorded, order keeps changing")

    session.commit()
    session.refresh(order)

    logger.info(
        f"Order {order.order_number}: {method} payment {payment.id} is {payment_status}, "
        f"order status {order.status}"
    )
    return order


def reconcile_payment(session: Session, order: Order, payment: GatewayPayment, *, source: str) -> bool:
    """Apply a fetched gateway payment to ``order``. Returns True if anything changed."""
    new_payment_status = normalize_status(payment.status)
    observed_payment_status = order.payment_status
    observed_status = order.status

    new_status = _plan_report(order, payment, new_payment_status, source=source)
    if new_status is None:
        return False

    if not _compare_and_set(session, order, payment, new_payment_status, new_status, source=source):
        session.rollback()
        logger.warning(
            f"[{source}] Order {order.id} changed while reconciling payment {payment.id}; "
            f"stale update discarded"
        )
        return False

    session.commit()
    session.refresh(order)

    logger.info(
        f"[{source}] Order {order.id}: payment {payment.id} "
        f"{observed_payment_status} -> {new_payment_status}, order {observed_status} -> {new_status}"
    )
    return True


def find_order_for_payment(session: Session, payment: GatewayPayment) -> Optional[Order]:
    if payment.external_reference and str(payment.external_reference).isdigit():
        order = session.get(Order, int(payment.external_reference))
        if order:
            return order

    return session.exec(
        select(Order).where(Order.payment_transaction_id == payment.id)
    ).first()


def _fetch_payment(gateway: PaymentGateway, payment_id: str) -> Optional[GatewayPayment]:
    try:
        return gateway.get_payment(payment_id)
    except GatewayError as e:
        logger.error(f"Gateway lookup for payment {payment_id} failed: {e}")
        raise UpstreamError() from e


def poll_payment_status(session: Session, gateway: PaymentGateway, user: User, payment_id: str) -> dict:
    payment = _fetch_payment(gateway, payment_id)
    if payment is None:
        raise NotFound("Payment not found")

    order = find_order_for_payment(session, payment)
    if order and order.user_id != user.id:
        raise Forbidden("Not authorized to access this payment")

    if order:
        reconcile_payment(session, order, payment, source="poll")

    return {
        "status": normalize_status(payment.status),
        "status_detail": payment.status_detail,
        "payment_method": payment.payment_method_id,
        "order_id": order.id if order else None,
        "order_status": order.status if order else None,
    }


def handle_webhook(session: Session, gateway: PaymentGateway, notification_type: Optional[str],
                   payment_id: Optional[str]) -> bool:
    """Process one gateway notification.

    Never raises: the gateway keeps redelivering anything that isn't a 2xx,
    so unknown types, missing ids and unresolvable payments or orders are
    logged and dropped.
    """
    if notification_type != "payment":
        logger.info(f"Webhook of type {notification_type!r} ignored")
        return False

    if not payment_id:
        logger.warning("Webhook without payment id ignored")
        return False

    try:
        payment = gateway.get_payment(str(payment_id))
        if payment is None:
            logger.warning(f"Webhook for unknown payment {payment_id} ignored")
            return False

        order = find_order_for_payment(session, payment)
        if order is None:
            logger.warning(
                f"Webhook for payment {payment_id}: no order for reference {payment.external_reference!r}"
            )
            return False

        return reconcile_payment(session, order, payment, source="webhook")
    except Exception:
        logger.exception(f"Webhook processing for payment {payment_id} failed")
        session.rollback()
        return False
