from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import Session

from app.config import settings
from app.services.payment_reconciler import handle_webhook
from app.services.payment_service import add_business_days


def card_payload(order_id, **overrides):
    payload = {
        "order_id": order_id,
        "token": "card-token-abc",
        "installments": 1,
        "payment_method_id": "visa",
    }
    payload.update(overrides)
    return payload


# -------- CARD --------

def test_card_payment_approved(client, create_order, auth_headers, gateway, load_order):
    order = create_order()

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "approved"
    assert body["order_status"] == "processing"
    assert body["payment_id"] == "1001"
    assert body["order_number"] == order["order_number"]

    kind, kwargs = gateway.calls[0]
    assert kind == "card"
    assert kwargs["amount"] == Decimal("220.00")
    assert kwargs["external_reference"] == str(order["id"])
    assert kwargs["payer"]["email"] == "ana@example.com"

    stored = load_order(order["id"])
    assert stored.payment_method == "credit_card"
    assert stored.payment_transaction_id == "1001"
    assert stored.payment_details["last_four_digits"] == "4242"
    assert [h.status for h in stored.status_history] == ["pending", "processing"]


def test_card_payment_rejected(client, create_order, auth_headers, gateway):
    gateway.next_status = "rejected"
    order = create_order()

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["order_status"] == "payment_failed"


def test_card_payment_in_process_stays_pending(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "in_process"
    order = create_order()

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.json()["status"] == "pending"
    assert response.json()["order_status"] == "pending"
    assert len(load_order(order["id"]).status_history) == 1


def test_card_payment_notified_before_charge_returns(client, create_order, auth_headers, gateway, engine,
                                                       load_order, monkeypatch):
    order = create_order()
    create_card_payment = gateway.create_card_payment

    def charge_then_notify(**kwargs):
        payment = create_card_payment(**kwargs)
        with Session(engine) as other:
            handle_webhook(other, gateway, "payment", payment.id)
        return payment

    monkeypatch.setattr(gateway, "create_card_payment", charge_then_notify)

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert response.json()["order_status"] == "processing"
    stored = load_order(order["id"])
    assert stored.payment_method == "credit_card"
    assert stored.payment_details["last_four_digits"] == "4242"
    assert [h.status for h in stored.status_history] == ["pending", "processing"]


def test_card_payment_uses_explicit_amount(client, create_order, auth_headers, gateway):
    order = create_order()

    client.post("/payments/card", json=card_payload(order["id"], amount="150.00"), headers=auth_headers)

    assert gateway.calls[0][1]["amount"] == Decimal("150.00")


def test_card_payment_zero_amount_is_rejected(client, create_order, auth_headers, gateway, load_order):
    order = create_order()

    response = client.post("/payments/card", json=card_payload(order["id"], amount="0"), headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payment amount"
    assert gateway.calls == []
    assert load_order(order["id"]).payment_status == "pending"


def test_card_payment_rejects_alternate_amount_fields(client, create_order, auth_headers, gateway):
    order = create_order()

    response = client.post(
        "/payments/card",
        json=card_payload(order["id"], transaction_amount="1.00"),
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert gateway.calls == []


def test_card_payment_requires_token(client, create_order, auth_headers):
    order = create_order()
    payload = card_payload(order["id"])
    del payload["token"]

    response = client.post("/payments/card", json=payload, headers=auth_headers)

    assert response.status_code == 422


def test_test_mode_is_refused_when_disabled(client, create_order, auth_headers, gateway, load_order):
    order = create_order()

    response = client.post(
        "/payments/card",
        json=card_payload(order["id"], token=None, test_mode=True),
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Test mode payments are disabled"
    assert load_order(order["id"]).status == "pending"


def test_test_mode_approves_without_gateway(client, create_order, auth_headers, gateway, monkeypatch):
    monkeypatch.setattr(settings, "payments_test_mode_enabled", True)
    order = create_order()

    response = client.post(
        "/payments/card",
        json=card_payload(order["id"], token=None, test_mode=True),
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "approved"
    assert body["order_status"] == "processing"
    assert body["payment_id"].startswith("test-")
    assert gateway.calls == []


def test_card_gateway_error_is_generic(client, create_order, auth_headers, gateway, gateway_error, load_order):
    gateway.error = gateway_error
    order = create_order()

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {"detail": "Payment provider error"}
    assert "secret" not in response.text
    stored = load_order(order["id"])
    assert stored.payment_status == "pending"
    assert stored.payment_transaction_id is None


def test_cannot_pay_cancelled_order(client, create_order, auth_headers, gateway):
    order = create_order()
    client.patch(f"/orders/{order['id']}", json={"status": "cancelled"}, headers=auth_headers)

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.status_code == 400
    assert gateway.calls == []


def test_cannot_pay_paid_order_twice(client, create_order, auth_headers, gateway):
    order = create_order()
    client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.status_code == 400
    assert len(gateway.calls) == 1


def test_cannot_pay_other_users_order(client, create_order, other_headers, gateway):
    order = create_order()

    response = client.post("/payments/card", json=card_payload(order["id"]), headers=other_headers)

    assert response.status_code == 403
    assert gateway.calls == []


def test_save_card_and_list_methods(client, create_order, auth_headers):
    order = create_order()

    client.post("/payments/card", json=card_payload(order["id"], save_card=True), headers=auth_headers)
    response = client.get("/payments/methods", headers=auth_headers)

    assert response.status_code == 200
    methods = response.json()
    assert len(methods) == 1
    assert methods[0]["brand"] == "visa"
    assert methods[0]["last_four"] == "4242"
    assert methods[0]["expiry_year"] == 2030


def test_rejected_card_is_not_saved(client, create_order, auth_headers, gateway):
    gateway.next_status = "rejected"
    order = create_order()

    client.post("/payments/card", json=card_payload(order["id"], save_card=True), headers=auth_headers)

    assert client.get("/payments/methods", headers=auth_headers).json() == []


# -------- PIX --------

def test_pix_applies_five_percent_discount(client, create_order, auth_headers, gateway, load_order):
    order = create_order()

    response = client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["transaction_id"] == "1001"
    assert body["qr_code"] == "00020126580014br.gov.bcb.pix"
    assert body["qr_code_base64"] == "iVBORw0KGgo="
    assert body["amount"] == "209.00"
    assert gateway.calls[0][1]["amount"] == Decimal("209.00")

    stored = load_order(order["id"])
    assert stored.payment_method == "pix"
    assert stored.discount_amount == Decimal("11.00")
    assert stored.total == Decimal("209.00")
    assert stored.subtotal + stored.shipping_cost - stored.discount_amount == stored.total


def test_pix_repeat_call_does_not_discount_again(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "pending"
    order = create_order()

    first = client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers).json()
    second = client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers).json()

    assert second == first
    assert len(gateway.calls) == 1
    assert load_order(order["id"]).total == Decimal("209.00")


def test_pix_pending_keeps_order_pending(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "pending"
    order = create_order()

    client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    stored = load_order(order["id"])
    assert stored.status == "pending"
    assert stored.payment_status == "pending"


def test_pix_rejection_leaves_order_pending(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "rejected"
    order = create_order()

    client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    stored = load_order(order["id"])
    assert stored.payment_status == "rejected"
    assert stored.status == "pending"

    response = client.get("/payments/1001", headers=auth_headers)

    assert response.json()["order_status"] == "payment_failed"


def test_pix_retry_after_rejection_creates_new_charge(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "rejected"
    order = create_order()
    client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    gateway.next_status = "pending"
    response = client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    assert response.json()["transaction_id"] == "1002"
    assert len(gateway.calls) == 2


def test_card_after_unpaid_pix_charges_full_total(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "pending"
    order = create_order()
    client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    gateway.next_status = "approved"
    response = client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    assert response.json()["status"] == "approved"
    assert gateway.calls[-1][1]["amount"] == Decimal("220.00")
    stored = load_order(order["id"])
    assert stored.discount_amount == Decimal("0.00")
    assert stored.total == Decimal("220.00")


def test_pix_gateway_error(client, create_order, auth_headers, gateway, gateway_error, load_order):
    gateway.error = gateway_error
    order = create_order()

    response = client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)

    assert response.status_code == 500
    assert load_order(order["id"]).total == Decimal("220.00")


# -------- BOLETO --------

def test_boleto_requires_tax_id_and_name(client, create_order, auth_headers, gateway):
    order = create_order()

    response = client.post(
        "/payments/boleto",
        json={"order_id": order["id"], "tax_id": "", "full_name": "Ana Souza"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert gateway.calls == []


def test_boleto_created(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "pending"
    order = create_order()

    response = client.post(
        "/payments/boleto",
        json={"order_id": order["id"], "tax_id": "123.456.789-09", "full_name": "Ana Souza"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["barcode"] == "23791234500000220003380260007890123456789012"
    assert body["pdf_url"] == "https://example.test/boleto.pdf"
    assert body["amount"] == "220.00"

    kwargs = gateway.calls[0][1]
    assert kwargs["payer"]["identification"] == {"type": "CPF", "number": "12345678909"}
    assert kwargs["payer"]["first_name"] == "Ana"
    assert kwargs["payer"]["last_name"] == "Souza"
    assert kwargs["expires_at"].hour == 23

    stored = load_order(order["id"])
    assert stored.payment_method == "boleto"
    assert stored.status == "pending"


def test_boleto_with_cnpj(client, create_order, auth_headers, gateway):
    gateway.next_status = "pending"
    order = create_order()

    client.post(
        "/payments/boleto",
        json={"order_id": order["id"], "tax_id": "12.345.678/0001-95", "full_name": "Loja Tênis"},
        headers=auth_headers,
    )

    assert gateway.calls[0][1]["payer"]["identification"]["type"] == "CNPJ"


@pytest.mark.parametrize("start, expected", [
    (date(2024, 5, 10), date(2024, 5, 15)),  # friday
    (date(2024, 5, 13), date(2024, 5, 16)),  # monday
    (date(2024, 5, 11), date(2024, 5, 15)),  # saturday
])
def test_add_business_days(start, expected):
    assert add_business_days(start, 3) == expected


# -------- PREFERENCE --------

def test_create_preference(client, create_order, auth_headers, gateway, load_order):
    order = create_order()

    response = client.post(
        "/payments/preference",
        json={
            "items": [{"id": "sneaker-1", "name": "Air Runner", "quantity": 2, "price": "100.00"}],
            "shipping_info": {"cost": "20.00"},
            "order_id": order["id"],
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"preference_id": "pref-123"}
    kwargs = gateway.calls[0][1]
    assert kwargs["external_reference"] == str(order["id"])
    assert kwargs["payer_email"] == "ana@example.com"
    assert load_order(order["id"]).preference_id == "pref-123"


def test_create_preference_without_items(client, auth_headers, gateway):
    response = client.post("/payments/preference", json={"items": []}, headers=auth_headers)

    assert response.status_code == 400
    assert gateway.calls == []


# -------- POLL --------

def test_poll_reconciles_order(client, create_order, auth_headers, gateway, load_order):
    gateway.next_status = "pending"
    order = create_order()
    client.post("/payments/pix", json={"order_id": order["id"]}, headers=auth_headers)
    gateway.set_status("1001", "approved")

    response = client.get("/payments/1001", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "approved"
    assert body["order_id"] == order["id"]
    assert body["order_status"] == "processing"

    stored = load_order(order["id"])
    assert stored.payment_status == "approved"
    assert stored.status_history[-1].created_by == "poll"


def test_poll_unchanged_status_writes_nothing(client, create_order, auth_headers, load_order):
    order = create_order()
    client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    response = client.get("/payments/1001", headers=auth_headers)

    assert response.json()["order_status"] == "processing"
    assert len(load_order(order["id"]).status_history) == 2


def test_poll_unknown_payment_returns_404(client, auth_headers):
    response = client.get("/payments/424242", headers=auth_headers)

    assert response.status_code == 404


def test_poll_other_users_payment_returns_403(client, create_order, auth_headers, other_headers, load_order):
    order = create_order()
    client.post("/payments/card", json=card_payload(order["id"]), headers=auth_headers)

    response = client.get("/payments/1001", headers=other_headers)

    assert response.status_code == 403


def test_poll_gateway_error_is_generic(client, auth_headers, gateway, gateway_error):
    gateway.error = gateway_error

    response = client.get("/payments/1001", headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {"detail": "Payment provider error"}
