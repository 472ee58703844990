"""
Shared fixtures for the order/payment test suite.

Provides:
- engine / session: in-memory SQLite shared by the app and the test
- gateway: FakeGateway injected in place of the Mercado Pago adapter
- client: TestClient with session and gateway overrides
- user / other_user / admin and their bearer headers
- create_order: posts an order through the API and returns its JSON
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from app.database import create_db_and_tables, get_session
from app.main import app
from app.models.order import Order
from app.models.user import User
from app.services.payment_gateway import GatewayError, GatewayPayment, get_payment_gateway
from app.utils.token import create_user_token


class FakeGateway:
    """In-memory stand-in for the payment provider."""

    def __init__(self):
        self.payments = {}
        self.calls = []
        self.next_status = "approved"
        self.error = None
        self._seq = 1000

    def _create(self, kind, kwargs, **extra):
        self.calls.append((kind, kwargs))
        if self.error:
            raise self.error
        self._seq += 1
        payment = GatewayPayment(
            id=str(self._seq),
            status=self.next_status,
            status_detail="accredited" if self.next_status == "approved" else self.next_status,
            external_reference=kwargs.get("external_reference"),
            transaction_amount=kwargs.get("amount"),
            **extra,
        )
        self.payments[payment.id] = payment
        return payment

    def add_payment(self, payment_id, status, external_reference=None, payment_method_id="visa"):
        payment = GatewayPayment(
            id=str(payment_id),
            status=status,
            external_reference=external_reference,
            payment_method_id=payment_method_id,
        )
        self.payments[payment.id] = payment
        return payment

    def set_status(self, payment_id, status):
        self.payments[str(payment_id)] = replace(self.payments[str(payment_id)], status=status)

    def create_preference(self, **kwargs):
        self.calls.append(("preference", kwargs))
        if self.error:
            raise self.error
        return "pref-123"

    def create_card_payment(self, **kwargs):
        return self._create(
            "card",
            kwargs,
            payment_method_id=kwargs["payment_method_id"],
            installments=kwargs["installments"],
            card={
                "last_four_digits": "4242",
                "expiration_month": 11,
                "expiration_year": 2030,
                "cardholder": {"name": "APRO"},
            },
        )

    def create_pix_payment(self, **kwargs):
        return self._create(
            "pix",
            kwargs,
            payment_method_id="pix",
            qr_code="00020126580014br.gov.bcb.pix",
            qr_code_base64="iVBORw0KGgo=",
            date_of_expiration="2030-01-01T00:00:00.000-03:00",
        )

    def create_boleto_payment(self, **kwargs):
        return self._create(
            "boleto",
            kwargs,
            payment_method_id="bolbradesco",
            barcode="23791234500000220003380260007890123456789012",
            pdf_url="https://example.test/boleto.pdf",
        )

    def get_payment(self, payment_id):
        self.calls.append(("get", payment_id))
        if self.error:
            raise self.error
        return self.payments.get(str(payment_id))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(engine, gateway):
    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _make_user(session, email, user_type="customer"):
    user = User(first_name="Ana", last_name="Souza", email=email, user_type=user_type)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def user(session):
    return _make_user(session, "ana@example.com")


@pytest.fixture
def other_user(session):
    return _make_user(session, "bruno@example.com")


@pytest.fixture
def admin(session):
    return _make_user(session, "admin@example.com", user_type="admin")


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
def other_headers(other_user):
    return {"Authorization": f"Bearer {create_user_token(other_user)}"}


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_user_token(admin)}"}


SHIPPING_ADDRESS = {
    "recipient_name": "Ana Souza",
    "street": "Rua Augusta",
    "number": "1500",
    "neighborhood": "Consolação",
    "city": "São Paulo",
    "state": "SP",
    "zip_code": "01304-001",
}


def _order_payload(**overrides):
    payload = {
        "items": [
            {
                "product_ref": "sneaker-1",
                "variant_ref": "sneaker-1-42-black",
                "quantity": 2,
                "price": "100.00",
                "name": "Air Runner",
                "size": "42",
                "color": "black",
            }
        ],
        "shipping_address": SHIPPING_ADDRESS,
        "shipping_method": "normal",
        "shipping_price": "20.00",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def order_payload():
    return _order_payload


@pytest.fixture
def create_order(client, auth_headers):
    def _create(headers=None, **overrides):
        response = client.post("/orders", json=_order_payload(**overrides), headers=headers or auth_headers)
        assert response.status_code == 201, response.text
        return response.json()
    return _create


@pytest.fixture
def load_order(session):
    def _load(order_id):
        session.expire_all()
        return session.get(Order, order_id)
    return _load


@pytest.fixture
def force_status(session):
    """Set an order's status directly, as an out-of-band process would."""
    def _force(order_id, status, payment_status=None):
        session.expire_all()
        order = session.get(Order, order_id)
        order.status = status
        if payment_status:
            order.payment_status = payment_status
        session.add(order)
        session.commit()
        return order
    return _force


@pytest.fixture
def gateway_error():
    return GatewayError("Gateway returned 400: {\"message\": \"invalid card_token_id secret=abc\"}", status_code=400)
