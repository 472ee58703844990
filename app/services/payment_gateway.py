"""Payment gateway port and its Mercado Pago REST adapter.

Services receive a gateway instance explicitly (see ``get_payment_gateway``),
so tests can hand in a fake without touching module state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

import requests
from fastapi import Request

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    status: str
    status_detail: Optional[str] = None
    payment_method_id: Optional[str] = None
    external_reference: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    installments: Optional[int] = None
    card: Dict[str, Any] = field(default_factory=dict)
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    barcode: Optional[str] = None
    pdf_url: Optional[str] = None
    date_of_expiration: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "GatewayPayment":
        poi = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        amount = data.get("transaction_amount")
        return cls(
            id=str(data["id"]),
            status=data.get("status") or "pending",
            status_detail=data.get("status_detail"),
            payment_method_id=data.get("payment_method_id"),
            external_reference=data.get("external_reference"),
            transaction_amount=Decimal(str(amount)) if amount is not None else None,
            installments=data.get("installments"),
            card=data.get("card") or {},
            qr_code=poi.get("qr_code"),
            qr_code_base64=poi.get("qr_code_base64"),
            barcode=(data.get("barcode") or {}).get("content"),
            pdf_url=(data.get("transaction_details") or {}).get("external_resource_url"),
            date_of_expiration=data.get("date_of_expiration"),
        )


class PaymentGateway(Protocol):
    def create_preference(
        self, *, items: List[dict], payer_email: str, external_reference: Optional[str],
        shipping_cost: Optional[Decimal], shipping_address: Optional[dict], metadata: dict,
    ) -> str:
        ...

    def create_card_payment(
        self, *, amount: Decimal, token: str, installments: int, payment_method_id: str,
        issuer_id: Optional[str], payer: dict, description: str, external_reference: str,
    ) -> GatewayPayment:
        ...

    def create_pix_payment(
        self, *, amount: Decimal, payer: dict, description: str, external_reference: str,
    ) -> GatewayPayment:
        ...

    def create_boleto_payment(
        self, *, amount: Decimal, payer: dict, description: str, external_reference: str,
        expires_at: datetime,
    ) -> GatewayPayment:
        ...

    def get_payment(self, payment_id: str) -> Optional[GatewayPayment]:
        ...


class MercadoPagoGateway:
    def __init__(self, access_token: str, *, base_url: str = "https://api.mercadopago.com",
                 notification_url: Optional[str] = None, timeout: int = 15,
                 http: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.notification_url = notification_url
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, *, json: Optional[dict] = None) -> dict:
        headers = {}
        if method == "POST":
            # the API refuses payment creation without one
            headers["X-Idempotency-Key"] = str(uuid4())

        try:
            response = self.http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e

        if response.status_code >= 400:
            raise GatewayError(
                f"Gateway returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError("Gateway returned a non-JSON body") from e

    def _payment_body(self, *, amount, payment_method_id, payer, description, external_reference) -> dict:
        body = {
            "transaction_amount": float(amount),
            "description": description,
            "payment_method_id": payment_method_id,
            "payer": payer,
            "external_reference": external_reference,
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url
        return body

    def create_preference(self, *, items, payer_email, external_reference=None,
                          shipping_cost=None, shipping_address=None, metadata=None) -> str:
        body = {
            "items": [
                {
                    "id": item.get("id"),
                    "title": item["name"],
                    "description": f"{item['name']} - {item['variant']}" if item.get("variant") else item["name"],
                    "quantity": item["quantity"],
                    "currency_id": "BRL",
                    "unit_price": float(item["price"]),
                    "picture_url": item.get("image"),
                }
                for item in items
            ],
            "payer": {"email": payer_email},
            "metadata": metadata or {},
        }
        if external_reference:
            body["external_reference"] = external_reference
        if self.notification_url:
            body["notification_url"] = self.notification_url
        if shipping_cost:
            address = shipping_address or {}
            body["shipments"] = {
                "cost": float(shipping_cost),
                "mode": "not_specified",
                "receiver_address": {
                    "zip_code": address.get("zip_code"),
                    "street_name": address.get("street"),
                    "street_number": address.get("number"),
                    "city_name": address.get("city"),
                    "state_name": address.get("state"),
                    "country_name": "Brasil",
                },
            }

        data = self._request("POST", "/checkout/preferences", json=body)
        return str(data["id"])

    def create_card_payment(self, *, amount, token, installments, payment_method_id,
                            issuer_id, payer, description, external_reference) -> GatewayPayment:
        body = self._payment_body(
            amount=amount,
            payment_method_id=payment_method_id,
            payer=payer,
            description=description,
            external_reference=external_reference,
        )
        body["token"] = token
        body["installments"] = installments
        if issuer_id:
            body["issuer_id"] = issuer_id

        return GatewayPayment.from_api(self._request("POST", "/v1/payments", json=body))

    def create_pix_payment(self, *, amount, payer, description, external_reference) -> GatewayPayment:
        body = self._payment_body(
            amount=amount,
            payment_method_id="pix",
            payer=payer,
            description=description,
            external_reference=external_reference,
        )
        return GatewayPayment.from_api(self._request("POST", "/v1/payments", json=body))

    def create_boleto_payment(self, *, amount, payer, description, external_reference,
                              expires_at) -> GatewayPayment:
        body = self._payment_body(
            amount=amount,
            payment_method_id="bolbradesco",
            payer=payer,
            description=description,
            external_reference=external_reference,
        )
        body["date_of_expiration"] = expires_at.isoformat(timespec="milliseconds")
        return GatewayPayment.from_api(self._request("POST", "/v1/payments", json=body))

    def get_payment(self, payment_id: str) -> Optional[GatewayPayment]:
        try:
            data = self._request("GET", f"/v1/payments/{payment_id}")
        except GatewayError as e:
            if e.status_code == 404:
                return None
            raise
        return GatewayPayment.from_api(data)


def build_payment_gateway(settings) -> MercadoPagoGateway:
    return MercadoPagoGateway(
        settings.mercadopago_access_token,
        base_url=settings.mercadopago_api_url,
        notification_url=settings.webhook_url,
        timeout=settings.gateway_timeout_seconds,
    )


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway
