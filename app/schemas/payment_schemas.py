from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional
from decimal import Decimal


class PreferenceItem(BaseModel):
    id: Optional[str] = None
    name: str
    variant: Optional[str] = None
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    image: Optional[str] = None


class ShippingInfo(BaseModel):
    cost: Optional[Decimal] = Field(default=None, ge=0)
    address: Optional[dict] = None


class PreferenceRequest(BaseModel):
    items: List[PreferenceItem] = []
    shipping_info: Optional[ShippingInfo] = None
    order_id: Optional[int] = None


class PayerIdentification(BaseModel):
    type: str = "CPF"
    number: str


class CardPayer(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    identification: Optional[PayerIdentification] = None


class CardPaymentRequest(BaseModel):
    """Card charge request.

    The amount is only ever read from ``amount``; any other amount-like
    field is rejected by ``extra="forbid"`` instead of being guessed at.
    """

    model_config = ConfigDict(extra="forbid")

    order_id: int
    token: Optional[str] = None
    test_mode: bool = False
    installments: int = Field(default=1, ge=1, le=24)
    payment_method_id: str
    issuer_id: Optional[str] = None
    amount: Optional[Decimal] = None
    payer: Optional[CardPayer] = None
    save_card: bool = False

    @model_validator(mode="after")
    def require_token(self):
        if not self.test_mode and not self.token:
            raise ValueError("Card token is required")
        return self


class PixPaymentRequest(BaseModel):
    order_id: int


class BoletoPaymentRequest(BaseModel):
    order_id: int
    tax_id: str = ""
    full_name: str = ""


class SavedPaymentMethodOut(BaseModel):
    id: int
    brand: str
    last_four: str
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    holder_name: Optional[str] = None
