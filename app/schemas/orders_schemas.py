from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from app.constants.order_status import PaymentMethod, ShippingMethod


class ShippingAddress(BaseModel):
    recipient_name: str
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: str
    state: str
    zip_code: str
    phone_number: Optional[str] = None


class OrderItemCreate(BaseModel):
    product_ref: str
    variant_ref: str
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0, decimal_places=2)
    name: str = ""
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None


class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # emptiness is checked by the order service so the error is a 400
    items: List[OrderItemCreate] = []
    shipping_address: Optional[ShippingAddress] = None
    shipping_method: ShippingMethod = ShippingMethod.normal
    shipping_price: Optional[Decimal] = Field(default=None, ge=0)
    payment_method: PaymentMethod = PaymentMethod.pending
    coupon_code: Optional[str] = None
    preference_id: Optional[str] = None


class OrderUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str
    cancellation_reason: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str
    tracking_number: Optional[str] = None
    comment: Optional[str] = None


class OrderItemOut(BaseModel):
    product_ref: str
    variant_ref: str
    name: str
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None
    unit_price: float
    quantity: int
    line_total: float


class ShippingOut(BaseModel):
    address: dict
    method: str
    cost: float
    tracking_number: Optional[str] = None


class PaymentOut(BaseModel):
    method: str
    transaction_id: Optional[str] = None
    status: str
    details: Optional[dict] = None


class StatusHistoryOut(BaseModel):
    status: str
    comment: Optional[str] = None
    created_at: datetime
    created_by: str


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: int
    status: str
    items: List[OrderItemOut]
    shipping: ShippingOut
    payment: PaymentOut
    subtotal: float
    discount_amount: float
    total: float
    coupon_id: Optional[int] = None
    status_history: List[StatusHistoryOut]
    payment_expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order) -> "OrderOut":
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status,
            items=[
                OrderItemOut(
                    product_ref=i.product_ref,
                    variant_ref=i.variant_ref,
                    name=i.name,
                    size=i.size,
                    color=i.color,
                    image=i.image,
                    unit_price=float(i.unit_price),
                    quantity=i.quantity,
                    line_total=float(i.line_total),
                )
                for i in order.items
            ],
            shipping=ShippingOut(
                address=order.shipping_address,
                method=order.shipping_method,
                cost=float(order.shipping_cost),
                tracking_number=order.tracking_number,
            ),
            payment=PaymentOut(
                method=order.payment_method,
                transaction_id=order.payment_transaction_id,
                status=order.payment_status,
                details=order.payment_details,
            ),
            subtotal=float(order.subtotal),
            discount_amount=float(order.discount_amount),
            total=float(order.total),
            coupon_id=order.coupon_id,
            status_history=[
                StatusHistoryOut(
                    status=h.status,
                    comment=h.comment,
                    created_at=h.created_at,
                    created_by=h.created_by,
                )
                for h in order.status_history
            ],
            payment_expires_at=order.payment_expires_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            shipped_at=order.shipped_at,
            delivered_at=order.delivered_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
