from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, event
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from app.models.order_item import OrderItem
from app.models.order_status_history import OrderStatusHistory

CENTS = Decimal("0.01")


def to_cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(index=True, unique=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    # shipping
    shipping_address: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    shipping_method: str = Field(default="normal")
    shipping_cost: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    tracking_number: Optional[str] = None

    # payment sub-document
    payment_method: str = Field(default="pending")
    payment_transaction_id: Optional[str] = Field(default=None, index=True)
    payment_status: str = Field(default="pending")
    payment_details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    preference_id: Optional[str] = Field(default=None, index=True)

    subtotal: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    total: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    coupon_id: Optional[int] = Field(default=None, foreign_key="coupon.id")

    status: str = Field(default="pending", index=True)
    payment_expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"onupdate": datetime.utcnow},
    )

    items: List["OrderItem"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderItem.id"},
    )
    status_history: List["OrderStatusHistory"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderStatusHistory.id"},
    )

    def recalculate_totals(self) -> None:
        """total = subtotal + shipping_cost - discount_amount, from the items."""
        self.subtotal = to_cents(sum((i.unit_price * i.quantity for i in self.items), Decimal("0")))
        self.shipping_cost = to_cents(self.shipping_cost or 0)
        self.discount_amount = to_cents(self.discount_amount or 0)
        self.total = self.subtotal + self.shipping_cost - self.discount_amount

    def set_status(self, status: str, comment: Optional[str] = None, created_by: str = "system") -> None:
        self.status = status
        self.status_history.append(
            OrderStatusHistory(status=status, comment=comment, created_by=created_by)
        )


@event.listens_for(Session, "before_flush")
def _recalculate_order_totals(session, flush_context, instances):
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, Order):
            obj.recalculate_totals()
