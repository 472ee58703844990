from sqlmodel import SQLModel, Field , Relationship
from typing import Optional , TYPE_CHECKING
from decimal import Decimal

if TYPE_CHECKING:
    from app.models.order import Order

class OrderItem(SQLModel, table=True):
    __tablename__ = "order_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: Optional[int] = Field(default=None, foreign_key="order.id", index=True)

    # snapshot of the cart line at checkout time
    product_ref: str
    variant_ref: str
    name: str = ""
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None

    unit_price: Decimal = Field(max_digits=10, decimal_places=2)
    quantity: int = Field(ge=1)

    order: Optional["Order"] = Relationship(back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
