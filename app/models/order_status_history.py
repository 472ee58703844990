from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlmodel import SQLModel, Field, Relationship

if TYPE_CHECKING:
    from app.models.order import Order


class OrderStatusHistory(SQLModel, table=True):
    __tablename__ = "order_status_history"
    id: Optional[int] = Field(default=None, primary_key=True)

    order_id: Optional[int] = Field(default=None, foreign_key="order.id", index=True)
    status: str = Field(index=True)
    comment: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: str = Field(default="system")

    order: Optional["Order"] = Relationship(back_populates="status_history")
