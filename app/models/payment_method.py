from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class SavedPaymentMethod(SQLModel, table=True):
    """Display attributes of a card kept for reuse. Rows are never updated."""

    __tablename__ = "payment_method"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    brand: str
    last_four: str
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    holder_name: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
