from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
from decimal import Decimal

class Coupon(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    description: str = ""

    discount_type: str = Field(default="percentage")  # percentage, fixed_amount
    discount_value: Decimal = Field(max_digits=10, decimal_places=2)
    max_discount_value: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    minimum_purchase: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)

    # None means unlimited
    max_uses: Optional[int] = None
    uses_count: int = Field(default=0)
    max_uses_per_user: int = Field(default=1)

    is_active: bool = Field(default=True)
    start_date: datetime = Field(default_factory=datetime.utcnow)
    end_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
