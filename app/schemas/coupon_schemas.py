from pydantic import BaseModel, Field, model_validator
from typing import Literal, Optional
from datetime import datetime
from decimal import Decimal


class CouponValidateRequest(BaseModel):
    code: str
    subtotal: Decimal = Field(ge=0)


class CouponCreate(BaseModel):
    code: str
    description: str
    discount_type: Literal["percentage", "fixed_amount"] = "percentage"
    discount_value: Decimal = Field(gt=0)
    max_discount_value: Optional[Decimal] = Field(default=None, gt=0)
    minimum_purchase: Decimal = Field(default=Decimal("0"), ge=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: int = Field(default=1, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_discount(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be after start_date")
        return self
