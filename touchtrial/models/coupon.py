"""Pydantic models for discount coupons."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,32}$")


class Coupon(BaseModel):
    """A row from the ``coupons`` table."""

    id: str
    code: str
    discount_amount: int
    max_uses: int
    current_uses: int = 0
    is_active: bool = True
    first_order_only: bool = False
    created_at: Optional[datetime] = None

    @property
    def exhausted(self) -> bool:
        return self.current_uses >= self.max_uses


class CouponCreate(BaseModel):
    """Admin input for a new coupon."""

    code: str = Field(min_length=3, max_length=32)
    discount_amount: int = Field(gt=0)
    max_uses: int = Field(ge=1)
    first_order_only: bool = False

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        code = value.strip().upper()
        if not COUPON_CODE_PATTERN.match(code):
            raise ValueError("Coupon codes are 3-32 letters, digits, '-' or '_'")
        return code
