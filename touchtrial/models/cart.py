"""Pydantic models for the home-trial cart."""

from pydantic import BaseModel

from .phone import Phone


class CartItem(BaseModel):
    """One phone selected for a home trial. At most one per phone id."""

    phone: Phone
    selected_variant: str = ""
    selected_color: str = ""

    model_config = {"frozen": True}


class FeeBreakdown(BaseModel):
    """Amounts due at checkout, derived from item count and coupon discount."""

    item_count: int
    base_phone_limit: int
    extra_phones: int
    extra_phone_charge: int
    deposit_fee: int
    convenience_fee: int
    gross_experience_fee: int
    coupon_discount: int
    total_amount: int
