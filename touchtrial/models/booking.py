"""Pydantic models for home-trial bookings."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

BookingStatus = Literal["pending", "confirmed", "delivered", "completed", "cancelled"]
PaymentMethod = Literal["upi", "card", "wallet"]

BOOKING_STATUSES: tuple[str, ...] = ("pending", "confirmed", "delivered", "completed", "cancelled")


class CheckoutRequest(BaseModel):
    """Delivery details collected from the shopper at checkout."""

    address: str
    delivery_date: date
    time_slot: str
    payment_method: PaymentMethod = "upi"


class BookingCreate(BaseModel):
    """Insert payload for the ``bookings`` table."""

    user_id: str
    phone_ids: list[str]
    phone_names: list[str]
    phone_variants: list[str] = []
    phone_colors: list[str] = []
    total_experience_fee: int
    convenience_fee: int
    total_amount: int
    coupon_code: Optional[str] = None
    discount_amount: int = 0
    delivery_address: str
    delivery_date: date
    time_slot: str
    payment_method: PaymentMethod
    status: BookingStatus = "pending"


class Booking(BookingCreate):
    """A stored booking row."""

    id: str
    status: str = "pending"
    payment_method: Optional[str] = None
    delivery_date: Optional[date] = None
    time_slot: Optional[str] = None
    created_at: datetime

    @field_validator("phone_ids", "phone_names", "phone_variants", "phone_colors", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return [] if value is None else value
