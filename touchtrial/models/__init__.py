"""Data models for the storefront."""

from .booking import BOOKING_STATUSES, Booking, BookingCreate, CheckoutRequest
from .cart import CartItem, FeeBreakdown
from .chat import ChatMessage, Recommendation
from .coupon import Coupon, CouponCreate
from .phone import BankOffer, Phone, PhoneColor, PhoneVariant

__all__ = [
    "BOOKING_STATUSES",
    "BankOffer",
    "Booking",
    "BookingCreate",
    "CartItem",
    "ChatMessage",
    "CheckoutRequest",
    "Coupon",
    "CouponCreate",
    "FeeBreakdown",
    "Phone",
    "PhoneColor",
    "PhoneVariant",
    "Recommendation",
]
