"""Checkout: turn a trial cart into a pending booking.

The shopper picks a delivery address, date and one of the fixed delivery
windows. The booking stores a snapshot of the phones and fees at the time
it was placed; the cart is cleared only once the insert succeeds.
"""

from __future__ import annotations

import logging
from datetime import date

from touchtrial.cart import TrialCart
from touchtrial.models import Booking, BookingCreate, CheckoutRequest
from touchtrial.store.base import DataStore, StoreError

logger = logging.getLogger(__name__)

TIME_SLOTS: tuple[str, ...] = (
    "9:00 AM - 11:00 AM",
    "11:00 AM - 1:00 PM",
    "1:00 PM - 3:00 PM",
    "3:00 PM - 5:00 PM",
    "5:00 PM - 7:00 PM",
    "7:00 PM - 9:00 PM",
)


class CheckoutError(ValueError):
    """Raised when checkout input is incomplete or invalid."""


def time_slot_order(slot: str | None) -> int:
    """Sort key for delivery windows; unknown slots sort last."""
    if not slot:
        return 999
    try:
        return TIME_SLOTS.index(slot)
    except ValueError:
        return 998


def validate_checkout(cart: TrialCart, request: CheckoutRequest, today: date | None = None) -> None:
    today = today or date.today()
    if cart.item_count == 0:
        raise CheckoutError("Your cart is empty. Add phones before checking out.")
    if not request.address.strip():
        raise CheckoutError("Please enter your delivery address.")
    if request.time_slot not in TIME_SLOTS:
        raise CheckoutError("Please select a valid delivery time slot.")
    if request.delivery_date < today:
        raise CheckoutError("Delivery date cannot be in the past.")


async def place_booking(
    cart: TrialCart,
    store: DataStore,
    user_id: str,
    request: CheckoutRequest,
    today: date | None = None,
) -> Booking:
    """Validate, insert a pending booking, redeem the coupon and clear the cart.

    Raises CheckoutError for invalid input and StoreError if the insert
    fails; the cart is left untouched in both cases.
    """
    validate_checkout(cart, request, today)

    fees = cart.fees
    items = cart.items
    payload = BookingCreate(
        user_id=user_id,
        phone_ids=[item.phone.id for item in items],
        phone_names=[item.phone.display_name for item in items],
        phone_variants=[item.selected_variant for item in items],
        phone_colors=[item.selected_color for item in items],
        total_experience_fee=fees.gross_experience_fee,
        convenience_fee=fees.convenience_fee,
        total_amount=fees.total_amount,
        coupon_code=cart.coupon_code or None,
        discount_amount=fees.gross_experience_fee - fees.total_amount,
        delivery_address=request.address.strip(),
        delivery_date=request.delivery_date,
        time_slot=request.time_slot,
        payment_method=request.payment_method,
    )

    booking = await store.create_booking(payload)
    logger.info(
        "Booking %s placed: %d phones, total %d", booking.id, len(items), booking.total_amount,
    )

    if payload.coupon_code:
        try:
            await store.record_coupon_use(payload.coupon_code)
        except StoreError:
            # The booking stands; the usage counter is reconciled by staff
            logger.exception("Failed to record use of coupon %s", payload.coupon_code)

    cart.clear_cart()
    return booking
