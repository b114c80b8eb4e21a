"""Tests for booking placement."""

from datetime import date

import pytest

from tests.conftest import make_coupon, make_phone
from touchtrial.cart import TrialCart
from touchtrial.checkout import TIME_SLOTS, CheckoutError, place_booking, time_slot_order
from touchtrial.models import CheckoutRequest
from touchtrial.store.base import StoreError

TODAY = date(2026, 3, 10)


def _request(**overrides) -> CheckoutRequest:
    data = {
        "address": "12 MG Road, Bengaluru 560001",
        "delivery_date": date(2026, 3, 12),
        "time_slot": TIME_SLOTS[0],
        "payment_method": "upi",
    }
    data.update(overrides)
    return CheckoutRequest(**data)


@pytest.fixture
def cart(store):
    c = TrialCart(store)
    c.add_to_cart(make_phone("pixel-8"))
    c.add_to_cart(make_phone("iphone-15", brand="Apple", model="iPhone 15"), color="Black")
    return c


class TestTimeSlotOrder:
    def test_known_slots_in_order(self):
        assert [time_slot_order(s) for s in TIME_SLOTS] == list(range(6))

    def test_unknown_and_missing_sort_last(self):
        assert time_slot_order("midnight") == 998
        assert time_slot_order(None) == 999


class TestValidation:
    async def test_empty_cart(self, store):
        with pytest.raises(CheckoutError, match="empty"):
            await place_booking(TrialCart(store), store, "user-1", _request(), today=TODAY)

    async def test_blank_address(self, cart, store):
        with pytest.raises(CheckoutError, match="address"):
            await place_booking(cart, store, "user-1", _request(address="   "), today=TODAY)

    async def test_unknown_time_slot(self, cart, store):
        with pytest.raises(CheckoutError, match="time slot"):
            await place_booking(cart, store, "user-1", _request(time_slot="anytime"), today=TODAY)

    async def test_past_date(self, cart, store):
        with pytest.raises(CheckoutError, match="past"):
            await place_booking(cart, store, "user-1", _request(delivery_date=date(2026, 3, 9)), today=TODAY)

    async def test_failed_validation_keeps_cart(self, cart, store):
        with pytest.raises(CheckoutError):
            await place_booking(cart, store, "user-1", _request(address=""), today=TODAY)
        assert cart.item_count == 2
        assert store.bookings == []


class TestPlaceBooking:
    async def test_creates_pending_booking_with_snapshot(self, cart, store):
        booking = await place_booking(cart, store, "user-1", _request(), today=TODAY)
        assert booking.status == "pending"
        assert booking.user_id == "user-1"
        assert booking.phone_ids == ["pixel-8", "iphone-15"]
        assert booking.phone_names == ["Google Pixel 8", "Apple iPhone 15"]
        assert booking.phone_variants == ["8GB / 128GB", "8GB / 128GB"]
        assert booking.phone_colors == ["Obsidian", "Black"]
        assert booking.total_experience_fee == 499
        assert booking.total_amount == 499
        assert booking.discount_amount == 0
        assert booking.coupon_code is None

    async def test_clears_cart(self, cart, store):
        await place_booking(cart, store, "user-1", _request(), today=TODAY)
        assert cart.item_count == 0

    async def test_redeems_coupon(self, cart, store):
        assert await cart.apply_coupon("TRIAL50")
        booking = await place_booking(cart, store, "user-1", _request(), today=TODAY)
        assert booking.coupon_code == "TRIAL50"
        assert booking.discount_amount == 50
        assert booking.total_amount == 449
        assert store.coupons["TRIAL50"].current_uses == 1
        assert cart.coupon_code == ""

    async def test_discount_capped_at_gross(self, cart, store):
        store.coupons["BIG"] = make_coupon("BIG", discount_amount=5000)
        assert await cart.apply_coupon("BIG")
        booking = await place_booking(cart, store, "user-1", _request(), today=TODAY)
        assert booking.total_amount == 0
        assert booking.discount_amount == 499

    async def test_coupon_counter_failure_does_not_undo_booking(self, cart, store):
        assert await cart.apply_coupon("TRIAL50")
        del store.coupons["TRIAL50"]
        booking = await place_booking(cart, store, "user-1", _request(), today=TODAY)
        assert booking.id
        assert cart.item_count == 0

    async def test_insert_failure_keeps_cart(self, cart, store):
        store.fail_with = StoreError("insert failed", 500)
        with pytest.raises(StoreError):
            await place_booking(cart, store, "user-1", _request(), today=TODAY)
        assert cart.item_count == 2
