"""Home-trial cart: the phones a shopper wants delivered, and what they owe.

Each shopper session owns one TrialCart. Item and coupon state change only
through the methods below, and every change swaps in a new snapshot
rather than mutating the current one in place.
"""

from __future__ import annotations

import logging
from typing import Optional

from touchtrial.models import CartItem, FeeBreakdown, Phone
from touchtrial.models.coupon import COUPON_CODE_PATTERN
from touchtrial.pricing import compute_fees
from touchtrial.store.base import DataStore

log = logging.getLogger("touchtrial.cart")


def normalize_coupon_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_coupon_format(code: str) -> bool:
    """Check a code's shape before any lookup is made."""
    return bool(COUPON_CODE_PATTERN.match(normalize_coupon_code(code)))


class TrialCart:
    """Phones selected for a home trial, plus at most one applied coupon."""

    def __init__(self, store: DataStore) -> None:
        self._store = store
        self._items: dict[str, CartItem] = {}
        self._coupon_code = ""
        self._coupon_discount = 0
        self._coupon_pending = False

    # ── Items ─────────────────────────────────────────────────

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    @property
    def item_count(self) -> int:
        return len(self._items)

    def is_in_cart(self, phone_id: str) -> bool:
        return phone_id in self._items

    def get_item(self, phone_id: str) -> Optional[CartItem]:
        return self._items.get(phone_id)

    def add_to_cart(
        self,
        phone: Phone,
        variant: str | None = None,
        color: str | None = None,
    ) -> CartItem:
        """Add a phone, or update the selection of one already in the cart.

        Re-adding only overwrites the fields that are passed. A new entry
        defaults to the phone's first catalogue variant and colour.
        """
        existing = self._items.get(phone.id)
        if existing is not None:
            updates = {}
            if variant is not None:
                updates["selected_variant"] = variant
            if color is not None:
                updates["selected_color"] = color
            item = existing.model_copy(update=updates) if updates else existing
        else:
            item = CartItem(
                phone=phone,
                selected_variant=variant if variant is not None else phone.default_variant,
                selected_color=color if color is not None else phone.default_color,
            )

        self._items = {**self._items, phone.id: item}
        log.debug("Cart add: %s variant=%s color=%s", phone.id, item.selected_variant, item.selected_color)
        return item

    def remove_from_cart(self, phone_id: str) -> None:
        if phone_id not in self._items:
            return
        self._items = {pid: item for pid, item in self._items.items() if pid != phone_id}

    def clear_cart(self) -> None:
        """Empty the cart and drop the coupon with it."""
        self._items = {}
        self._coupon_code = ""
        self._coupon_discount = 0

    # ── Coupon ────────────────────────────────────────────────

    @property
    def coupon_code(self) -> str:
        return self._coupon_code

    @property
    def coupon_discount(self) -> int:
        return self._coupon_discount

    @property
    def coupon_pending(self) -> bool:
        return self._coupon_pending

    async def apply_coupon(self, code: str, user_id: str | None = None) -> bool:
        """Validate a code against the store and hold its discount.

        Returns False, leaving state untouched, when the code is malformed,
        unknown or inactive, used up, first-order-only for a returning
        customer, or when the lookup itself fails. Never raises. A call made
        while another is still pending is rejected.
        """
        upper = normalize_coupon_code(code)
        if not COUPON_CODE_PATTERN.match(upper):
            log.info("Coupon rejected: malformed code")
            return False

        if self._coupon_pending:
            log.info("Coupon %s rejected: another coupon lookup is in flight", upper)
            return False

        self._coupon_pending = True
        try:
            coupon = await self._store.find_active_coupon(upper)
            if coupon is None:
                log.info("Coupon %s rejected: not found or inactive", upper)
                return False

            if coupon.exhausted:
                log.info("Coupon %s rejected: usage cap reached (%d/%d)",
                         upper, coupon.current_uses, coupon.max_uses)
                return False

            if coupon.discount_amount <= 0:
                log.warning("Coupon %s rejected: non-positive discount %d", upper, coupon.discount_amount)
                return False

            if coupon.first_order_only and user_id:
                previous = await self._store.count_bookings(user_id)
                if previous > 0:
                    log.info("Coupon %s rejected: first order only, user has %d bookings",
                             upper, previous)
                    return False
        except Exception as e:
            # Fail closed: an ambiguous lookup never grants a discount
            log.error("Coupon %s lookup failed: %s", upper, e)
            return False
        finally:
            self._coupon_pending = False

        self._coupon_code = coupon.code.upper()
        self._coupon_discount = coupon.discount_amount
        log.info("Coupon %s applied: -%d", self._coupon_code, self._coupon_discount)
        return True

    def remove_coupon(self) -> None:
        self._coupon_code = ""
        self._coupon_discount = 0

    # ── Derived amounts ───────────────────────────────────────

    @property
    def fees(self) -> FeeBreakdown:
        return compute_fees(self.item_count, self._coupon_discount)

    @property
    def total_amount(self) -> int:
        return self.fees.total_amount

    def to_dict(self) -> dict:
        """Serialize cart contents and fees for the API."""
        return {
            "items": [
                {
                    "phone_id": item.phone.id,
                    "name": item.phone.display_name,
                    "image": item.phone.image,
                    "selected_variant": item.selected_variant,
                    "selected_color": item.selected_color,
                }
                for item in self._items.values()
            ],
            "coupon_code": self._coupon_code or None,
            "fees": self.fees.model_dump(),
        }
