"""Home-experience fee derivation.

All amounts are whole rupees. The breakdown is a pure function of the
number of phones in the trial cart and the coupon discount currently held.
"""

from __future__ import annotations

from touchtrial.models.cart import FeeBreakdown

BASE_PHONE_LIMIT = 5
EXTRA_PHONE_UNIT_CHARGE = 69
HOME_EXPERIENCE_DEPOSIT = 399
CONVENIENCE_FEE = 100


def compute_fees(item_count: int, coupon_discount: int = 0) -> FeeBreakdown:
    """Derive every fee shown at checkout.

    Deposit and convenience fee apply only to a non-empty cart, so an
    empty cart totals zero even if a stale coupon is still held. The
    total is clamped at zero.
    """
    item_count = max(0, item_count)
    coupon_discount = max(0, coupon_discount)

    extra_phones = max(0, item_count - BASE_PHONE_LIMIT)
    extra_phone_charge = extra_phones * EXTRA_PHONE_UNIT_CHARGE
    deposit_fee = HOME_EXPERIENCE_DEPOSIT if item_count > 0 else 0
    convenience_fee = CONVENIENCE_FEE if item_count > 0 else 0
    gross = deposit_fee + convenience_fee + extra_phone_charge

    return FeeBreakdown(
        item_count=item_count,
        base_phone_limit=BASE_PHONE_LIMIT,
        extra_phones=extra_phones,
        extra_phone_charge=extra_phone_charge,
        deposit_fee=deposit_fee,
        convenience_fee=convenience_fee,
        gross_experience_fee=gross,
        coupon_discount=coupon_discount,
        total_amount=max(0, gross - coupon_discount),
    )
