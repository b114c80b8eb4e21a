"""Abstract base class for the remote data store.

Defines the catalogue, coupon, booking and role queries the storefront
issues. The hosted REST backend implements this ABC; tests substitute an
in-memory store.
"""

from abc import ABC, abstractmethod
from typing import Optional

from touchtrial.models import Booking, BookingCreate, Coupon, CouponCreate, Phone


class StoreError(Exception):
    """Raised when the backend rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DataStore(ABC):
    """Abstract storefront backend.

    Every method returns typed models; implementations decode remote rows
    at this boundary.
    """

    # ── Catalogue ────────────────────────────────────────────────

    @abstractmethod
    async def list_phones(self, active_only: bool = True) -> list[Phone]:
        """Return catalogue phones, newest first."""

    @abstractmethod
    async def get_phone(self, phone_id: str) -> Optional[Phone]:
        """Return one phone by id, or None."""

    @abstractmethod
    async def upsert_phones(self, phones: list[Phone]) -> list[Phone]:
        """Insert or replace phones keyed by id."""

    @abstractmethod
    async def set_phone_active(self, phone_id: str, is_active: bool) -> None:
        """Show or hide a phone in the shopper catalogue."""

    @abstractmethod
    async def delete_phone(self, phone_id: str) -> None:
        """Remove a phone from the catalogue."""

    # ── Coupons ──────────────────────────────────────────────────

    @abstractmethod
    async def find_active_coupon(self, code: str) -> Optional[Coupon]:
        """Single-row lookup filtered to active coupons with this code."""

    @abstractmethod
    async def list_coupons(self) -> list[Coupon]:
        """All coupons, newest first."""

    @abstractmethod
    async def create_coupon(self, coupon: CouponCreate) -> Coupon:
        """Create a coupon and return the stored row."""

    @abstractmethod
    async def set_coupon_active(self, coupon_id: str, is_active: bool) -> None:
        """Enable or disable a coupon."""

    @abstractmethod
    async def delete_coupon(self, coupon_id: str) -> None:
        """Delete a coupon."""

    @abstractmethod
    async def record_coupon_use(self, code: str) -> None:
        """Increment ``current_uses`` for the coupon with this code."""

    # ── Bookings ─────────────────────────────────────────────────

    @abstractmethod
    async def count_bookings(self, user_id: str) -> int:
        """Number of bookings the user has ever placed."""

    @abstractmethod
    async def create_booking(self, booking: BookingCreate) -> Booking:
        """Insert a booking and return the stored row."""

    @abstractmethod
    async def list_bookings(self, user_id: str | None = None) -> list[Booking]:
        """Bookings newest first, optionally for a single user."""

    @abstractmethod
    async def update_booking_status(self, booking_id: str, status: str) -> None:
        """Move a booking to a new status."""

    # ── Roles ────────────────────────────────────────────────────

    @abstractmethod
    async def is_admin(self, user_id: str) -> bool:
        """True if the user holds the ``admin`` role."""
