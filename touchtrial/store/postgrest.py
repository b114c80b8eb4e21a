"""PostgREST-backed data store.

Talks to the hosted backend's auto-generated REST API
(``{SUPABASE_URL}/rest/v1/<table>``). Filters use PostgREST operators
(``code=eq.TRIAL50``), counts use ``Prefer: count=exact`` and read the
total from the ``Content-Range`` header.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from touchtrial.models import Booking, BookingCreate, Coupon, CouponCreate, Phone

from .base import DataStore, StoreError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _decode_rows(model: type[M], rows: Any, table: str) -> list[M]:
    """Validate remote rows into models, skipping rows that don't fit."""
    if not isinstance(rows, list):
        raise StoreError(f"Unexpected response shape from {table}")
    decoded: list[M] = []
    for row in rows:
        try:
            decoded.append(model.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed %s row %s: %d validation errors",
                table, row.get("id", "?") if isinstance(row, dict) else "?", exc.error_count(),
            )
    return decoded


def _decode_one(model: type[M], rows: Any, table: str) -> M:
    """Decode the single row returned by an insert with return=representation."""
    if isinstance(rows, list):
        if not rows:
            raise StoreError(f"{table} insert returned no row")
        rows = rows[0]
    try:
        return model.model_validate(rows)
    except ValidationError as exc:
        raise StoreError(f"Malformed {table} row: {exc.error_count()} validation errors") from exc


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class PostgrestStore(DataStore):
    """DataStore backed by the PostgREST API of the hosted backend."""

    def __init__(
        self,
        rest_url: str,
        api_key: str,
        service_key: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rest_url = rest_url.rstrip("/")
        self._api_key = api_key
        self._auth_key = service_key or api_key
        self._timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._auth_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        """Issue one REST call; HTTP and transport failures become StoreError."""
        url = f"{self._rest_url}/{table}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.request(
                    method, url, params=params, json=json, headers=self._headers(prefer),
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            logger.error("%s %s failed (%d): %s", method, table, exc.response.status_code, message)
            raise StoreError(message, exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.error("%s %s transport error: %s", method, table, exc)
            raise StoreError(f"Store request failed: {exc}") from exc
        return resp

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    async def list_phones(self, active_only: bool = True) -> list[Phone]:
        params = {"select": "*", "order": "created_at.desc"}
        if active_only:
            params["is_active"] = "eq.true"
        resp = await self._request("GET", "phones", params=params)
        return _decode_rows(Phone, resp.json(), "phones")

    async def get_phone(self, phone_id: str) -> Optional[Phone]:
        resp = await self._request(
            "GET", "phones", params={"select": "*", "id": f"eq.{phone_id}", "limit": "1"},
        )
        phones = _decode_rows(Phone, resp.json(), "phones")
        return phones[0] if phones else None

    async def upsert_phones(self, phones: list[Phone]) -> list[Phone]:
        if not phones:
            return []
        resp = await self._request(
            "POST", "phones",
            json=[p.to_row() for p in phones],
            prefer="resolution=merge-duplicates,return=representation",
        )
        return _decode_rows(Phone, resp.json(), "phones")

    async def set_phone_active(self, phone_id: str, is_active: bool) -> None:
        await self._request(
            "PATCH", "phones", params={"id": f"eq.{phone_id}"}, json={"is_active": is_active},
        )

    async def delete_phone(self, phone_id: str) -> None:
        await self._request("DELETE", "phones", params={"id": f"eq.{phone_id}"})

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    async def find_active_coupon(self, code: str) -> Optional[Coupon]:
        resp = await self._request(
            "GET", "coupons",
            params={"select": "*", "code": f"eq.{code}", "is_active": "eq.true", "limit": "1"},
        )
        coupons = _decode_rows(Coupon, resp.json(), "coupons")
        return coupons[0] if coupons else None

    async def list_coupons(self) -> list[Coupon]:
        resp = await self._request(
            "GET", "coupons", params={"select": "*", "order": "created_at.desc"},
        )
        return _decode_rows(Coupon, resp.json(), "coupons")

    async def create_coupon(self, coupon: CouponCreate) -> Coupon:
        resp = await self._request(
            "POST", "coupons", json=coupon.model_dump(), prefer="return=representation",
        )
        return _decode_one(Coupon, resp.json(), "coupons")

    async def set_coupon_active(self, coupon_id: str, is_active: bool) -> None:
        await self._request(
            "PATCH", "coupons", params={"id": f"eq.{coupon_id}"}, json={"is_active": is_active},
        )

    async def delete_coupon(self, coupon_id: str) -> None:
        await self._request("DELETE", "coupons", params={"id": f"eq.{coupon_id}"})

    async def record_coupon_use(self, code: str) -> None:
        resp = await self._request(
            "GET", "coupons", params={"select": "*", "code": f"eq.{code}", "limit": "1"},
        )
        coupons = _decode_rows(Coupon, resp.json(), "coupons")
        if not coupons:
            raise StoreError(f"Coupon {code} not found", 404)
        coupon = coupons[0]
        # Conditional on the value we read so a concurrent redemption isn't overwritten
        await self._request(
            "PATCH", "coupons",
            params={"id": f"eq.{coupon.id}", "current_uses": f"eq.{coupon.current_uses}"},
            json={"current_uses": coupon.current_uses + 1},
        )

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    async def count_bookings(self, user_id: str) -> int:
        resp = await self._request(
            "GET", "bookings",
            params={"select": "id", "user_id": f"eq.{user_id}", "limit": "1"},
            prefer="count=exact",
        )
        content_range = resp.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1] if "/" in content_range else ""
        if total.isdigit():
            return int(total)
        # No exact count: fall back to whether any row came back
        rows = resp.json()
        return len(rows) if isinstance(rows, list) else 0

    async def create_booking(self, booking: BookingCreate) -> Booking:
        resp = await self._request(
            "POST", "bookings",
            json=booking.model_dump(mode="json"),
            prefer="return=representation",
        )
        return _decode_one(Booking, resp.json(), "bookings")

    async def list_bookings(self, user_id: str | None = None) -> list[Booking]:
        params = {"select": "*", "order": "created_at.desc"}
        if user_id:
            params["user_id"] = f"eq.{user_id}"
        resp = await self._request("GET", "bookings", params=params)
        return _decode_rows(Booking, resp.json(), "bookings")

    async def update_booking_status(self, booking_id: str, status: str) -> None:
        await self._request(
            "PATCH", "bookings", params={"id": f"eq.{booking_id}"}, json={"status": status},
        )

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def is_admin(self, user_id: str) -> bool:
        resp = await self._request(
            "GET", "user_roles",
            params={"select": "role", "user_id": f"eq.{user_id}", "role": "eq.admin", "limit": "1"},
        )
        rows = resp.json()
        return isinstance(rows, list) and len(rows) > 0
