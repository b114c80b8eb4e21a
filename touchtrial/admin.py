"""Staff dashboard API: bookings, coupons and the phone catalogue.

Every route requires admin access (see touchtrial.auth.require_admin).
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from catalog_tools.import_csv import parse_csv_text, template_csv
from touchtrial.auth import require_admin
from touchtrial.checkout import time_slot_order
from touchtrial.models import BOOKING_STATUSES, Booking, CouponCreate, Phone
from touchtrial.store.base import DataStore, StoreError

log = logging.getLogger("touchtrial.admin")

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])

BOOKING_SORTS = ("newest", "oldest", "timeslot_asc", "timeslot_desc")

CSV_HEADERS = [
    "Booking ID", "User ID", "Phones", "Variants", "Colors", "Delivery Date",
    "Time Slot", "Delivery Address", "Payment Method", "Amount", "Coupon",
    "Status", "Booked On",
]


class StatusIn(BaseModel):
    status: str


class ActiveIn(BaseModel):
    is_active: bool


def _store(request: Request) -> DataStore:
    return request.app.state.services.store


def _store_failed(action: str, e: StoreError) -> JSONResponse:
    log.error("Admin %s failed: %s", action, e)
    if e.status_code == 409:
        return JSONResponse({"error": e.message}, status_code=409)
    return JSONResponse({"error": f"Failed to {action}"}, status_code=502)


# ── Bookings ─────────────────────────────────────────────────────


def filter_bookings(bookings: list[Booking], status: str = "all", sort: str = "newest") -> list[Booking]:
    """Status filter plus one of the dashboard sort orders."""
    selected = bookings if status == "all" else [b for b in bookings if b.status == status]

    if sort == "timeslot_asc":
        return sorted(selected, key=lambda b: time_slot_order(b.time_slot))
    if sort == "timeslot_desc":
        return sorted(selected, key=lambda b: time_slot_order(b.time_slot), reverse=True)
    return sorted(selected, key=lambda b: b.created_at, reverse=(sort != "oldest"))


def booking_stats(bookings: list[Booking]) -> dict[str, int]:
    stats = {"total": len(bookings)}
    for status in BOOKING_STATUSES:
        stats[status] = sum(1 for b in bookings if b.status == status)
    return stats


def bookings_to_csv(bookings: list[Booking]) -> str:
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for b in bookings:
        writer.writerow([
            b.id,
            b.user_id,
            "; ".join(b.phone_names),
            "; ".join(b.phone_variants),
            "; ".join(b.phone_colors),
            b.delivery_date.isoformat() if b.delivery_date else "",
            b.time_slot or "",
            b.delivery_address,
            b.payment_method or "",
            b.total_amount,
            b.coupon_code or "",
            b.status,
            b.created_at.strftime("%Y-%m-%d %H:%M"),
        ])
    return out.getvalue()


def _check_listing_params(status: str, sort: str) -> JSONResponse | None:
    if status != "all" and status not in BOOKING_STATUSES:
        return JSONResponse({"error": f"Unknown status filter {status!r}"}, status_code=422)
    if sort not in BOOKING_SORTS:
        return JSONResponse({"error": f"Unknown sort order {sort!r}"}, status_code=422)
    return None


@router.get("/bookings")
async def list_bookings(request: Request, status: str = "all", sort: str = "newest"):
    bad = _check_listing_params(status, sort)
    if bad:
        return bad
    try:
        bookings = await _store(request).list_bookings()
    except StoreError as e:
        return _store_failed("load bookings", e)
    return JSONResponse({
        "stats": booking_stats(bookings),
        "bookings": [b.model_dump(mode="json") for b in filter_bookings(bookings, status, sort)],
    })


@router.get("/bookings/export")
async def export_bookings(request: Request, status: str = "all", sort: str = "newest"):
    bad = _check_listing_params(status, sort)
    if bad:
        return bad
    try:
        bookings = await _store(request).list_bookings()
    except StoreError as e:
        return _store_failed("load bookings", e)
    filename = f"bookings-{date.today().isoformat()}.csv"
    return Response(
        content=bookings_to_csv(filter_bookings(bookings, status, sort)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.patch("/bookings/{booking_id}")
async def update_booking_status(booking_id: str, body: StatusIn, request: Request):
    if body.status not in BOOKING_STATUSES:
        return JSONResponse({"error": f"Unknown status {body.status!r}"}, status_code=422)
    try:
        await _store(request).update_booking_status(booking_id, body.status)
    except StoreError as e:
        return _store_failed("update booking status", e)
    log.info("Booking %s -> %s", booking_id, body.status)
    return JSONResponse({"id": booking_id, "status": body.status})


@router.get("/users/{user_id}/bookings")
async def user_history(user_id: str, request: Request):
    try:
        bookings = await _store(request).list_bookings(user_id=user_id)
    except StoreError as e:
        return _store_failed("load user history", e)
    bookings = filter_bookings(bookings, "all", "newest")
    return JSONResponse({
        "user_id": user_id,
        "total_bookings": len(bookings),
        "total_spent": sum(b.total_amount for b in bookings if b.status != "cancelled"),
        "bookings": [b.model_dump(mode="json") for b in bookings],
    })


# ── Coupons ──────────────────────────────────────────────────────


@router.get("/coupons")
async def list_coupons(request: Request):
    try:
        coupons = await _store(request).list_coupons()
    except StoreError as e:
        return _store_failed("load coupons", e)
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    coupons.sort(key=lambda c: c.created_at or epoch, reverse=True)
    return JSONResponse({"coupons": [c.model_dump(mode="json") for c in coupons]})


@router.post("/coupons")
async def create_coupon(body: CouponCreate, request: Request):
    try:
        coupon = await _store(request).create_coupon(body)
    except StoreError as e:
        return _store_failed("create coupon", e)
    log.info("Coupon %s created: -%d, max %d uses", coupon.code, coupon.discount_amount, coupon.max_uses)
    return JSONResponse(coupon.model_dump(mode="json"), status_code=201)


@router.patch("/coupons/{coupon_id}")
async def toggle_coupon(coupon_id: str, body: ActiveIn, request: Request):
    try:
        await _store(request).set_coupon_active(coupon_id, body.is_active)
    except StoreError as e:
        return _store_failed("update coupon", e)
    return JSONResponse({"id": coupon_id, "is_active": body.is_active})


@router.delete("/coupons/{coupon_id}")
async def delete_coupon(coupon_id: str, request: Request):
    try:
        await _store(request).delete_coupon(coupon_id)
    except StoreError as e:
        return _store_failed("delete coupon", e)
    return JSONResponse({"deleted": coupon_id})


# ── Phones ───────────────────────────────────────────────────────


@router.get("/phones")
async def list_all_phones(request: Request):
    try:
        phones = await _store(request).list_phones(active_only=False)
    except StoreError as e:
        return _store_failed("load phones", e)
    return JSONResponse({"phones": [p.model_dump(mode="json") for p in phones]})


@router.put("/phones/{phone_id}")
async def save_phone(phone_id: str, body: Phone, request: Request):
    if body.id != phone_id:
        return JSONResponse({"error": "Phone id in body does not match the URL"}, status_code=422)
    try:
        stored = await _store(request).upsert_phones([body])
    except StoreError as e:
        return _store_failed("save phone", e)
    return JSONResponse(stored[0].model_dump(mode="json") if stored else body.model_dump(mode="json"))


@router.patch("/phones/{phone_id}")
async def toggle_phone(phone_id: str, body: ActiveIn, request: Request):
    try:
        await _store(request).set_phone_active(phone_id, body.is_active)
    except StoreError as e:
        return _store_failed("update phone", e)
    return JSONResponse({"id": phone_id, "is_active": body.is_active})


@router.delete("/phones/{phone_id}")
async def delete_phone(phone_id: str, request: Request):
    try:
        await _store(request).delete_phone(phone_id)
    except StoreError as e:
        return _store_failed("delete phone", e)
    return JSONResponse({"deleted": phone_id})


@router.get("/phones/template")
async def phone_template():
    return Response(
        content=template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="phone_import_template.csv"'},
    )


@router.post("/phones/import")
async def import_phones(request: Request, dry_run: bool = False):
    """Bulk upsert from a CSV body. With ``dry_run`` only the parse preview is returned."""
    raw = await request.body()
    if not raw.strip():
        return JSONResponse({"error": "No data rows found in the uploaded file."}, status_code=400)

    result = parse_csv_text(raw.decode("utf-8", errors="replace"))
    if not result.phones:
        return JSONResponse(
            {"error": "No valid phone rows found.", "skipped": result.skipped}, status_code=400,
        )

    if not dry_run:
        try:
            await _store(request).upsert_phones(result.phones)
        except StoreError as e:
            return _store_failed("import phones", e)
        log.info("Imported %d phones (%d rows skipped)", len(result.phones), len(result.skipped))

    return JSONResponse({
        "imported": 0 if dry_run else len(result.phones),
        "preview": [p.model_dump(mode="json") for p in result.phones] if dry_run else [],
        "skipped": result.skipped,
    })
