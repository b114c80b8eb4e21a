"""Shared fixtures: an in-memory store and a few catalogue phones."""

from __future__ import annotations

import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from touchtrial.advisor.chat import AdvisorChat
from touchtrial.app import Services, create_app
from touchtrial.auth import AuthUnavailable, AuthUser
from touchtrial.config import Settings
from touchtrial.models import Booking, BookingCreate, Coupon, CouponCreate, Phone
from touchtrial.otp import OtpClient
from touchtrial.session import ShopperSessionRegistry
from touchtrial.store.base import DataStore, StoreError


def make_phone(phone_id: str = "pixel-8", **overrides) -> Phone:
    data = {
        "id": phone_id,
        "brand": "Google",
        "model": "Pixel 8",
        "price": 75999,
        "ram": "8GB",
        "storage": "128GB",
        "os": "Android",
        "processor": "Tensor G3",
        "variants": [
            {"ram": "8GB", "storage": "128GB", "price": 75999},
            {"ram": "8GB", "storage": "256GB", "price": 82999},
        ],
        "colors": [{"name": "Obsidian", "hex": "#202124"}, {"name": "Hazel", "hex": "#8B8B7A"}],
    }
    data.update(overrides)
    return Phone.model_validate(data)


def make_coupon(code: str = "TRIAL50", **overrides) -> Coupon:
    data = {
        "id": f"coupon-{code.lower()}",
        "code": code,
        "discount_amount": 50,
        "max_uses": 10,
        "current_uses": 0,
        "is_active": True,
        "first_order_only": False,
    }
    data.update(overrides)
    return Coupon.model_validate(data)


def frame(text: str) -> bytes:
    return f"data: {json.dumps({'choices': [{'delta': {'content': text}}]})}\n".encode()


class FakeAdvisorClient:
    """Replays scripted SSE chunks and records what was sent."""

    def __init__(self, chunks=None, error=None, gate=None):
        self.chunks = chunks if chunks is not None else [frame("Sure!"), b"data: [DONE]\n"]
        self.error = error
        self.gate = gate
        self.requests = []

    async def stream_reply(self, messages, assembler, session_token=None):
        self.requests.append((list(messages), session_token))
        if self.gate is not None:
            await self.gate.wait()
        for chunk in self.chunks:
            if assembler.feed(chunk):
                break
        if self.error is not None:
            raise self.error
        assembler.finish()


class FakeSettings:
    def __init__(self, admin_api_key="", debug=False):
        self.admin_api_key = admin_api_key
        self.debug = debug


class FakeAuth:
    """Token table; the token "down" simulates an unreachable provider."""

    def __init__(self, users=None):
        self.users = users or {}

    async def get_user(self, token):
        if token == "down":
            raise AuthUnavailable("connection refused")
        return self.users.get(token)


ALICE = AuthUser(id="user-alice", email="alice@example.com")
BOB = AuthUser(id="user-bob", email="bob@example.com")


class FakeStore(DataStore):
    """In-memory DataStore. Set ``fail_with`` to make every call raise."""

    def __init__(self) -> None:
        self.phones: dict[str, Phone] = {}
        self.coupons: dict[str, Coupon] = {}
        self.bookings: list[Booking] = []
        self.admins: set[str] = set()
        self.fail_with: Optional[Exception] = None
        self.coupon_lookups = 0
        self._ids = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _now(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def add_booking(self, user_id: str, **overrides) -> Booking:
        data = {
            "id": f"booking-{next(self._ids)}",
            "user_id": user_id,
            "phone_ids": ["pixel-8"],
            "phone_names": ["Google Pixel 8"],
            "total_experience_fee": 499,
            "convenience_fee": 100,
            "total_amount": 499,
            "delivery_address": "12 MG Road, Bengaluru",
            "delivery_date": "2026-02-01",
            "time_slot": "9:00 AM - 11:00 AM",
            "payment_method": "upi",
            "created_at": self._now(),
        }
        data.update(overrides)
        booking = Booking.model_validate(data)
        self.bookings.append(booking)
        return booking

    # ── Catalogue ──

    async def list_phones(self, active_only: bool = True) -> list[Phone]:
        self._check()
        return [p for p in self.phones.values() if p.is_active or not active_only]

    async def get_phone(self, phone_id: str) -> Optional[Phone]:
        self._check()
        return self.phones.get(phone_id)

    async def upsert_phones(self, phones: list[Phone]) -> list[Phone]:
        self._check()
        for phone in phones:
            self.phones[phone.id] = phone
        return list(phones)

    async def set_phone_active(self, phone_id: str, is_active: bool) -> None:
        self._check()
        if phone_id in self.phones:
            self.phones[phone_id] = self.phones[phone_id].model_copy(update={"is_active": is_active})

    async def delete_phone(self, phone_id: str) -> None:
        self._check()
        self.phones.pop(phone_id, None)

    # ── Coupons ──

    async def find_active_coupon(self, code: str) -> Optional[Coupon]:
        self._check()
        self.coupon_lookups += 1
        coupon = self.coupons.get(code)
        return coupon if coupon and coupon.is_active else None

    async def list_coupons(self) -> list[Coupon]:
        self._check()
        return list(self.coupons.values())

    async def create_coupon(self, coupon: CouponCreate) -> Coupon:
        self._check()
        if coupon.code in self.coupons:
            raise StoreError("duplicate key value violates unique constraint", 409)
        stored = Coupon(id=f"coupon-{next(self._ids)}", created_at=self._now(), **coupon.model_dump())
        self.coupons[stored.code] = stored
        return stored

    async def set_coupon_active(self, coupon_id: str, is_active: bool) -> None:
        self._check()
        for code, c in self.coupons.items():
            if c.id == coupon_id:
                self.coupons[code] = c.model_copy(update={"is_active": is_active})

    async def delete_coupon(self, coupon_id: str) -> None:
        self._check()
        self.coupons = {code: c for code, c in self.coupons.items() if c.id != coupon_id}

    async def record_coupon_use(self, code: str) -> None:
        self._check()
        coupon = self.coupons.get(code)
        if coupon is None:
            raise StoreError(f"Coupon {code} not found", 404)
        self.coupons[code] = coupon.model_copy(update={"current_uses": coupon.current_uses + 1})

    # ── Bookings ──

    async def count_bookings(self, user_id: str) -> int:
        self._check()
        return sum(1 for b in self.bookings if b.user_id == user_id)

    async def create_booking(self, booking: BookingCreate) -> Booking:
        self._check()
        stored = Booking(id=f"booking-{next(self._ids)}", created_at=self._now(), **booking.model_dump())
        self.bookings.append(stored)
        return stored

    async def list_bookings(self, user_id: str | None = None) -> list[Booking]:
        self._check()
        rows = [b for b in self.bookings if user_id is None or b.user_id == user_id]
        return sorted(rows, key=lambda b: b.created_at, reverse=True)

    async def update_booking_status(self, booking_id: str, status: str) -> None:
        self._check()
        self.bookings = [
            b.model_copy(update={"status": status}) if b.id == booking_id else b
            for b in self.bookings
        ]

    # ── Roles ──

    async def is_admin(self, user_id: str) -> bool:
        self._check()
        return user_id in self.admins


@pytest.fixture
def store() -> FakeStore:
    fake = FakeStore()
    for phone in (
        make_phone("pixel-8"),
        make_phone("iphone-15", brand="Apple", model="iPhone 15", price=79900, os="iOS",
                   processor="A16 Bionic", ram="6GB",
                   variants=[{"ram": "6GB", "storage": "128GB", "price": 79900}],
                   colors=[{"name": "Black", "hex": "#1F2020"}]),
        make_phone("galaxy-s24", brand="Samsung", model="Galaxy S24", price=74999,
                   processor="Exynos 2400", storage="256GB"),
        make_phone("hidden-phone", brand="Motorola", model="Razr", price=99999, is_active=False),
    ):
        fake.phones[phone.id] = phone
    fake.coupons["TRIAL50"] = make_coupon("TRIAL50")
    return fake


# ── Application ────────────────────────────────────────────────────


class FakeRelay:
    """Stands in for the AI gateway relay."""

    def __init__(self, body: bytes = b"data: [DONE]\n\n", error: Exception | None = None):
        self.body = body
        self.error = error
        self.calls = []

    async def open_stream(self, messages, phones):
        self.calls.append((messages, phones))
        if self.error is not None:
            raise self.error

        async def body_iter():
            yield self.body

        return body_iter()


def _otp_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if request.url.path.endswith(("/verify-otp", "/verify-email-otp")):
        return httpx.Response(200, json={"success": True, "verified": body.get("otp") == "123456"})
    return httpx.Response(200, json={"success": True})


@pytest.fixture
def advisor() -> FakeAdvisorClient:
    return FakeAdvisorClient()


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def services(store, advisor, relay) -> Services:
    return Services(
        settings=Settings(_env_file=None, session_idle_timeout=0),
        store=store,
        auth=FakeAuth({"alice-jwt": ALICE, "bob-jwt": BOB}),
        advisor=advisor,
        relay=relay,
        otp=OtpClient("http://backend.test/functions/v1", "anon-key", transport=httpx.MockTransport(_otp_handler)),
        sessions=ShopperSessionRegistry(store, lambda: AdvisorChat(advisor)),
    )


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr("touchtrial.auth.settings", FakeSettings(admin_api_key="admin-key"))
    with TestClient(create_app(services)) as test_client:
        yield test_client
