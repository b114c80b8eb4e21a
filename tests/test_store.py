"""Tests for the PostgREST store against a mocked transport."""

import json

import httpx
import pytest

from touchtrial.models import CouponCreate
from touchtrial.store import PostgrestStore, StoreError

REST = "http://backend.test/rest/v1"

PHONE_ROW = {
    "id": "pixel-8", "brand": "Google", "model": "Pixel 8", "price": 75999,
    "os": "Android", "highlights": None, "variants": None, "colors": None,
    "gallery": None, "bank_offers": None, "is_active": True,
}

COUPON_ROW = {
    "id": "c1", "code": "TRIAL50", "discount_amount": 50, "max_uses": 10,
    "current_uses": 2, "is_active": True, "first_order_only": False,
}


def _store(handler, service_key="") -> PostgrestStore:
    return PostgrestStore(REST, "anon-key", service_key, transport=httpx.MockTransport(handler))


class TestRequests:
    async def test_headers_use_service_key_when_set(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json=[])

        await _store(handler, service_key="service-key").list_phones()
        assert seen["apikey"] == "anon-key"
        assert seen["authorization"] == "Bearer service-key"

    async def test_active_filter(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[PHONE_ROW])

        phones = await _store(handler).list_phones(active_only=True)
        assert seen["params"]["is_active"] == "eq.true"
        assert seen["params"]["order"] == "created_at.desc"
        assert phones[0].variants == []

    async def test_http_error_becomes_store_error(self):
        def handler(request):
            return httpx.Response(401, json={"message": "JWT expired"})

        with pytest.raises(StoreError) as exc_info:
            await _store(handler).list_phones()
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "JWT expired"

    async def test_transport_error_becomes_store_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(StoreError) as exc_info:
            await _store(handler).list_phones()
        assert exc_info.value.status_code is None


class TestDecoding:
    async def test_malformed_rows_are_skipped(self):
        def handler(request):
            return httpx.Response(200, json=[PHONE_ROW, {"id": "broken"}])

        phones = await _store(handler).list_phones()
        assert [p.id for p in phones] == ["pixel-8"]

    async def test_non_list_body_is_store_error(self):
        def handler(request):
            return httpx.Response(200, json={"oops": True})

        with pytest.raises(StoreError):
            await _store(handler).list_phones()


class TestCoupons:
    async def test_find_active_coupon(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[COUPON_ROW])

        coupon = await _store(handler).find_active_coupon("TRIAL50")
        assert seen["params"]["code"] == "eq.TRIAL50"
        assert seen["params"]["is_active"] == "eq.true"
        assert coupon.discount_amount == 50

    async def test_find_missing_coupon(self):
        coupon = await _store(lambda r: httpx.Response(200, json=[])).find_active_coupon("NOPE")
        assert coupon is None

    async def test_record_use_is_conditional(self):
        calls = []

        def handler(request):
            calls.append(request)
            if request.method == "GET":
                return httpx.Response(200, json=[COUPON_ROW])
            return httpx.Response(204)

        await _store(handler).record_coupon_use("TRIAL50")
        patch = calls[-1]
        assert patch.method == "PATCH"
        assert patch.url.params["current_uses"] == "eq.2"
        assert json.loads(patch.content) == {"current_uses": 3}

    async def test_create_coupon_returns_row(self):
        def handler(request):
            assert request.headers["prefer"] == "return=representation"
            body = json.loads(request.content)
            return httpx.Response(201, json=[{**COUPON_ROW, **body, "current_uses": 0}])

        coupon = await _store(handler).create_coupon(
            CouponCreate(code="new10", discount_amount=10, max_uses=5)
        )
        assert coupon.code == "NEW10"
        assert coupon.max_uses == 5


class TestBookings:
    async def test_count_reads_content_range(self):
        def handler(request):
            assert request.headers["prefer"] == "count=exact"
            return httpx.Response(200, json=[{"id": "b1"}], headers={"Content-Range": "0-0/7"})

        assert await _store(handler).count_bookings("user-1") == 7

    async def test_count_zero(self):
        def handler(request):
            return httpx.Response(200, json=[], headers={"Content-Range": "*/0"})

        assert await _store(handler).count_bookings("user-1") == 0

    async def test_is_admin(self):
        yes = _store(lambda r: httpx.Response(200, json=[{"role": "admin"}]))
        no = _store(lambda r: httpx.Response(200, json=[]))
        assert await yes.is_admin("u1") is True
        assert await no.is_admin("u1") is False
