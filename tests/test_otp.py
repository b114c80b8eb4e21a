"""Tests for the OTP function client."""

import json

import httpx
import pytest

from touchtrial.otp import (
    OtpClient,
    OtpError,
    normalize_phone,
    validate_email,
    validate_otp,
    validate_phone,
)

FUNCTIONS = "http://backend.test/functions/v1"


def _client(handler) -> OtpClient:
    return OtpClient(FUNCTIONS, "anon-key", transport=httpx.MockTransport(handler))


def _never(request):
    raise AssertionError("no request expected")


class TestValidation:
    def test_phone_normalization(self):
        assert normalize_phone("+91 98765 43210") == "9876543210"
        assert validate_phone("+919876543210") == "9876543210"

    @pytest.mark.parametrize("phone", ["12345", "5876543210", "98765432100", "abcdefghij", ""])
    def test_bad_phones(self, phone):
        with pytest.raises(OtpError) as exc_info:
            validate_phone(phone)
        assert exc_info.value.status_code is None

    def test_email(self):
        assert validate_email(" a@b.co ") == "a@b.co"
        with pytest.raises(OtpError):
            validate_email("not-an-email")
        with pytest.raises(OtpError):
            validate_email("a" * 250 + "@b.com")

    @pytest.mark.parametrize("otp", ["12345", "1234567", "12a456", ""])
    def test_bad_otps(self, otp):
        with pytest.raises(OtpError):
            validate_otp(otp)


class TestRequests:
    async def test_send_phone_otp(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "message": "OTP sent successfully"})

        await _client(handler).send_phone_otp("+91 98765 43210")
        assert seen["url"] == f"{FUNCTIONS}/send-otp"
        assert seen["body"] == {"phone": "9876543210"}

    async def test_invalid_input_never_hits_network(self):
        with pytest.raises(OtpError):
            await _client(_never).send_phone_otp("123")
        with pytest.raises(OtpError):
            await _client(_never).verify_email_otp("a@b.co", "12")

    async def test_verify_phone_otp(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "verified": True})

        assert await _client(handler).verify_phone_otp("9876543210", "123456") is True

    async def test_server_error_surfaces_message(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Invalid or expired OTP"})

        with pytest.raises(OtpError) as exc_info:
            await _client(handler).verify_email_otp("a@b.co", "123456")
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid or expired OTP"

    async def test_rate_limited(self):
        def handler(request):
            return httpx.Response(429, json={"error": "Too many OTP requests. Please try again later."})

        with pytest.raises(OtpError) as exc_info:
            await _client(handler).send_email_otp("a@b.co")
        assert exc_info.value.status_code == 429

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(OtpError) as exc_info:
            await _client(handler).send_email_otp("a@b.co")
        assert exc_info.value.status_code == 502
