"""Client for the one-time-password serverless functions.

Inputs are checked here before any request goes out; the functions repeat
the same checks server side.
"""

from __future__ import annotations

import logging
import re

import httpx

log = logging.getLogger("touchtrial.otp")

PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
OTP_PATTERN = re.compile(r"^\d{6}$")
MAX_EMAIL_LENGTH = 255


class OtpError(Exception):
    """OTP request rejected locally (status_code None) or by the function."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def normalize_phone(phone: str) -> str:
    """Strip spaces and a leading +91."""
    cleaned = (phone or "").replace(" ", "")
    if cleaned.startswith("+91"):
        cleaned = cleaned[3:]
    return cleaned


def validate_phone(phone: str) -> str:
    cleaned = normalize_phone(phone)
    if not PHONE_PATTERN.match(cleaned):
        raise OtpError("Invalid phone number format. Must be a 10-digit Indian mobile number.")
    return cleaned


def validate_email(email: str) -> str:
    cleaned = (email or "").strip()
    if len(cleaned) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(cleaned):
        raise OtpError("Invalid email format")
    return cleaned


def validate_otp(otp: str) -> str:
    cleaned = (otp or "").strip()
    if not OTP_PATTERN.match(cleaned):
        raise OtpError("Invalid OTP format. Must be 6 digits.")
    return cleaned


class OtpClient:
    def __init__(
        self,
        functions_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._functions_url = functions_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def _invoke(self, function: str, body: dict) -> dict:
        url = f"{self._functions_url}/{function}"
        headers = {"Authorization": f"Bearer {self._api_key}", "apikey": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            log.error("OTP function %s unreachable: %s", function, e)
            raise OtpError("OTP service unavailable", 502) from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if resp.status_code >= 400:
            message = str(data.get("error") or "OTP request failed")
            log.info("OTP function %s returned %d: %s", function, resp.status_code, message)
            raise OtpError(message, resp.status_code)
        return data

    async def send_phone_otp(self, phone: str) -> None:
        data = await self._invoke("send-otp", {"phone": validate_phone(phone)})
        if not data.get("success"):
            raise OtpError("Failed to send OTP", 502)

    async def verify_phone_otp(self, phone: str, otp: str) -> bool:
        data = await self._invoke(
            "verify-otp", {"phone": validate_phone(phone), "otp": validate_otp(otp)},
        )
        return bool(data.get("verified"))

    async def send_email_otp(self, email: str) -> None:
        data = await self._invoke("send-email-otp", {"email": validate_email(email)})
        if not data.get("success"):
            raise OtpError("Failed to send OTP", 502)

    async def verify_email_otp(self, email: str, otp: str) -> bool:
        data = await self._invoke(
            "verify-email-otp", {"email": validate_email(email), "otp": validate_otp(otp)},
        )
        return bool(data.get("verified"))
