"""HTTP client for the streamed phone-advisor endpoint."""

from __future__ import annotations

import json
import logging
from typing import Sequence

import httpx

from touchtrial.models import ChatMessage
from touchtrial.advisor.stream import ChatStreamAssembler

log = logging.getLogger("touchtrial.advisor.client")

DEFAULT_ERROR = "Failed to get response"


class AdvisorError(Exception):
    """The advisor request failed before or during streaming."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AdvisorRateLimited(AdvisorError):
    """HTTP 429 from the advisor."""


class AdvisorQuotaExhausted(AdvisorError):
    """HTTP 402 from the advisor: the AI credits ran out."""


def _error_from_response(status_code: int, body: bytes) -> AdvisorError:
    message = DEFAULT_ERROR
    try:
        data = json.loads(body)
        if isinstance(data, dict) and data.get("error"):
            message = str(data["error"])
    except ValueError:
        pass

    if status_code == 429:
        return AdvisorRateLimited(message, status_code)
    if status_code == 402:
        return AdvisorQuotaExhausted(message, status_code)
    return AdvisorError(message, status_code)


class AdvisorClient:
    """POSTs the conversation and feeds the SSE body into an assembler."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self, session_token: str | None) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {session_token or self._api_key}",
            "apikey": self._api_key,
        }

    async def stream_reply(
        self,
        messages: Sequence[ChatMessage],
        assembler: ChatStreamAssembler,
        session_token: str | None = None,
    ) -> None:
        """Stream one assistant reply into ``assembler``.

        Returns once the assembler has completed. Raises AdvisorError (or a
        subclass) for non-2xx responses and transport failures; whatever
        text was streamed before a failure stays on the assembler.
        """
        body = {"messages": [m.to_wire() for m in messages]}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", self.url, json=body, headers=self._headers(session_token),
                ) as resp:
                    if resp.status_code >= 400:
                        raw = await resp.aread()
                        err = _error_from_response(resp.status_code, raw)
                        log.warning("Advisor returned %d: %s", resp.status_code, err.message)
                        raise err
                    await assembler.consume(resp.aiter_bytes())
        except httpx.HTTPError as e:
            log.error("Advisor transport error: %s", e)
            raise AdvisorError(f"Advisor request failed: {e}") from e
