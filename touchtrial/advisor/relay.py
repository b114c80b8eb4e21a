"""Server side of the phone-advisor endpoint.

Wraps the shopper's conversation with a system prompt built from the live
catalogue plus a ``recommend_phones`` tool, forwards it to the AI gateway
with streaming on, and hands the gateway's SSE body back unchanged.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx

from touchtrial.models import Phone

log = logging.getLogger("touchtrial.advisor.relay")

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
QUOTA_MESSAGE = "Service temporarily unavailable. Please try again later."
GATEWAY_FAILURE_MESSAGE = "Failed to get AI response"

RECOMMEND_TOOL = {
    "type": "function",
    "function": {
        "name": "recommend_phones",
        "description": "Attach the phones you are recommending so the shop can show them as cards.",
        "parameters": {
            "type": "object",
            "properties": {
                "recommendations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "phone_id": {"type": "string", "description": "Catalogue id of the phone"},
                            "reason": {"type": "string", "description": "One sentence on why it fits"},
                        },
                        "required": ["phone_id", "reason"],
                    },
                },
            },
            "required": ["recommendations"],
        },
    },
}


class RelayError(Exception):
    """Gateway call failed; carries the status and message to return."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def format_price(amount: int) -> str:
    """Indian digit grouping: 159900 -> ₹1,59,900."""
    digits = str(abs(int(amount)))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups) + "," + tail
    return f"₹{digits}"


def build_catalog_text(phones: list[Phone]) -> str:
    lines = ["Available phones in our catalog:", ""]
    for i, phone in enumerate(phones, 1):
        features = ", ".join(phone.highlights[:3]) or phone.processor
        lines.append(
            f"{i}. [{phone.id}] {phone.display_name} - {format_price(phone.price)} - {features}"
        )
    return "\n".join(lines)


def build_system_prompt(phones: list[Phone]) -> str:
    return (
        "You are a friendly and knowledgeable phone advisor for TouchTrial, a smartphone "
        "home-trial service in India. Help users find the perfect phone based on their "
        "needs, budget, and preferences.\n\n"
        f"{build_catalog_text(phones)}\n\n"
        "Guidelines:\n"
        "- Be conversational, friendly, and helpful\n"
        "- Recommend 1-3 phones from the catalog above, and only from it\n"
        "- Explain why each recommendation suits their needs\n"
        "- Mention key features and price in INR (use the ₹ symbol)\n"
        "- If they mention a budget, respect it strictly\n"
        "- Keep responses concise but informative\n"
        "- Whenever you recommend phones, also call recommend_phones with their catalog ids\n"
        "- Encourage them to try phones at home before buying"
    )


class AdvisorRelay:
    """Forwards conversations to the AI gateway."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url
        self._api_key = api_key
        self.model = model
        self._timeout = timeout
        self._transport = transport

    def build_payload(self, messages: list[dict], phones: list[Phone]) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": "system", "content": build_system_prompt(phones)}, *messages],
            "tools": [RECOMMEND_TOOL],
            "stream": True,
        }

    async def open_stream(self, messages: list[dict], phones: list[Phone]) -> AsyncIterator[bytes]:
        """Start the gateway request and return an iterator over its SSE body.

        Raises RelayError before any byte is yielded if the gateway refuses.
        The returned iterator closes the connection when exhausted.
        """
        if not self._api_key:
            raise RelayError("AI gateway API key is not configured", 500)

        client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        request = client.build_request(
            "POST",
            self.gateway_url,
            json=self.build_payload(messages, phones),
            headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
        )
        try:
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            log.error("AI gateway unreachable: %s", e)
            raise RelayError(GATEWAY_FAILURE_MESSAGE, 500) from e

        if resp.status_code >= 400:
            body = await resp.aread()
            await resp.aclose()
            await client.aclose()
            if resp.status_code == 429:
                raise RelayError(RATE_LIMIT_MESSAGE, 429)
            if resp.status_code == 402:
                raise RelayError(QUOTA_MESSAGE, 402)
            log.error("AI gateway error: %d %s", resp.status_code, body[:500].decode("utf-8", "replace"))
            raise RelayError(GATEWAY_FAILURE_MESSAGE, 500)

        async def body_iter() -> AsyncIterator[bytes]:
            try:
                async for chunk in resp.aiter_raw():
                    yield chunk
            finally:
                await resp.aclose()
                await client.aclose()

        return body_iter()
