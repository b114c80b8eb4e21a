"""Tests for the streamed advisor client."""

import json

import httpx
import pytest

from touchtrial.advisor.client import (
    AdvisorClient,
    AdvisorError,
    AdvisorQuotaExhausted,
    AdvisorRateLimited,
)
from touchtrial.advisor.stream import ChatStreamAssembler
from touchtrial.models import ChatMessage

URL = "http://backend.test/functions/v1/phone-advisor"

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Try the "}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":"Pixel 8"}}]}\n\n'
    b"data: [DONE]\n\n"
)


def _client(handler) -> AdvisorClient:
    return AdvisorClient(URL, "anon-key", transport=httpx.MockTransport(handler))


MESSAGES = [
    ChatMessage(role="assistant", content="Hi!"),
    ChatMessage(role="user", content="Best camera phone?", recommendations=[]),
]


class TestStreamReply:
    async def test_streams_into_assembler(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=SSE_BODY, headers={"content-type": "text/event-stream"})

        asm = ChatStreamAssembler()
        await _client(handler).stream_reply(MESSAGES, asm)
        assert asm.done
        assert asm.text == "Try the Pixel 8"
        assert seen["body"] == {"messages": [
            {"role": "assistant", "content": "Hi!"},
            {"role": "user", "content": "Best camera phone?"},
        ]}
        assert seen["headers"]["authorization"] == "Bearer anon-key"
        assert seen["headers"]["apikey"] == "anon-key"

    async def test_session_token_preferred(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, content=b"data: [DONE]\n")

        await _client(handler).stream_reply(MESSAGES, ChatStreamAssembler(), session_token="user-jwt")
        assert seen["auth"] == "Bearer user-jwt"


class TestErrors:
    @pytest.mark.parametrize("status,exc_type", [
        (429, AdvisorRateLimited),
        (402, AdvisorQuotaExhausted),
        (500, AdvisorError),
    ])
    async def test_status_mapping(self, status, exc_type):
        def handler(request):
            return httpx.Response(status, json={"error": "server says no"})

        with pytest.raises(exc_type) as exc_info:
            await _client(handler).stream_reply(MESSAGES, ChatStreamAssembler())
        assert exc_info.value.status_code == status
        assert exc_info.value.message == "server says no"

    async def test_error_without_json_body(self):
        def handler(request):
            return httpx.Response(503, content=b"<html>down</html>")

        with pytest.raises(AdvisorError) as exc_info:
            await _client(handler).stream_reply(MESSAGES, ChatStreamAssembler())
        assert exc_info.value.message == "Failed to get response"

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AdvisorError) as exc_info:
            await _client(handler).stream_reply(MESSAGES, ChatStreamAssembler())
        assert exc_info.value.status_code is None
