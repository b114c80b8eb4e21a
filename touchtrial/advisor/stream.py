"""Incremental assembler for the advisor's server-sent-event stream.

The advisor endpoint streams OpenAI-style completion chunks::

    data: {"choices":[{"delta":{"content":"Hel"}}]}
    data: {"choices":[{"delta":{"tool_calls":[{"function":{"arguments":"{\\"rec"}}]}}]}
    : keep-alive
    data: [DONE]

Two payloads are interleaved: the assistant's prose, which is forwarded
as it arrives, and the arguments of one ``recommend_phones`` tool call,
which only parse once every fragment has been joined. The assembler keeps
the two apart and merges them when the stream completes.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, Callable, Optional

from pydantic import ValidationError

from touchtrial.models import Recommendation

log = logging.getLogger("touchtrial.advisor.stream")

DONE_SENTINEL = "[DONE]"

ContentCallback = Callable[[str], None]
DoneCallback = Callable[[str, list[Recommendation]], None]


def parse_recommendations(arguments: str) -> list[Recommendation]:
    """Parse joined tool-call arguments; anything malformed yields []."""
    if not arguments.strip():
        return []
    try:
        data = json.loads(arguments)
        raw = data.get("recommendations", [])
        return [Recommendation.model_validate(item) for item in raw]
    except (json.JSONDecodeError, ValidationError, AttributeError, TypeError) as e:
        log.warning("Discarding malformed recommendations payload: %s", e)
        return []


class ChatStreamAssembler:
    """Rebuild assistant text and recommendations from raw stream bytes.

    Feed bytes with :meth:`feed` (or drive an async byte iterator with
    :meth:`consume`) and call :meth:`finish` when the transport closes.
    ``on_done`` fires exactly once, on ``[DONE]`` or on finish, whichever
    comes first.
    """

    def __init__(
        self,
        on_content: Optional[ContentCallback] = None,
        on_done: Optional[DoneCallback] = None,
    ) -> None:
        self._on_content = on_content
        self._on_done = on_done
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        # A data payload whose JSON was cut by a stray newline, awaiting its continuation
        self._pending_frame = ""
        self._text_parts: list[str] = []
        self._tool_args: list[str] = []
        self._recommendations: list[Recommendation] = []
        self._done = False

    # ── State ─────────────────────────────────────────────────

    @property
    def done(self) -> bool:
        return self._done

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def tool_arguments(self) -> str:
        return "".join(self._tool_args)

    @property
    def recommendations(self) -> list[Recommendation]:
        return list(self._recommendations)

    # ── Input ─────────────────────────────────────────────────

    def feed(self, chunk: bytes) -> bool:
        """Process one chunk of raw bytes. Returns True once the stream is done."""
        if self._done:
            return True
        self._buffer += self._decoder.decode(chunk)
        self._drain()
        return self._done

    def finish(self) -> None:
        """The transport closed: flush what's left and complete."""
        if self._done:
            return
        self._buffer += self._decoder.decode(b"", final=True)
        self._drain()
        if not self._done and self._buffer:
            # Last line had no trailing newline
            tail, self._buffer = self._buffer, ""
            self._handle_line(tail)
        self._complete()

    async def consume(self, chunks: AsyncIterable[bytes]) -> None:
        """Read chunks until ``[DONE]`` or the iterator ends."""
        async for chunk in chunks:
            if self.feed(chunk):
                break
        self.finish()

    # ── Internal ──────────────────────────────────────────────

    def _drain(self) -> None:
        while not self._done:
            newline = self._buffer.find("\n")
            if newline == -1:
                return
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        if line.endswith("\r"):
            line = line[:-1]
        if not line.strip() or line.startswith(":"):
            return

        if line.startswith("data:"):
            payload = line[5:]
            if payload.startswith(" "):
                payload = payload[1:]
            payload = payload.strip()
            if self._pending_frame:
                log.warning("Dropping incomplete stream frame (%d chars)", len(self._pending_frame))
                self._pending_frame = ""
            if payload == DONE_SENTINEL:
                self._complete()
                return
        elif self._pending_frame:
            payload = self._pending_frame + line
            self._pending_frame = ""
        else:
            # event:, id:, retry: and other fields carry nothing we use
            return

        self._handle_frame(payload)

    def _handle_frame(self, payload: str) -> None:
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            self._pending_frame = payload
            return

        if not isinstance(frame, dict):
            return
        choices = frame.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return
        delta = choices[0].get("delta")
        if not isinstance(delta, dict):
            return

        content = delta.get("content")
        if isinstance(content, str) and content:
            self._text_parts.append(content)
            if self._on_content:
                self._on_content(content)

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for call in tool_calls:
                function = call.get("function") if isinstance(call, dict) else None
                arguments = function.get("arguments") if isinstance(function, dict) else None
                if isinstance(arguments, str):
                    self._tool_args.append(arguments)

    def _complete(self) -> None:
        if self._done:
            return
        self._done = True
        if self._pending_frame:
            log.warning("Stream ended with an incomplete frame (%d chars)", len(self._pending_frame))
            self._pending_frame = ""
        self._recommendations = parse_recommendations(self.tool_arguments)
        log.debug(
            "Stream complete: %d chars, %d recommendations",
            len(self.text), len(self._recommendations),
        )
        if self._on_done:
            self._on_done(self.text, self.recommendations)
