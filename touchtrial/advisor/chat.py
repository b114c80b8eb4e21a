"""Advisor conversation: onboarding, history window and one reply at a time."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from touchtrial.models import ChatMessage, Recommendation
from touchtrial.advisor.client import AdvisorClient
from touchtrial.advisor.onboarding import Onboarding
from touchtrial.advisor.stream import ChatStreamAssembler

log = logging.getLogger("touchtrial.advisor.chat")

DEFAULT_HISTORY_WINDOW = 20
DEFAULT_MAX_MESSAGE_LENGTH = 1000


class ChatValidationError(ValueError):
    """Message text rejected before sending."""


class ChatLockedError(RuntimeError):
    """Free-text chat was attempted before onboarding finished."""


class ChatBusyError(RuntimeError):
    """A reply is already streaming for this conversation."""


class AdvisorChat:
    """One shopper's conversation with the phone advisor.

    History is append-only. Each request carries the most recent
    ``history_window`` messages; older ones stay in the transcript but are
    no longer sent.
    """

    def __init__(
        self,
        client: AdvisorClient,
        onboarding: Onboarding | None = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._client = client
        self.onboarding = onboarding or Onboarding()
        self.history_window = history_window
        self.max_message_length = max_message_length
        self._messages: list[ChatMessage] = self.onboarding.opening_messages()
        self._in_flight = False
        self._summary_sent = False

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def busy(self) -> bool:
        return self._in_flight

    @property
    def summary_sent(self) -> bool:
        return self._summary_sent

    def window(self) -> list[ChatMessage]:
        return self._messages[-self.history_window:]

    def _append(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        if messages:
            self._messages = [*self._messages, *messages]
        return messages

    # ── Onboarding ────────────────────────────────────────────

    def choose_budget(self, key: str) -> list[ChatMessage]:
        return self._append(self.onboarding.choose_budget(key))

    def toggle_priority(self, key: str) -> list[str]:
        return self.onboarding.toggle_priority(key)

    def confirm_priorities(self) -> list[ChatMessage]:
        return self._append(self.onboarding.confirm_priorities())

    def toggle_brand(self, key: str) -> list[str]:
        return self.onboarding.toggle_brand(key)

    def confirm_brands(self) -> list[ChatMessage]:
        """Finish onboarding. The caller follows up with :meth:`request_recommendations`."""
        return self._append(self.onboarding.confirm_brands())

    # ── Sending ───────────────────────────────────────────────

    def validate(self, text: str) -> str:
        """Check free text before it is sent. Returns the stripped text."""
        stripped = (text or "").strip()
        if not stripped:
            raise ChatValidationError("Message cannot be empty")
        if len(stripped) > self.max_message_length:
            raise ChatValidationError(
                f"Message is too long (max {self.max_message_length} characters)"
            )
        if not self.onboarding.can_chat:
            raise ChatLockedError("Finish the quick questions before chatting")
        if self._in_flight:
            raise ChatBusyError("Please wait for the current reply")
        return stripped

    async def send(
        self,
        text: str,
        session_token: str | None = None,
        on_content: Optional[Callable[[str], None]] = None,
    ) -> ChatMessage:
        """Send a free-text message and stream the reply into history."""
        content = self.validate(text)
        self._append([ChatMessage(role="user", content=content)])
        return await self._exchange(self.window(), session_token, on_content)

    async def request_recommendations(
        self,
        session_token: str | None = None,
        on_content: Optional[Callable[[str], None]] = None,
    ) -> ChatMessage:
        """Send the onboarding summary once. It is not recorded as a visible turn.

        A failed exchange clears the sent flag so the shopper can retry.
        """
        summary = ChatMessage(role="user", content=self.onboarding.summary())
        if self._summary_sent:
            raise ChatLockedError("Recommendations were already requested")
        if self._in_flight:
            raise ChatBusyError("Please wait for the current reply")
        outbound = [*self.window(), summary][-self.history_window:]
        self._summary_sent = True
        try:
            return await self._exchange(outbound, session_token, on_content)
        except Exception:
            self._summary_sent = False
            raise

    async def _exchange(
        self,
        outbound: list[ChatMessage],
        session_token: str | None,
        on_content: Optional[Callable[[str], None]],
    ) -> ChatMessage:
        finished: list[tuple[str, list[Recommendation]]] = []

        def on_done(text: str, recommendations: list[Recommendation]) -> None:
            finished.append((text, recommendations))

        assembler = ChatStreamAssembler(on_content=on_content, on_done=on_done)
        self._in_flight = True
        try:
            await self._client.stream_reply(outbound, assembler, session_token=session_token)
        except Exception:
            if assembler.text:
                # Keep what already reached the shopper
                self._append([ChatMessage(role="assistant", content=assembler.text)])
            raise
        finally:
            self._in_flight = False

        text, recommendations = finished[0] if finished else (assembler.text, assembler.recommendations)
        reply = ChatMessage(role="assistant", content=text, recommendations=recommendations)
        self._append([reply])
        log.info("Advisor reply: %d chars, %d recommendations", len(text), len(recommendations))
        return reply
