"""Per-shopper state: trial cart, compare list and advisor conversation.

The browser holds an opaque session id; everything behind it lives in a
ShopperSessionRegistry owned by the running application.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from touchtrial.advisor.chat import AdvisorChat
from touchtrial.cart import TrialCart
from touchtrial.compare import CompareList

log = logging.getLogger("touchtrial.session")


def redact_pii(value: str) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class ShopperSession:
    def __init__(self, session_id: str, cart: TrialCart, compare: CompareList, chat: AdvisorChat) -> None:
        self.session_id = session_id
        self.cart = cart
        self.compare = compare
        self.chat = chat
        self.started_at = time.time()
        self.last_seen = self.started_at

    def touch(self) -> None:
        self.last_seen = time.time()


ChatFactory = Callable[[], AdvisorChat]


class ShopperSessionRegistry:
    """Active shopper sessions keyed by id."""

    def __init__(self, store, chat_factory: ChatFactory) -> None:
        self._store = store
        self._chat_factory = chat_factory
        self._sessions: dict[str, ShopperSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> ShopperSession:
        session_id = secrets.token_urlsafe(18)
        session = ShopperSession(
            session_id,
            cart=TrialCart(self._store),
            compare=CompareList(),
            chat=self._chat_factory(),
        )
        self._sessions[session_id] = session
        log.info("Session registered: %s", redact_pii(session_id))
        return session

    def get(self, session_id: str) -> Optional[ShopperSession]:
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    def remove(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            log.info("Session unregistered: %s", redact_pii(session_id))

    def expire_idle(self, max_idle_seconds: float) -> int:
        """Drop sessions idle for longer than ``max_idle_seconds``. Returns how many."""
        cutoff = time.time() - max_idle_seconds
        stale = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff and not s.chat.busy]
        for sid in stale:
            self.remove(sid)
        return len(stale)

    def clear(self) -> None:
        count = len(self._sessions)
        self._sessions.clear()
        if count:
            log.info("Cleared %d shopper sessions", count)
