"""Side-by-side comparison list, capped at four phones."""

from __future__ import annotations

from touchtrial.models import Phone

MAX_COMPARE = 4


class CompareList:
    def __init__(self, limit: int = MAX_COMPARE) -> None:
        self._limit = limit
        self._phones: list[Phone] = []

    @property
    def phones(self) -> list[Phone]:
        return list(self._phones)

    @property
    def count(self) -> int:
        return len(self._phones)

    @property
    def is_full(self) -> bool:
        return len(self._phones) >= self._limit

    def is_in_compare(self, phone_id: str) -> bool:
        return any(p.id == phone_id for p in self._phones)

    def add(self, phone: Phone) -> bool:
        """Add a phone. Returns False if the list is full; duplicates are a no-op."""
        if self.is_in_compare(phone.id):
            return True
        if self.is_full:
            return False
        self._phones = [*self._phones, phone]
        return True

    def remove(self, phone_id: str) -> None:
        self._phones = [p for p in self._phones if p.id != phone_id]

    def clear(self) -> None:
        self._phones = []
