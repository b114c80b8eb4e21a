"""Pydantic models for the phone advisor conversation."""

from typing import Literal

from pydantic import BaseModel


class Recommendation(BaseModel):
    """A phone the advisor suggested, with its reason."""

    phone_id: str
    reason: str = ""


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    recommendations: list[Recommendation] = []

    def to_wire(self) -> dict[str, str]:
        """Shape sent to the advisor endpoint (role and content only)."""
        return {"role": self.role, "content": self.content}
