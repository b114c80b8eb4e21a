"""Pydantic models for catalogue phones."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, field_validator


class PhoneVariant(BaseModel):
    """One RAM/storage configuration and its price."""

    ram: str
    storage: str
    price: int = 0

    @property
    def label(self) -> str:
        return f"{self.ram} / {self.storage}"


class PhoneColor(BaseModel):
    name: str
    hex: str = "#000000"


class BankOffer(BaseModel):
    bank: str
    discount: str = ""
    description: str = ""


class Phone(BaseModel):
    """A catalogue row from the ``phones`` table.

    Remote rows are validated through this model once, at the store
    boundary; the rest of the code only sees typed phones.
    """

    id: str
    brand: str
    model: str
    price: int
    image: str = ""
    ram: str = ""
    storage: str = ""
    os: Literal["Android", "iOS"] = "Android"
    display: str = ""
    processor: str = ""
    camera: str = ""
    battery: str = ""
    description: str = ""
    highlights: list[str] = []
    gallery: list[str] = []
    variants: list[PhoneVariant] = []
    colors: list[PhoneColor] = []
    bank_offers: list[BankOffer] = []
    is_active: bool = True
    created_at: Optional[datetime] = None

    @field_validator("highlights", "gallery", "variants", "colors", "bank_offers", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        # Nullable JSON columns come back as null
        return [] if value is None else value

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model}"

    @property
    def default_variant(self) -> str:
        """Label of the first catalogue variant, falling back to the base RAM/storage."""
        if self.variants:
            return self.variants[0].label
        if self.ram or self.storage:
            return f"{self.ram} / {self.storage}"
        return ""

    @property
    def default_color(self) -> str:
        return self.colors[0].name if self.colors else ""

    def to_row(self) -> dict:
        """Serialize for an insert/upsert against the ``phones`` table."""
        return self.model_dump(mode="json", exclude={"created_at"})
