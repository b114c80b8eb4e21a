"""Shopper-facing catalogue filtering."""

from __future__ import annotations

from pydantic import BaseModel, model_validator

from touchtrial.models import Phone

DEFAULT_MIN_PRICE = 0
DEFAULT_MAX_PRICE = 200_000


class PhoneFilters(BaseModel):
    """Search box plus the sidebar filters. Empty lists mean "any"."""

    search: str = ""
    brands: list[str] = []
    os: list[str] = []
    ram: list[str] = []
    storage: list[str] = []
    min_price: int = DEFAULT_MIN_PRICE
    max_price: int = DEFAULT_MAX_PRICE

    @model_validator(mode="after")
    def _check_price_range(self) -> "PhoneFilters":
        if self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


def matches(phone: Phone, filters: PhoneFilters) -> bool:
    query = filters.search.strip().lower()
    if query:
        haystack = f"{phone.brand} {phone.model} {phone.processor}".lower()
        if query not in haystack:
            return False

    if filters.brands and phone.brand not in filters.brands:
        return False
    if filters.os and phone.os not in filters.os:
        return False
    if not filters.min_price <= phone.price <= filters.max_price:
        return False
    if filters.ram and phone.ram not in filters.ram:
        return False
    if filters.storage and phone.storage not in filters.storage:
        return False
    return True


def filter_phones(phones: list[Phone], filters: PhoneFilters) -> list[Phone]:
    """Apply every filter; order of the input list is kept."""
    return [p for p in phones if matches(p, filters)]
