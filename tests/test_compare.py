"""Tests for the compare list and catalogue filters."""

import pytest
from pydantic import ValidationError

from tests.conftest import make_phone
from touchtrial.catalog import PhoneFilters, filter_phones
from touchtrial.compare import CompareList


class TestCompareList:
    def test_add_up_to_four(self):
        compare = CompareList()
        for i in range(4):
            assert compare.add(make_phone(f"p{i}"))
        assert compare.is_full
        assert compare.add(make_phone("p4")) is False
        assert compare.count == 4

    def test_duplicate_is_noop(self):
        compare = CompareList()
        compare.add(make_phone("p1"))
        assert compare.add(make_phone("p1"))
        assert compare.count == 1

    def test_duplicate_when_full_still_true(self):
        compare = CompareList(limit=1)
        compare.add(make_phone("p1"))
        assert compare.add(make_phone("p1")) is True

    def test_remove_and_clear(self):
        compare = CompareList()
        compare.add(make_phone("p1"))
        compare.add(make_phone("p2"))
        compare.remove("p1")
        assert not compare.is_in_compare("p1")
        assert compare.is_in_compare("p2")
        compare.clear()
        assert compare.count == 0


@pytest.fixture
def phones():
    return [
        make_phone("pixel-8"),
        make_phone("iphone-15", brand="Apple", model="iPhone 15", price=79900, os="iOS",
                   processor="A16 Bionic", ram="6GB"),
        make_phone("galaxy-a55", brand="Samsung", model="Galaxy A55", price=39999,
                   processor="Exynos 1480", storage="256GB"),
    ]


class TestFilterPhones:
    def test_no_filters_keeps_order(self, phones):
        assert [p.id for p in filter_phones(phones, PhoneFilters())] == ["pixel-8", "iphone-15", "galaxy-a55"]

    def test_search_is_case_insensitive_over_brand_model_processor(self, phones):
        assert [p.id for p in filter_phones(phones, PhoneFilters(search="APPLE"))] == ["iphone-15"]
        assert [p.id for p in filter_phones(phones, PhoneFilters(search="exynos"))] == ["galaxy-a55"]
        assert [p.id for p in filter_phones(phones, PhoneFilters(search="pixel"))] == ["pixel-8"]

    def test_multi_select_filters(self, phones):
        result = filter_phones(phones, PhoneFilters(brands=["Google", "Samsung"], storage=["256GB"]))
        assert [p.id for p in result] == ["galaxy-a55"]
        assert [p.id for p in filter_phones(phones, PhoneFilters(os=["iOS"]))] == ["iphone-15"]
        assert [p.id for p in filter_phones(phones, PhoneFilters(ram=["6GB"]))] == ["iphone-15"]

    def test_price_range_inclusive(self, phones):
        result = filter_phones(phones, PhoneFilters(min_price=39999, max_price=75999))
        assert {p.id for p in result} == {"pixel-8", "galaxy-a55"}

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationError):
            PhoneFilters(min_price=5000, max_price=1000)
