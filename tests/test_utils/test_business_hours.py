"""
Tests for the business-hours gate.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from app.utils.business_hours import BusinessHours

PARIS = ZoneInfo("Europe/Paris")


@pytest.fixture
def hours():
    return BusinessHours()


def test_open_on_weekday_afternoon(hours):
    assert hours.is_open(datetime(2026, 3, 2, 14, 0, tzinfo=PARIS))


def test_window_is_half_open(hours):
    assert hours.is_open(datetime(2026, 3, 2, 9, 0, tzinfo=PARIS))
    assert hours.is_open(datetime(2026, 3, 2, 16, 59, tzinfo=PARIS))
    assert not hours.is_open(datetime(2026, 3, 2, 17, 0, tzinfo=PARIS))
    assert not hours.is_open(datetime(2026, 3, 2, 8, 59, tzinfo=PARIS))


def test_closed_in_the_evening(hours):
    assert not hours.is_open(datetime(2026, 3, 2, 20, 0, tzinfo=PARIS))


def test_closed_on_weekend(hours):
    assert not hours.is_open(datetime(2026, 3, 7, 11, 0, tzinfo=PARIS))
    assert not hours.is_open(datetime(2026, 3, 8, 11, 0, tzinfo=PARIS))


def test_utc_timestamps_are_converted(hours):
    # 15:30 UTC is 16:30 in Paris (CET) and 17:30 after the DST switch.
    assert hours.is_open(datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc))
    assert not hours.is_open(datetime(2026, 4, 6, 15, 30, tzinfo=timezone.utc))


def test_naive_timestamps_are_local(hours):
    assert hours.is_open(datetime(2026, 3, 2, 10, 0))


def test_custom_weekdays():
    saturday_shop = BusinessHours(weekdays=frozenset({5}))
    assert saturday_shop.is_open(datetime(2026, 3, 7, 10, 0, tzinfo=PARIS))
    assert not saturday_shop.is_open(datetime(2026, 3, 2, 10, 0, tzinfo=PARIS))


def test_invalid_window():
    with pytest.raises(ValueError):
        BusinessHours(start_hour=18, end_hour=9)
