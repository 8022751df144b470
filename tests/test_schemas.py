from datetime import datetime, timedelta, timezone

import pytest

from schemas import Coupon, CreationClock, Product, field_adapter, to_millis, validate_changes

UTC = timezone.utc


def test_to_millis_truncates_and_normalizes():
    assert to_millis(datetime(2024, 1, 1, 12, 0, 0, 123999)) == datetime(2024, 1, 1, 12, 0, 0, 123000, tzinfo=UTC)
    assert to_millis(datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))) == datetime(
        2024, 1, 1, 12, 0, tzinfo=UTC
    )


def test_creation_clock_never_repeats_within_a_millisecond():
    readings = iter([datetime(2024, 1, 1, 0, 0, 0, n, tzinfo=UTC) for n in (100, 300, 500)])
    clock = CreationClock(lambda: next(readings))

    stamps = [clock(), clock(), clock()]

    assert stamps == [datetime(2024, 1, 1, 0, 0, 0, ms * 1000, tzinfo=UTC) for ms in (0, 1, 2)]


def test_creation_clock_catches_up_with_real_time():
    readings = iter([datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 1, 0, 0, 5, tzinfo=UTC)])
    clock = CreationClock(lambda: next(readings))

    clock()

    assert clock() == datetime(2024, 1, 1, 0, 0, 5, tzinfo=UTC)


def test_field_adapters_are_built_once():
    assert field_adapter(Coupon, "used_count") is field_adapter(Coupon, "used_count")
    assert field_adapter(Product, "price") is not field_adapter(Coupon, "used_count")


def test_validate_changes_applies_field_constraints():
    assert str(validate_changes(Product, {"price": "4.5"})["price"]) == "4.50"
    with pytest.raises(ValueError):
        validate_changes(Product, {"price": "-1"})
    with pytest.raises(ValueError):
        validate_changes(Coupon, {"used_count": 1, "id": "x"})
