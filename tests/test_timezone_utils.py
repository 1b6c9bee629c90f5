import time
from datetime import date, datetime, timedelta, timezone

import pytest

from setlist_pickem.utils.exceptions import ConfigurationError, TimezoneResolutionError
from setlist_pickem.utils.timezone_utils import (
    LockTimeResolver,
    format_show_date,
    normalize_show_date,
    timezone_for_region,
)


@pytest.fixture
def process_tz(monkeypatch):
    """Switch the process timezone, restoring it afterwards"""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset not available on this platform")

    def _set(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield _set
    monkeypatch.undo()
    time.tzset()


def test_new_york_summer_show_locks_at_2300_utc():
    resolver = LockTimeResolver()

    lock_at = resolver.lock_instant(date(2024, 7, 19), "America/New_York")

    assert lock_at == datetime(2024, 7, 19, 23, 0, tzinfo=timezone.utc)


def test_winter_show_uses_standard_time():
    resolver = LockTimeResolver()

    lock_at = resolver.lock_instant(date(2024, 12, 31), "America/New_York")

    assert lock_at == datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)


def test_region_used_when_timezone_missing():
    resolver = LockTimeResolver()

    lock_at = resolver.lock_instant(date(2024, 7, 19), None, "CA")

    assert lock_at == datetime(2024, 7, 20, 2, 0, tzinfo=timezone.utc)


def test_invalid_timezone_falls_back_to_region():
    resolver = LockTimeResolver()

    lock_at = resolver.lock_instant(date(2024, 7, 19), "Not/AZone", "co")

    assert lock_at == datetime(2024, 7, 20, 1, 0, tzinfo=timezone.utc)


def test_configured_fallback_timezone():
    resolver = LockTimeResolver(fallback_timezone="America/Chicago")

    lock_at = resolver.lock_instant(date(2024, 7, 19), None, "ZZ")

    assert lock_at == datetime(2024, 7, 20, 0, 0, tzinfo=timezone.utc)


def test_unresolvable_timezone_raises_configuration_error():
    resolver = LockTimeResolver()

    with pytest.raises(TimezoneResolutionError):
        resolver.lock_instant(date(2024, 7, 19), None, "ZZ")

    assert issubclass(TimezoneResolutionError, ConfigurationError)


def test_is_locked_fails_closed_when_undeterminable():
    resolver = LockTimeResolver()
    far_future = datetime(2030, 1, 1, tzinfo=timezone.utc)

    assert resolver.try_lock_instant(date(2024, 7, 19), None, None) is None
    assert resolver.is_locked(date(2024, 7, 19), None, None, now=far_future) is False


def test_is_locked_flips_at_lock_instant():
    resolver = LockTimeResolver()
    lock_at = datetime(2024, 7, 19, 23, 0, tzinfo=timezone.utc)

    assert not resolver.is_locked(date(2024, 7, 19), "America/New_York", now=lock_at - timedelta(seconds=1))
    assert resolver.is_locked(date(2024, 7, 19), "America/New_York", now=lock_at)


def test_custom_lock_time():
    resolver = LockTimeResolver(lock_hour=20, lock_minute=30)

    lock_at = resolver.lock_instant(date(2024, 7, 19), "America/Los_Angeles")

    assert lock_at == datetime(2024, 7, 20, 3, 30, tzinfo=timezone.utc)


def test_invalid_lock_hour_rejected():
    with pytest.raises(ConfigurationError):
        LockTimeResolver(lock_hour=24)


@pytest.mark.parametrize("process_zone", ["UTC", "Pacific/Auckland", "America/Los_Angeles", "Asia/Kolkata"])
def test_lock_instant_independent_of_process_timezone(process_tz, process_zone):
    process_tz(process_zone)
    resolver = LockTimeResolver()

    from_date = resolver.lock_instant(date(2024, 7, 19), "America/New_York")
    from_midnight = resolver.lock_instant(datetime(2024, 7, 19, 0, 0), "America/New_York")
    from_iso = resolver.lock_instant("2024-07-19T00:00:00.000Z", "America/New_York")

    expected = datetime(2024, 7, 19, 23, 0, tzinfo=timezone.utc)
    assert from_date == from_midnight == from_iso == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (date(2024, 7, 19), date(2024, 7, 19)),
        ("2024-07-19", date(2024, 7, 19)),
        ("2024-07-19T00:00:00.000Z", date(2024, 7, 19)),
        (datetime(2024, 7, 19, 23, 59), date(2024, 7, 19)),
        (datetime(2024, 7, 19, 23, 30, tzinfo=timezone(timedelta(hours=-5))), date(2024, 7, 20)),
        (datetime(2024, 7, 19, 1, 0, tzinfo=timezone(timedelta(hours=9))), date(2024, 7, 18)),
    ],
)
def test_normalize_show_date_uses_utc_components(value, expected):
    assert normalize_show_date(value) == expected


@pytest.mark.parametrize("value", ["07/19/2024", "2024-13-40", "", None, 20240719])
def test_normalize_show_date_rejects_malformed(value):
    with pytest.raises(ValueError):
        normalize_show_date(value)


def test_format_show_date_for_feed():
    assert format_show_date(datetime(2024, 7, 19, 18, 0, tzinfo=timezone.utc)) == "2024-07-19"


def test_timezone_for_region_is_case_insensitive():
    assert timezone_for_region(" ny ") == "America/New_York"
    assert timezone_for_region("AZ") == "America/Phoenix"
    assert timezone_for_region("QC") == "America/Montreal"
    assert timezone_for_region("XX") is None
    assert timezone_for_region(None) is None
