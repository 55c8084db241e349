"""Tests for sync parameters, date ranges and working-day counting."""
from datetime import date, datetime, timedelta, timezone

import pytest

from lighthouse.config import Settings
from lighthouse.sync.params import DateRange, SyncParameters, working_days

NOW = datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)


class TestDateRange:
    def test_default_is_today_sentinel(self):
        assert DateRange().is_today
        assert DateRange.today() == DateRange()

    def test_today_resolves_to_local_day(self):
        start, end = DateRange.today().resolve(NOW)
        assert start == datetime(2025, 1, 15, 0, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 1, 15, 23, 59, 59, 999000, tzinfo=timezone.utc)

    def test_bounds_ms_cover_whole_day(self):
        start_ms, end_ms = DateRange.today().bounds_ms(NOW)
        assert start_ms == 1736899200000
        assert end_ms - start_ms == 24 * 60 * 60 * 1000 - 1

    def test_respects_local_timezone(self):
        tz = timezone(timedelta(hours=3))
        start, _ = DateRange.today().resolve(NOW.astimezone(tz))
        assert start.utcoffset() == timedelta(hours=3)
        assert start.hour == 0

    def test_single_day_range(self):
        r = DateRange(start=date(2025, 1, 10))
        assert r.days(NOW) == (date(2025, 1, 10), date(2025, 1, 10))

    def test_multi_day_range(self):
        r = DateRange(start=date(2025, 1, 6), end=date(2025, 1, 10))
        start, end = r.resolve(NOW)
        assert start.date() == date(2025, 1, 6)
        assert end.date() == date(2025, 1, 10)

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError, match="ends before it starts"):
            DateRange(start=date(2025, 1, 10), end=date(2025, 1, 9))

    def test_end_without_start_rejected(self):
        with pytest.raises(ValueError):
            DateRange(end=date(2025, 1, 9))


class TestWorkingDays:
    def test_skips_friday_and_saturday(self):
        # Sun 12 → Sat 18 January 2025
        assert working_days(date(2025, 1, 12), date(2025, 1, 18)) == 5

    def test_weekend_only_range_counts_one(self):
        assert working_days(date(2025, 1, 17), date(2025, 1, 18)) == 1

    def test_custom_weekend(self):
        # Saturday/Sunday weekend
        assert working_days(date(2025, 1, 13), date(2025, 1, 19), weekend_days=(5, 6)) == 5


class TestSyncParameters:
    def test_empty_filter_matches_everyone(self):
        params = SyncParameters()
        assert params.matches("123")

    def test_filter_limits_members(self):
        params = SyncParameters().with_entity_filter([1, "2"])
        assert params.matches("1")
        assert params.matches(2)
        assert not params.matches("3")

    def test_equal_values_compare_equal(self):
        a = SyncParameters().with_entity_filter(["2", "1"])
        b = SyncParameters().with_entity_filter(["1", "2"])
        assert a == b

    def test_with_date_range_returns_new_value(self):
        params = SyncParameters()
        changed = params.with_date_range(DateRange(start=date(2025, 1, 1)))
        assert params.date_range.is_today
        assert not changed.date_range.is_today

    def test_from_settings(self):
        settings = Settings(_env_file=None, members_to_monitor=["10", "11"], poll_interval_ms=60000)
        params = SyncParameters.from_settings(settings)
        assert params.entity_filter == frozenset({"10", "11"})
        assert params.poll_interval_ms == 60000
        assert params.date_range.is_today
