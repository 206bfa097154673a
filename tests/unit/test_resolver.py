"""Unit tests for the session resolver helpers"""
from datetime import date, datetime, timezone

import pytest

from tradecal.managers.time_manager import (
    CalendarConfig,
    HolidayInterval,
    TimePeriod,
    TimePoint,
    normalize_holidays,
    resolve_time_info,
)
from tradecal.managers.time_manager.resolver import (
    parse_trade_day,
    point_to_timestamp,
    split_session,
    to_millis,
)
from tradecal.managers.time_manager.timezones import resolve_timezone
from tests.fixtures.calendars import make_config, ts

NEW_YORK = resolve_timezone("America/New_York")[0]
SHANGHAI = resolve_timezone("Asia/Shanghai")[0]


class TestNormalizeHolidays:
    """Test holiday sorting and merging."""

    def test_empty(self):
        assert normalize_holidays(None) == []
        assert normalize_holidays([]) == []

    def test_sorts_and_merges_overlaps(self):
        merged = normalize_holidays([(50, 60), (10, 30), (20, 40)])
        assert merged == [HolidayInterval(10, 40), HolidayInterval(50, 60)]

    def test_touching_intervals_merge(self):
        assert normalize_holidays([(10, 20), (20, 30)]) == [HolidayInterval(10, 30)]

    def test_contained_interval_keeps_outer_end(self):
        assert normalize_holidays([(10, 50), (20, 30)]) == [HolidayInterval(10, 50)]

    def test_idempotent(self):
        once = normalize_holidays([(50, 60), (10, 30), (20, 40), (60, 61)])
        assert normalize_holidays(once) == once

    def test_accepts_mappings_and_datetimes(self):
        merged = normalize_holidays([
            {"start": datetime(2017, 8, 1, 9, 30), "end": datetime(2017, 8, 1, 12, 0), "name": "typhoon"},
        ], SHANGHAI)
        assert merged == [HolidayInterval(ts("2017-08-01T09:30:00+08:00"), ts("2017-08-01T12:00:00+08:00"))]
        assert merged[0].name == "typhoon"

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            normalize_holidays(["tomorrow"])


class TestSplitSession:
    """Test carving holidays out of a session."""

    def test_no_holidays(self):
        assert split_session(100, 200, []) == [TimePeriod(100, 200)]

    def test_holiday_covers_session(self):
        assert split_session(100, 200, [HolidayInterval(50, 250)]) == []

    def test_holiday_at_start(self):
        assert split_session(100, 200, [HolidayInterval(100, 150)]) == [TimePeriod(150, 200)]

    def test_holiday_at_end(self):
        assert split_session(100, 200, [HolidayInterval(150, 200)]) == [TimePeriod(100, 150)]

    def test_midday_break(self):
        assert split_session(100, 200, [HolidayInterval(120, 130)]) == [TimePeriod(100, 120), TimePeriod(130, 200)]

    def test_holidays_outside_session_ignored(self):
        holidays = [HolidayInterval(0, 50), HolidayInterval(300, 400)]
        assert split_session(100, 200, holidays) == [TimePeriod(100, 200)]


class TestParsing:
    """Test date and instant parsing."""

    def test_parse_trade_day_forms(self):
        assert parse_trade_day(20170801, SHANGHAI, 0) == date(2017, 8, 1)
        assert parse_trade_day("2017-08-01", SHANGHAI, 0) == date(2017, 8, 1)
        assert parse_trade_day(date(2017, 8, 1), SHANGHAI, 0) == date(2017, 8, 1)

    def test_aware_datetime_is_converted_to_calendar_zone(self):
        """23:00 UTC on July 31st is already August 1st in Shanghai."""
        day = datetime(2017, 7, 31, 23, 0, tzinfo=timezone.utc)
        assert parse_trade_day(day, SHANGHAI, 0) == date(2017, 8, 1)

    def test_none_is_today_at_now(self):
        now = ts("2017-07-31T20:00:00+00:00")
        assert parse_trade_day(None, SHANGHAI, now) == date(2017, 8, 1)
        assert parse_trade_day(None, NEW_YORK, now) == date(2017, 7, 31)

    def test_bool_is_not_a_date(self):
        with pytest.raises(ValueError):
            parse_trade_day(True, SHANGHAI, 0)

    def test_to_millis(self):
        assert to_millis(1501551000000, SHANGHAI) == 1501551000000
        assert to_millis("2017-08-01T09:30:00+08:00", NEW_YORK) == 1501551000000
        assert to_millis("2017-08-01 09:30:00", SHANGHAI) == 1501551000000

    def test_point_to_timestamp_follows_dst(self):
        """09:30 New York is 13:30 UTC in summer and 14:30 UTC in winter."""
        point = TimePoint.model_validate("09:30")
        assert point_to_timestamp(date(2017, 8, 1), point, NEW_YORK) == ts("2017-08-01T13:30:00+00:00")
        assert point_to_timestamp(date(2017, 1, 3), point, NEW_YORK) == ts("2017-01-03T14:30:00+00:00")


class TestTimePoint:
    """Test time point parsing."""

    def test_string_forms(self):
        assert TimePoint.model_validate("9:30") == TimePoint(hour=9, minute=30)
        assert TimePoint.model_validate("09:30:15") == TimePoint(hour=9, minute=30, second=15)
        assert TimePoint.model_validate("09:30:15.5") == TimePoint(hour=9, minute=30, second=15, millisecond=500)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            TimePoint(hour=24)
        with pytest.raises(ValueError):
            TimePoint.model_validate("09:75")


class TestResolveTimeInfo:
    """Test the resolver entry point directly."""

    @pytest.mark.asyncio
    async def test_saturday_forward_and_backward(self):
        config = CalendarConfig.model_validate(make_config())
        empty = lambda start, end: []

        forward = await resolve_time_info(config, empty, date(2017, 8, 5), 1, SHANGHAI, 10)
        backward = await resolve_time_info(config, empty, date(2017, 8, 5), -1, SHANGHAI, 10)

        assert forward.trade_date == 20170807
        assert backward.trade_date == 20170804

    @pytest.mark.asyncio
    async def test_direction_none_searches_forward(self):
        config = CalendarConfig.model_validate(make_config())
        info = await resolve_time_info(config, lambda s, e: [], date(2017, 8, 6), None, SHANGHAI, 10)
        assert info.trade_date == 20170807

    @pytest.mark.asyncio
    async def test_periods_within_day(self):
        config = CalendarConfig.model_validate(make_config())
        info = await resolve_time_info(config, lambda s, e: [], date(2017, 8, 1), 1, SHANGHAI, 10)
        for period in info.time_periods:
            assert info.day_start <= period.start < period.end <= info.day_end


class TestTimePeriod:
    def test_start_must_precede_end(self):
        with pytest.raises(ValueError):
            TimePeriod(200, 100)
        with pytest.raises(ValueError):
            TimePeriod(100, 100)
