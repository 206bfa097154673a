"""Unit tests for TradeCalendar

Session resolution, coordinate conversion, formatting and scheduling
primitives on identity (undilated) calendars.
"""
import asyncio
from datetime import date, datetime

import pytest

from tradecal.core.exceptions import ConfigurationError, NoTradingDayError, ResolutionError
from tradecal.managers.time_manager import (
    SimClock,
    StaticHolidaySource,
    TimeInfo,
    TimePeriod,
    create_calendar,
)
from tests.fixtures.calendars import make_config, ts


def cn_info_20170801():
    return TimeInfo(
        trade_date=20170801,
        time_periods=[TimePeriod(1501551000000, 1501574400000)],
        day_start=1501516800000,
        day_end=1501603199999,
    )


class TestTimeInfo:
    """Test trade date resolution in calendar coordinates."""

    @pytest.mark.asyncio
    async def test_regular_day(self, cn_calendar, us_calendar):
        """A weekday without holidays has a single period of that day."""
        assert await cn_calendar.time_info(20170801) == cn_info_20170801()
        assert await us_calendar.time_info(20170801) == TimeInfo(
            trade_date=20170801,
            time_periods=[TimePeriod(1501594200000, 1501617600000)],
            day_start=1501560000000,
            day_end=1501646399999,
        )

    @pytest.mark.asyncio
    async def test_weekend_forward(self, cn_calendar, us_calendar):
        """Sunday searched forward resolves to Monday."""
        assert await cn_calendar.time_info(20170730, 1) == TimeInfo(
            trade_date=20170731,
            time_periods=[TimePeriod(1501464600000, 1501488000000)],
            day_start=1501430400000,
            day_end=1501516799999,
        )
        assert await us_calendar.time_info(20170730, 1) == TimeInfo(
            trade_date=20170731,
            time_periods=[TimePeriod(1501507800000, 1501531200000)],
            day_start=1501473600000,
            day_end=1501559999999,
        )

    @pytest.mark.asyncio
    async def test_weekend_backward(self, cn_calendar):
        """Sunday searched backward resolves to the previous Friday."""
        info = await cn_calendar.time_info(20170730, -1)
        assert info.trade_date == 20170728

    @pytest.mark.asyncio
    async def test_date_argument_forms(self, cn_calendar):
        """Ints, strings, ISO strings, dates and datetimes name the same day."""
        for day in (20170801, "20170801", "2017-08-01", date(2017, 8, 1), datetime(2017, 8, 1, 12, 0)):
            info = await cn_calendar.time_info(day)
            assert info.trade_date == 20170801

    @pytest.mark.asyncio
    async def test_default_day_is_calendar_today(self, cn_calendar):
        """No date means today in the calendar timezone."""
        info = await cn_calendar.time_info()
        assert info.trade_date == 20170801
        assert (await cn_calendar.time_info(0)).trade_date == 20170801

    @pytest.mark.asyncio
    async def test_invalid_day(self, cn_calendar):
        """Unreadable dates raise ValueError."""
        with pytest.raises(ValueError):
            await cn_calendar.time_info("not-a-date")
        with pytest.raises(ValueError):
            await cn_calendar.time_info(2017081)

    @pytest.mark.asyncio
    async def test_real_time_info_matches_without_virtual(self, cn_calendar):
        """Identity calendars report the same info in both coordinates."""
        assert await cn_calendar.real_time_info(20170801) == await cn_calendar.time_info(20170801)
        assert await cn_calendar.get_time_info(20170801) == cn_info_20170801()

    @pytest.mark.asyncio
    async def test_market_open_close_helpers(self, cn_calendar):
        """Boundary helpers match the resolved period."""
        info = await cn_calendar.time_info(20170801)
        assert info.market_open == cn_calendar.market_open(20170801) == 1501551000000
        assert info.market_close == cn_calendar.market_close(20170801) == 1501574400000
        assert cn_calendar.before_market_start(20170801) == ts("2017-08-01T08:05:00+08:00")
        assert cn_calendar.before_market_end(20170801) == ts("2017-08-01T09:25:00+08:00")
        assert cn_calendar.after_market_start(20170801) == ts("2017-08-01T16:05:00+08:00")
        assert cn_calendar.real_after_market_end(20170801) == ts("2017-08-01T17:25:00+08:00")
        assert cn_calendar.start_of_day(20170801) == info.day_start
        assert cn_calendar.end_of_day(20170801) == info.day_end


class TestHolidays:
    """Test holiday handling during resolution."""

    @pytest.mark.asyncio
    async def test_full_day_holiday_skips_to_next_monday(self, sim_clock):
        """A Friday closed all day resolves forward to Monday."""
        holidays = StaticHolidaySource([
            (ts("2017-08-04T00:00:00+08:00"), ts("2017-08-05T00:00:00+08:00")),
        ])
        calendar = create_calendar(make_config(), holidays, clock=sim_clock)

        info = await calendar.time_info(20170804, 1)

        assert info.trade_date == 20170807

    @pytest.mark.asyncio
    async def test_morning_closed(self, sim_clock):
        """A holiday from the open until midday leaves the afternoon."""
        holidays = StaticHolidaySource([
            (ts("2017-08-01T09:30:00+08:00"), ts("2017-08-01T12:00:00+08:00")),
        ])
        calendar = create_calendar(make_config(), holidays, clock=sim_clock)

        info = await calendar.time_info(20170801)

        assert info.time_periods == [
            TimePeriod(ts("2017-08-01T12:00:00+08:00"), ts("2017-08-01T16:00:00+08:00")),
        ]

    @pytest.mark.asyncio
    async def test_several_holidays_in_one_session(self, sim_clock):
        """Every closure inside the session splits it."""
        holidays = [
            {"start": ts("2017-08-01T13:00:00+08:00"), "end": ts("2017-08-01T14:00:00+08:00")},
            {"start": ts("2017-08-01T10:00:00+08:00"), "end": ts("2017-08-01T11:00:00+08:00")},
        ]
        calendar = create_calendar(make_config(), lambda start, end: holidays, clock=sim_clock)

        info = await calendar.time_info(20170801)

        assert info.time_periods == [
            TimePeriod(ts("2017-08-01T09:30:00+08:00"), ts("2017-08-01T10:00:00+08:00")),
            TimePeriod(ts("2017-08-01T11:00:00+08:00"), ts("2017-08-01T13:00:00+08:00")),
            TimePeriod(ts("2017-08-01T14:00:00+08:00"), ts("2017-08-01T16:00:00+08:00")),
        ]

    @pytest.mark.asyncio
    async def test_async_holiday_source(self, sim_clock):
        """Coroutine holiday sources are awaited."""
        async def source(start, end):
            return [(datetime(2017, 8, 1, 9, 30), datetime(2017, 8, 1, 16, 0))]

        calendar = create_calendar(make_config(), source, clock=sim_clock)

        info = await calendar.time_info(20170801)

        # Naive datetimes are local to the calendar: the whole session is closed
        assert info.trade_date == 20170802

    @pytest.mark.asyncio
    async def test_failing_source_raises_resolution_error(self, sim_clock):
        """Holiday source errors surface as ResolutionError with the cause chained."""
        def source(start, end):
            raise ConnectionError("holiday service down")

        calendar = create_calendar(make_config(), source, clock=sim_clock)

        with pytest.raises(ResolutionError) as exc_info:
            await calendar.time_info(20170801)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self, sim_clock):
        """An async source slower than the fetch timeout is a ResolutionError."""
        async def source(start, end):
            await asyncio.sleep(5)
            return []

        calendar = create_calendar(make_config(), source, clock=sim_clock, holiday_fetch_timeout=0.01)

        with pytest.raises(ResolutionError):
            await calendar.time_info(20170801)

    @pytest.mark.asyncio
    async def test_no_trading_day_within_lookahead(self, sim_clock):
        """A source closing everything exhausts the bounded search."""
        calendar = create_calendar(
            make_config(),
            lambda start, end: [(start, end)],
            clock=sim_clock,
            max_lookahead_days=10,
        )

        with pytest.raises(NoTradingDayError) as exc_info:
            await calendar.time_info(20170801)
        assert exc_info.value.max_days == 10


class TestCurrentTime:
    """Test current time accessors."""

    def test_timestamp_defaults_to_clock(self, cn_calendar, sim_clock):
        """Identity calendars report the clock time."""
        assert cn_calendar.timestamp() == sim_clock.now_ms()
        assert cn_calendar.now() == cn_calendar.current_stamp() == sim_clock.now_ms()
        assert cn_calendar.timestamp(1501551000000) == 1501551000000
        assert cn_calendar.real_stamp(1501551000000) == 1501551000000

    def test_current_time_per_timezone(self, utc_midnight_clock):
        """Same instant, different local wall clocks."""
        cn = create_calendar(make_config("Asia/Shanghai"), clock=utc_midnight_clock)
        us = create_calendar(make_config("America/New_York"), clock=utc_midnight_clock)

        assert cn.current_time() == "2017-08-01T08:00:00+08:00"
        assert us.current_time() == "2017-07-31T20:00:00-04:00"
        assert cn.current_time("%Y-%m-%d %H:%M:%S") == "2017-08-01 08:00:00"
        assert cn.today() == 20170801
        assert us.today() == 20170731

    def test_sql_helpers(self, cn_calendar):
        """SQL helpers use whole seconds and UTC."""
        assert cn_calendar.sql_stamp() == ts("2017-08-01T08:00:00+08:00") // 1000
        assert cn_calendar.sql_datetime() == "2017-08-01 00:00:00"

    def test_to_datetime(self, cn_calendar):
        """Calendar timestamps become aware datetimes in the calendar zone."""
        dt = cn_calendar.to_datetime(1501551000000)
        assert dt.isoformat() == "2017-08-01T09:30:00+08:00"


class TestFormatting:
    """Test TimeInfo formatting."""

    def test_format_time_info(self, cn_calendar):
        """Timestamps are rendered as ISO-8601 with offset at second precision."""
        formatted = cn_calendar.format_time_info(cn_info_20170801())

        assert formatted == {
            "trade_date": 20170801,
            "time_periods": [{"start": "2017-08-01T09:30:00+08:00", "end": "2017-08-01T16:00:00+08:00"}],
            "day_start": "2017-08-01T00:00:00+08:00",
            "day_end": "2017-08-01T23:59:59+08:00",
        }

    def test_str_time_info_is_json(self, cn_calendar):
        text = cn_calendar.str_time_info(cn_info_20170801())
        assert '"trade_date": 20170801' in text
        assert "2017-08-01T09:30:00+08:00" in text


class TestTimezone:
    """Test timezone resolution."""

    def test_missing_timezone_uses_local_zone(self, sim_clock):
        """No timezone name falls back to the host zone."""
        calendar = create_calendar(make_config(None), clock=sim_clock)
        assert calendar.timezone is not None
        assert calendar.timezone_name

    def test_unknown_timezone_falls_back(self, sim_clock):
        """Unknown names do not fail construction."""
        calendar = create_calendar(make_config("Nowhere/Atlantis"), clock=sim_clock)
        assert calendar.timezone is not None


class TestReload:
    """Test configuration reload."""

    @pytest.mark.asyncio
    async def test_reload_merges_config(self, cn_calendar):
        """Partial configs are deep-merged into the current one."""
        cn_calendar.reload({"start": {"hour": 10, "minute": 0}})

        info = await cn_calendar.time_info(20170801)

        assert info.market_open == ts("2017-08-01T10:00:00+08:00")
        assert info.market_close == ts("2017-08-01T16:00:00+08:00")
        assert cn_calendar.config.before.start.hour == 8

    @pytest.mark.asyncio
    async def test_invalid_reload_keeps_previous_state(self, cn_calendar):
        """A failing reload leaves the calendar untouched."""
        with pytest.raises(ConfigurationError):
            cn_calendar.reload({"start": "17:00"})

        info = await cn_calendar.time_info(20170801)
        assert info == cn_info_20170801()

    @pytest.mark.asyncio
    async def test_reload_replaces_holiday_source(self, cn_calendar):
        closed_until = ts("2017-08-02T00:00:00+08:00")
        cn_calendar.reload(holiday_source=lambda start, end: [(start, end)] if start < closed_until else [])
        info = await cn_calendar.time_info(20170801)
        assert info.trade_date == 20170802

    @pytest.mark.asyncio
    async def test_always_closed_source_finds_no_trade_date(self, sim_clock):
        calendar = create_calendar(
            make_config(),
            lambda start, end: [(start, end)],
            clock=sim_clock,
            max_lookahead_days=30,
        )
        with pytest.raises(NoTradingDayError):
            await calendar.time_info(20170801)

    def test_invalid_config_raises(self, sim_clock):
        """Missing sections are reported as ConfigurationError."""
        with pytest.raises(ConfigurationError):
            create_calendar({"start": "09:30", "end": "16:00"}, clock=sim_clock)


class TestScheduling:
    """Test sleep and timeout primitives on a simulated clock."""

    @pytest.mark.asyncio
    async def test_sleep(self, cn_calendar, sim_clock):
        task = asyncio.create_task(cn_calendar.sleep(500))
        await sim_clock.run_for(499)
        assert not task.done()
        await sim_clock.run_for(1)
        assert task.done()

    @pytest.mark.asyncio
    async def test_set_timeout_at(self, cn_calendar, sim_clock):
        """Callbacks run at the requested instant and their result is the task result."""
        fired = []
        open_at = cn_calendar.market_open(20170801)
        task = cn_calendar.set_timeout_at(lambda: fired.append(sim_clock.now_ms()) or "opened", open_at)

        await sim_clock.run_until(open_at + 1000)

        assert fired == [open_at]
        assert task.result() == "opened"

    @pytest.mark.asyncio
    async def test_set_timeout_with_async_callback(self, cn_calendar, sim_clock):
        fired = []

        async def callback(tag):
            fired.append((tag, sim_clock.now_ms()))

        start = sim_clock.now_ms()
        cn_calendar.set_timeout(callback, 1000, "tick")
        await sim_clock.run_for(2000)

        assert fired == [("tick", start + 1000)]

    @pytest.mark.asyncio
    async def test_sleep_until_real_corrects_early_wakeups(self):
        """Waking up early sleeps again for the remainder."""
        class EarlyClock(SimClock):
            async def sleep(self, delay_ms):
                self.advance(delay_ms / 2 if delay_ms > 1 else delay_ms)

        clock = EarlyClock(start_ms=0)
        calendar = create_calendar(make_config(), clock=clock)

        await calendar.sleep_until_real(1000)

        assert clock.now_ms() >= 1000
