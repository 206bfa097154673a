"""
Trading calendar

TradeCalendar binds a schedule, a timezone, a holiday source, a clock and a
time transform. Session queries come in two flavours:

- calendar coordinates (``time_info``, ``market_open``, ...): timestamps on
  the calendar's own, possibly dilated, timeline
- real coordinates (``real_time_info``, ``real_market_open``, ...): the same
  boundaries mapped back onto the host clock, which is what timers need

Without a virtual block both flavours are identical.
"""
import asyncio
import functools
import inspect
import json
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from tradecal.config import settings
from tradecal.core.exceptions import ConfigurationError
from tradecal.logger import logger
from tradecal.managers.time_manager.clock import Clock, SystemClock
from tradecal.managers.time_manager.holidays import empty_holiday_source
from tradecal.managers.time_manager.models import (
    CalendarConfig,
    TimeInfo,
    TimePeriod,
    TimePoint,
    config_to_dict,
    deep_merge,
    load_calendar_config,
)
from tradecal.managers.time_manager.resolver import (
    DAY_END,
    DAY_START,
    DayLike,
    HolidaySource,
    date_to_int,
    from_millis,
    parse_trade_day,
    point_to_timestamp,
    resolve_time_info,
    to_millis,
)
from tradecal.managers.time_manager.timezones import resolve_timezone
from tradecal.managers.time_manager.virtual import IdentityTransform, VirtualTimeTransform


Number = Union[int, float]
Transform = Union[IdentityTransform, VirtualTimeTransform]

_UNSET = object()


@dataclass(frozen=True)
class _CalendarState:
    """Everything derived from a configuration, swapped in as one unit"""
    raw: Dict[str, Any]
    config: CalendarConfig
    tz: tzinfo
    timezone_name: str
    transform: Transform
    start_time: Number


class TradeCalendar:
    """Trading calendar for one market

    Args:
        config: CalendarConfig or equivalent mapping
        holiday_source: Callable ``(start_ms, end_ms) -> intervals`` (sync or async)
        clock: Time source, defaults to the system clock
        start_time: Start instant (epoch ms); defaults to ``config.start_time`` or now
        max_lookahead_days: Days examined before giving up on a trade date search
        holiday_fetch_timeout: Seconds to wait for an async holiday source (None = no limit)
    """

    def __init__(
        self,
        config: Union[CalendarConfig, Dict[str, Any]],
        holiday_source: Optional[HolidaySource] = None,
        clock: Optional[Clock] = None,
        start_time: Optional[Number] = None,
        max_lookahead_days: Optional[int] = None,
        holiday_fetch_timeout: Any = _UNSET,
    ):
        self.clock = clock or SystemClock()
        self._holiday_source = holiday_source or empty_holiday_source
        self._max_lookahead_days = max_lookahead_days or settings.SCHEDULER.max_lookahead_days
        if holiday_fetch_timeout is _UNSET:
            holiday_fetch_timeout = settings.SCHEDULER.holiday_fetch_timeout_seconds
        self._fetch_timeout = holiday_fetch_timeout

        raw = config_to_dict(config)
        if start_time is None:
            start_time = raw.get("start_time")
        if start_time is None:
            start_time = self.clock.now_ms()

        self._state = self._build(raw, start_time)
        logger.debug(f"Calendar {self!r} created")

    # ==================== CONFIGURATION ====================

    def _build(self, raw: Dict[str, Any], start_time: Number) -> _CalendarState:
        try:
            base = CalendarConfig.model_validate(raw)
            effective = base
            if base.virtual_active and base.virtual.overrides:
                overrides = {k: v for k, v in base.virtual.overrides.items() if k != "virtual"}
                effective = CalendarConfig.model_validate(deep_merge(raw, overrides))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid calendar configuration: {e}") from e

        tz, tz_name = resolve_timezone(effective.timezone_name or settings.CALENDAR.default_timezone)
        transform = VirtualTimeTransform.from_config(effective.virtual, start_time, tz)
        return _CalendarState(
            raw=raw,
            config=effective,
            tz=tz,
            timezone_name=tz_name,
            transform=transform,
            start_time=start_time,
        )

    def reload(
        self,
        config: Union[CalendarConfig, Dict[str, Any], None] = None,
        holiday_source: Optional[HolidaySource] = None,
    ) -> None:
        """Deep-merge ``config`` into the current configuration

        The new timezone and transform are computed before anything is
        replaced; on error the calendar keeps its previous state.

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        patch = config_to_dict(config, partial=True)
        raw = deep_merge(self._state.raw, patch)
        start_time = patch.get("start_time")
        state = self._build(raw, start_time if start_time is not None else self._state.start_time)
        self._state = state
        if holiday_source is not None:
            self._holiday_source = holiday_source
        logger.info(f"Calendar {self.name or ''} reloaded: {state.transform!r}")

    @property
    def config(self) -> CalendarConfig:
        """Effective configuration (virtual overrides applied)"""
        return self._state.config

    @property
    def start_time(self) -> Number:
        """Instant the calendar was started (the START anchor)"""
        return self._state.start_time

    @property
    def name(self) -> Optional[str]:
        return self._state.config.name

    @property
    def timezone(self) -> tzinfo:
        return self._state.tz

    @property
    def timezone_name(self) -> str:
        return self._state.timezone_name

    @property
    def transform(self) -> Transform:
        return self._state.transform

    @property
    def time_ratio(self):
        return self._state.transform.time_ratio

    @property
    def holiday_source(self) -> HolidaySource:
        return self._holiday_source

    # ==================== COORDINATE TRANSFORM ====================

    def timestamp(self, real: Union[Number, datetime, None] = None) -> Number:
        """Calendar timestamp for a real instant (default: now)"""
        if real is None:
            real = self.clock.now_ms()
        elif isinstance(real, datetime):
            real = to_millis(real, self._state.tz)
        return self._state.transform.to_virtual(real)

    def real_stamp(self, stamp: Union[Number, datetime, None] = None) -> Number:
        """Real timestamp for a calendar instant (default: real now)"""
        if stamp is None:
            return self.clock.now_ms()
        if isinstance(stamp, datetime):
            stamp = to_millis(stamp, self._state.tz)
        return self._state.transform.to_real(stamp)

    def time_period(self, period: TimePeriod) -> TimePeriod:
        """Real period -> calendar period"""
        return TimePeriod(self.timestamp(period.start), self.timestamp(period.end))

    def real_time_period(self, period: TimePeriod) -> TimePeriod:
        """Calendar period -> real period"""
        return TimePeriod(self.real_stamp(period.start), self.real_stamp(period.end))

    # ==================== CURRENT TIME ====================

    def now(self) -> Number:
        """Current calendar timestamp"""
        return self.timestamp()

    current_stamp = now

    def real_now(self) -> Number:
        return self.clock.now_ms()

    def to_datetime(self, value: Union[Number, datetime, None] = None) -> datetime:
        """Aware datetime in the calendar timezone for a calendar timestamp (default: now)"""
        if value is None:
            value = self.timestamp()
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=self._state.tz)
            return value.astimezone(self._state.tz)
        return from_millis(value, self._state.tz)

    def current_time(self, fmt: Optional[str] = None) -> str:
        """Current calendar time as a string (ISO-8601 with offset by default)"""
        now = self.to_datetime()
        if fmt:
            return now.strftime(fmt)
        return now.isoformat(timespec="seconds")

    def today(self) -> int:
        """Current calendar date as YYYYMMDD (not necessarily a trade date)"""
        return date_to_int(self.to_datetime().date())

    def sql_stamp(self) -> int:
        """Current calendar time in whole epoch seconds"""
        return int(self.timestamp() // 1000)

    def sql_datetime(self) -> str:
        """Current calendar time as a UTC ``YYYY-MM-DD HH:MM:SS`` string"""
        return from_millis(self.timestamp(), timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def calendar_datetime(self, real: Union[Number, datetime, None] = None) -> datetime:
        """Calendar-coordinate datetime for a real instant (default: now)

        Naive datetimes are read in the calendar timezone and returned naive.
        """
        converted = self.to_datetime(self.timestamp(real))
        if isinstance(real, datetime) and real.tzinfo is None:
            return converted.replace(tzinfo=None)
        return converted

    def real_datetime(self, value: datetime) -> datetime:
        """Real datetime for a calendar-coordinate datetime"""
        tz = value.tzinfo or self._state.tz
        converted = from_millis(self.real_stamp(value), tz)
        if value.tzinfo is None:
            return converted.replace(tzinfo=None)
        return converted

    # ==================== SESSION QUERIES ====================

    def _day(self, day: DayLike) -> date:
        return parse_trade_day(day, self._state.tz, self.timestamp())

    async def time_info(self, day: DayLike = None, direction: Optional[int] = 1) -> TimeInfo:
        """Nearest trade date from ``day`` in calendar coordinates

        Args:
            day: Date to start from (None/0 = calendar today)
            direction: Negative searches backward, anything else forward

        Raises:
            ResolutionError: Holiday source failure or no trade date in range
            ValueError: Unreadable ``day``
        """
        state = self._state
        return await resolve_time_info(
            state.config,
            self._holiday_source,
            self._day(day),
            direction,
            state.tz,
            self._max_lookahead_days,
            self._fetch_timeout,
        )

    async def real_time_info(self, day: DayLike = None, direction: Optional[int] = 1) -> TimeInfo:
        """Same as :meth:`time_info` with every timestamp mapped to real time"""
        info = await self.time_info(day, direction)
        return TimeInfo(
            trade_date=info.trade_date,
            time_periods=[self.real_time_period(p) for p in info.time_periods],
            day_start=self.real_stamp(info.day_start),
            day_end=self.real_stamp(info.day_end),
        )

    get_time_info = real_time_info

    def _point(self, day: DayLike, point: TimePoint) -> int:
        return point_to_timestamp(self._day(day), point, self._state.tz)

    def market_open(self, day: DayLike = None) -> Number:
        return self._point(day, self.config.start)

    def market_close(self, day: DayLike = None) -> Number:
        return self._point(day, self.config.end)

    def before_market_start(self, day: DayLike = None) -> Number:
        return self._point(day, self.config.before.start)

    def before_market_end(self, day: DayLike = None) -> Number:
        return self._point(day, self.config.before.end)

    def after_market_start(self, day: DayLike = None) -> Number:
        return self._point(day, self.config.after.start)

    def after_market_end(self, day: DayLike = None) -> Number:
        return self._point(day, self.config.after.end)

    def start_of_day(self, day: DayLike = None) -> Number:
        return self._point(day, DAY_START)

    def end_of_day(self, day: DayLike = None) -> Number:
        return self._point(day, DAY_END)

    def real_market_open(self, day: DayLike = None) -> Number:
        return self.real_stamp(self.market_open(day))

    def real_market_close(self, day: DayLike = None) -> Number:
        return self.real_stamp(self.market_close(day))

    def real_before_market_start(self, day: DayLike = None) -> Number:
        return self.real_stamp(self.before_market_start(day))

    def real_before_market_end(self, day: DayLike = None) -> Number:
        return self.real_stamp(self.before_market_end(day))

    def real_after_market_start(self, day: DayLike = None) -> Number:
        return self.real_stamp(self.after_market_start(day))

    def real_after_market_end(self, day: DayLike = None) -> Number:
        return self.real_stamp(self.after_market_end(day))

    # ==================== FORMATTING ====================

    def _iso(self, stamp: Number) -> str:
        return from_millis(stamp, self._state.tz).isoformat(timespec="seconds")

    def format_time_info(self, info: TimeInfo) -> Dict[str, Any]:
        """TimeInfo with every timestamp rendered as ISO-8601 in the calendar timezone"""
        return {
            "trade_date": info.trade_date,
            "time_periods": [
                {"start": self._iso(p.start), "end": self._iso(p.end)} for p in info.time_periods
            ],
            "day_start": self._iso(info.day_start),
            "day_end": self._iso(info.day_end),
        }

    def str_time_info(self, info: TimeInfo) -> str:
        return json.dumps(self.format_time_info(info))

    # ==================== SCHEDULING ====================

    async def sleep(self, delay: Number) -> None:
        """Sleep for a calendar-coordinate duration (ms)"""
        await self.clock.sleep(self._state.transform.scale_delay(delay))

    async def sleep_until(self, stamp: Number) -> None:
        """Sleep until a calendar timestamp, converted to real time first"""
        await self.sleep_until_real(self.real_stamp(stamp))

    async def sleep_until_real(self, real_stamp: Number) -> None:
        """Sleep until a real timestamp, re-checking the clock after each wake-up"""
        while True:
            residual = real_stamp - self.clock.now_ms()
            if residual <= 0:
                return
            await self.clock.sleep(residual)

    def set_timeout(self, fn: Callable[..., Any], delay: Number, *args) -> asyncio.Task:
        """Run ``fn(*args)`` after a calendar-coordinate delay (ms)"""
        return asyncio.create_task(self._call_after(self.sleep(delay), fn, args))

    def set_timeout_at(self, fn: Callable[..., Any], stamp: Number, *args) -> asyncio.Task:
        """Run ``fn(*args)`` at a calendar timestamp"""
        return asyncio.create_task(self._call_after(self.sleep_until(stamp), fn, args))

    def real_timeout_at(self, fn: Callable[..., Any], real_stamp: Number, *args) -> asyncio.Task:
        """Run ``fn(*args)`` at a real timestamp"""
        return asyncio.create_task(self._call_after(self.sleep_until_real(real_stamp), fn, args))

    @staticmethod
    async def _call_after(waiter, fn: Callable[..., Any], args) -> Any:
        await waiter
        result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ==================== WRAPPING ====================

    def wrap(self, target: Any, name: Optional[str] = None) -> Callable[..., Any]:
        """Run a date-based function on calendar time

        ``datetime`` arguments are converted to calendar coordinates before
        the call and a returned ``datetime`` is converted back to real time.
        A call without arguments receives the calendar's current datetime.
        Coroutine functions are supported. Under the identity transform the
        wrapped function behaves exactly like the original.

        Usable as a decorator (``@calendar.wrap``) or as
        ``calendar.wrap(obj, "method")``, which replaces the attribute.
        """
        if name is not None:
            wrapped = self.wrap(getattr(target, name))
            setattr(target, name, wrapped)
            return wrapped

        fn = target
        if not callable(fn):
            raise TypeError(f"Cannot wrap non-callable {fn!r}")
        if getattr(fn, "__calendar_original__", None) is not None:
            return fn

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def _async_wrapper(*args, **kwargs):
                if self.transform.is_identity:
                    return await fn(*args, **kwargs)
                args, kwargs = self._calendar_args(args, kwargs)
                return self._real_result(await fn(*args, **kwargs))

            wrapper = _async_wrapper
        else:
            @functools.wraps(fn)
            def _wrapper(*args, **kwargs):
                if self.transform.is_identity:
                    return fn(*args, **kwargs)
                args, kwargs = self._calendar_args(args, kwargs)
                return self._real_result(fn(*args, **kwargs))

            wrapper = _wrapper

        wrapper.__calendar_original__ = fn
        return wrapper

    def _calendar_args(self, args: tuple, kwargs: Dict[str, Any]):
        if not args and not kwargs:
            return (self.calendar_datetime(),), {}
        args = tuple(self.calendar_datetime(a) if isinstance(a, datetime) else a for a in args)
        kwargs = {k: self.calendar_datetime(v) if isinstance(v, datetime) else v for k, v in kwargs.items()}
        return args, kwargs

    def _real_result(self, result: Any) -> Any:
        if isinstance(result, datetime):
            real = self.real_datetime(result)
            logger.trace(f"Calendar {self.name or ''} mapped {result.isoformat()} -> {real.isoformat()}")
            return real
        return result

    def __repr__(self) -> str:
        return (
            f"TradeCalendar(name={self.name!r}, timezone={self.timezone_name!r}, "
            f"transform={self._state.transform!r})"
        )


def create_calendar(
    config: Union[CalendarConfig, Dict[str, Any], str, Path],
    holiday_source: Optional[HolidaySource] = None,
    clock: Optional[Clock] = None,
    **kwargs,
) -> TradeCalendar:
    """Create a calendar from a configuration object, mapping or JSON file path

    Virtual time is enabled by the configuration's ``virtual`` block.
    """
    if isinstance(config, (str, Path)):
        config = load_calendar_config(config)
    return TradeCalendar(config, holiday_source=holiday_source, clock=clock, **kwargs)
