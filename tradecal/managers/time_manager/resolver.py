"""
Session resolution: calendar date -> trade date and tradable periods

Pure functions shared by TradeCalendar and the holiday sources. Dates are
stepped one calendar day at a time, weekends are skipped and holiday
intervals are carved out of the regular session.
"""
import asyncio
import inspect
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable, List, Optional, Union

from dateutil import parser as date_parser

from tradecal.core.exceptions import NoTradingDayError, ResolutionError
from tradecal.logger import logger
from tradecal.managers.time_manager.models import (
    CalendarConfig,
    HolidayInterval,
    TimeInfo,
    TimePeriod,
    TimePoint,
)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)

DAY_START = TimePoint(hour=0, minute=0, second=0, millisecond=0)
DAY_END = TimePoint(hour=23, minute=59, second=59, millisecond=999)

# (start_ms, end_ms) -> intervals, either directly or as an awaitable
HolidaySource = Callable[[int, int], Any]

DayLike = Union[None, int, str, date, datetime]


def to_millis(value: Union[int, float, datetime, str], tz: tzinfo) -> Union[int, float]:
    """Convert an instant to epoch milliseconds

    Naive datetimes and naive ISO strings are interpreted in ``tz``.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid instant: {value!r}")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            value = date_parser.isoparse(value.strip())
        except ValueError:
            value = date_parser.parse(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz)
        return (value - _EPOCH) // _ONE_MS
    raise ValueError(f"Invalid instant: {value!r}")


def from_millis(stamp: Union[int, float], tz: tzinfo) -> datetime:
    """Aware datetime in ``tz`` for epoch milliseconds"""
    return (_EPOCH + timedelta(milliseconds=stamp)).astimezone(tz)


def date_to_int(day: date) -> int:
    return day.year * 10000 + day.month * 100 + day.day


def parse_trade_day(day: DayLike, tz: tzinfo, now_ms: Union[int, float]) -> date:
    """Normalize a date argument

    Accepts None/0 (today at ``now_ms``), 8-digit ints or strings
    (YYYYMMDD), ISO strings, dates and datetimes (naive = ``tz``).

    Raises:
        ValueError: If the value cannot be read as a date
    """
    if day is None or (isinstance(day, int) and not isinstance(day, bool) and day == 0):
        return from_millis(now_ms, tz).date()
    if isinstance(day, datetime):
        if day.tzinfo is not None:
            day = day.astimezone(tz)
        return day.date()
    if isinstance(day, date):
        return day
    if isinstance(day, int) and not isinstance(day, bool):
        day = str(day)
        if len(day) != 8:
            raise ValueError(f"Invalid trade day {day}, expected YYYYMMDD")
    if isinstance(day, str):
        text = day.strip()
        try:
            if len(text) == 8 and text.isdigit():
                return datetime.strptime(text, "%Y%m%d").date()
            parsed = date_parser.isoparse(text)
        except ValueError as e:
            raise ValueError(f"Invalid trade day '{day}': {e}") from e
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(tz)
        return parsed.date()
    raise ValueError(f"Invalid trade day: {day!r}")


def point_to_timestamp(day: date, point: TimePoint, tz: tzinfo) -> int:
    """Epoch milliseconds of ``point`` on ``day`` in ``tz``"""
    local = datetime(
        day.year, day.month, day.day,
        point.hour, point.minute, point.second, point.millisecond * 1000,
        tzinfo=tz,
    )
    return (local - _EPOCH) // _ONE_MS


def _coerce_interval(item: Any, tz: tzinfo) -> HolidayInterval:
    if isinstance(item, HolidayInterval):
        start, end, name = item.start, item.end, item.name
    elif isinstance(item, Mapping):
        start, end, name = item["start"], item["end"], item.get("name")
    elif isinstance(item, (tuple, list)) and len(item) == 2:
        (start, end), name = item, None
    elif hasattr(item, "start") and hasattr(item, "end"):
        start, end, name = item.start, item.end, getattr(item, "name", None)
    else:
        raise ValueError(f"Unsupported holiday interval: {item!r}")
    return HolidayInterval(to_millis(start, tz), to_millis(end, tz), name)


def normalize_holidays(holidays: Optional[Iterable[Any]], tz: tzinfo = timezone.utc) -> List[HolidayInterval]:
    """Sort holiday intervals by start and merge the overlapping or touching ones

    Idempotent: normalizing an already normalized list returns an equal list.
    """
    if not holidays:
        return []
    intervals = sorted((_coerce_interval(h, tz) for h in holidays), key=lambda h: (h.start, h.end))
    merged: List[HolidayInterval] = []
    for holiday in intervals:
        if merged and holiday.start <= merged[-1].end:
            last = merged[-1]
            if holiday.end > last.end:
                merged[-1] = HolidayInterval(last.start, holiday.end, last.name)
        else:
            merged.append(holiday)
    return merged


def split_session(start: Union[int, float], end: Union[int, float],
                  holidays: List[HolidayInterval]) -> List[TimePeriod]:
    """Carve normalized holidays out of the session [start, end)

    A holiday covering the whole session yields no period at all.
    """
    periods: List[TimePeriod] = []
    cursor = start
    for holiday in holidays:
        if holiday.end <= cursor:
            continue
        if holiday.start >= end:
            break
        if holiday.start > cursor:
            periods.append(TimePeriod(cursor, holiday.start))
        cursor = max(cursor, holiday.end)
        if cursor >= end:
            break
    if cursor < end:
        periods.append(TimePeriod(cursor, end))
    return periods


async def fetch_holidays(
    source: HolidaySource,
    start: int,
    end: int,
    tz: tzinfo,
    timeout: Optional[float] = None,
) -> List[HolidayInterval]:
    """Query a holiday source for [start, end] and normalize the result

    The source may be a plain callable, a coroutine function, or an object
    exposing ``fetch(start, end)``.

    Raises:
        ResolutionError: If the source fails or does not answer within ``timeout`` seconds
    """
    fetch = getattr(source, "fetch", source)
    try:
        result = fetch(start, end)
        if inspect.isawaitable(result):
            if timeout is not None:
                result = await asyncio.wait_for(result, timeout)
            else:
                result = await result
        return normalize_holidays(result, tz)
    except asyncio.TimeoutError as e:
        raise ResolutionError(f"Holiday source timed out after {timeout}s for [{start}, {end}]") from e
    except ResolutionError:
        raise
    except Exception as e:
        raise ResolutionError(f"Holiday source failed for [{start}, {end}]: {e}") from e


async def resolve_time_info(
    config: CalendarConfig,
    holiday_source: HolidaySource,
    day: date,
    direction: Optional[int],
    tz: tzinfo,
    max_lookahead_days: int,
    fetch_timeout: Optional[float] = None,
) -> TimeInfo:
    """Find the nearest trade date starting at ``day`` (inclusive)

    Args:
        config: Calendar schedule
        holiday_source: Source of closed intervals
        day: First candidate date
        direction: Negative searches backward, anything else forward
        tz: Calendar timezone
        max_lookahead_days: Number of candidate days examined before giving up
        fetch_timeout: Seconds to wait for an async holiday source

    Returns:
        TimeInfo in calendar coordinates

    Raises:
        ResolutionError: Holiday source failure
        NoTradingDayError: No trade date within ``max_lookahead_days``
    """
    step = timedelta(days=-1 if direction is not None and direction < 0 else 1)
    candidate = day
    for _ in range(max_lookahead_days):
        if candidate.weekday() < 5:
            session_start = point_to_timestamp(candidate, config.start, tz)
            session_end = point_to_timestamp(candidate, config.end, tz)
            holidays = await fetch_holidays(holiday_source, session_start, session_end, tz, fetch_timeout)
            periods = split_session(session_start, session_end, holidays)
            if periods:
                return TimeInfo(
                    trade_date=date_to_int(candidate),
                    time_periods=periods,
                    day_start=point_to_timestamp(candidate, DAY_START, tz),
                    day_end=point_to_timestamp(candidate, DAY_END, tz),
                )
            logger.debug(f"{candidate} is fully closed, skipping")
        candidate = candidate + step
    raise NoTradingDayError(day, -1 if step.days < 0 else 1, max_lookahead_days)
