"""
Time Manager
Trading calendars: session resolution, holidays and virtual time
"""
from tradecal.managers.time_manager.calendar import TradeCalendar, create_calendar
from tradecal.managers.time_manager.clock import Clock, SimClock, SystemClock
from tradecal.managers.time_manager.holidays import (
    HolidayFileSource,
    StaticHolidaySource,
    empty_holiday_source,
    holiday_from_times,
)
from tradecal.managers.time_manager.models import (
    CalendarConfig,
    ConfigPeriod,
    HolidayInterval,
    TimeInfo,
    TimePeriod,
    TimePoint,
    VirtualTimeConfig,
    load_calendar_config,
)
from tradecal.managers.time_manager.resolver import normalize_holidays, resolve_time_info
from tradecal.managers.time_manager.virtual import IdentityTransform, VirtualTimeTransform

__all__ = [
    "TradeCalendar",
    "create_calendar",
    "Clock",
    "SimClock",
    "SystemClock",
    "HolidayFileSource",
    "StaticHolidaySource",
    "empty_holiday_source",
    "holiday_from_times",
    "CalendarConfig",
    "ConfigPeriod",
    "HolidayInterval",
    "TimeInfo",
    "TimePeriod",
    "TimePoint",
    "VirtualTimeConfig",
    "load_calendar_config",
    "normalize_holidays",
    "resolve_time_info",
    "IdentityTransform",
    "VirtualTimeTransform",
]
