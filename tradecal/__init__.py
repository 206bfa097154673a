"""
tradecal - trading-session calendars with virtual time and a lifecycle scheduler
"""
from tradecal.core.enums import CalendarEvent, Strategy
from tradecal.core.exceptions import (
    ConfigurationError,
    NamingConflictError,
    NoTradingDayError,
    ResolutionError,
    TradeCalendarError,
    UnknownCalendarError,
)
from tradecal.managers.calendar_manager import CalendarManager, EventBus, EventRecord
from tradecal.managers.time_manager import (
    CalendarConfig,
    HolidayFileSource,
    SimClock,
    StaticHolidaySource,
    SystemClock,
    TimeInfo,
    TimePeriod,
    TradeCalendar,
    create_calendar,
)

__version__ = "1.0.0"

__all__ = [
    "CalendarEvent",
    "Strategy",
    "ConfigurationError",
    "NamingConflictError",
    "NoTradingDayError",
    "ResolutionError",
    "TradeCalendarError",
    "UnknownCalendarError",
    "CalendarManager",
    "EventBus",
    "EventRecord",
    "CalendarConfig",
    "HolidayFileSource",
    "SimClock",
    "StaticHolidaySource",
    "SystemClock",
    "TimeInfo",
    "TimePeriod",
    "TradeCalendar",
    "create_calendar",
]
