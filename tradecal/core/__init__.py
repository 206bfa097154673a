"""
Core building blocks shared across managers
"""
from tradecal.core.enums import Strategy, CalendarEvent
from tradecal.core.exceptions import (
    TradeCalendarError,
    ConfigurationError,
    NamingConflictError,
    UnknownCalendarError,
    ResolutionError,
    NoTradingDayError,
)

__all__ = [
    "Strategy",
    "CalendarEvent",
    "TradeCalendarError",
    "ConfigurationError",
    "NamingConflictError",
    "UnknownCalendarError",
    "ResolutionError",
    "NoTradingDayError",
]
