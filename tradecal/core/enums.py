"""
Core enumerations used throughout the package.

These enums are shared by the calendar, the virtual-time transform and the
calendar manager, and should be imported from here.
"""

from enum import Enum


class Strategy(str, Enum):
    """
    Virtual time anchoring strategy.

    Virtual time is computed as
    ``(real - real_base) / ratio + virtual_base`` where ``ratio`` is the
    real duration of one virtual day divided by 24 hours. The strategy only
    decides where the two bases come from.

    Values:
        SYSTEM: Use the system clock, ignore all other virtual settings
        STANDARD: Virtual and real time coincide at the ``standard`` instant
        START: Virtual time equals ``standard`` at calendar start-up
        CUSTOM: Real base is ``custom``, virtual base is ``standard``
    """
    SYSTEM = "SYSTEM"
    STANDARD = "STANDARD"
    START = "START"
    CUSTOM = "CUSTOM"


class CalendarEvent(str, Enum):
    """
    Lifecycle events emitted by the calendar manager.

    Values:
        TRADE_DATE_CHANGE: (calendar, trade_date, pre_trade_date, next_trade_date)
        SYSTEM_PERIOD_CHANGE: (calendar, current_period, remaining_periods)
        SYSTEM_TIME_START: (calendar, period)
        SYSTEM_TIME_END: (calendar, period)
        MARKET_OPEN: (calendar, trade_date)
        MARKET_CLOSE: (calendar, trade_date)
        AFTER_MARKET_CLOSE: (calendar, trade_date)
    """
    TRADE_DATE_CHANGE = "trade-date-change"
    SYSTEM_PERIOD_CHANGE = "system-period-change"
    SYSTEM_TIME_START = "system-time-start"
    SYSTEM_TIME_END = "system-time-end"
    MARKET_OPEN = "market-open"
    MARKET_CLOSE = "market-close"
    AFTER_MARKET_CLOSE = "after-market-close"

    def __str__(self) -> str:
        return self.value
