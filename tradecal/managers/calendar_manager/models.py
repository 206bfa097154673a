"""
Calendar Manager Data Models
Per-calendar scheduling state and armed timers
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional, Union

from tradecal.managers.time_manager.calendar import TradeCalendar
from tradecal.managers.time_manager.models import TimePeriod


# Timer slots; equal targets fire in this order
PERIOD_START = "period_start"
MARKET_OPEN = "market_open"
PERIOD_END = "period_end"
MARKET_CLOSE = "market_close"
AFTER_MARKET_CLOSE = "after_market_close"
RETRY = "retry"

SLOT_PRIORITY = {
    PERIOD_START: 0,
    MARKET_OPEN: 1,
    PERIOD_END: 2,
    MARKET_CLOSE: 3,
    AFTER_MARKET_CLOSE: 4,
    RETRY: 5,
}


@dataclass
class Timer:
    """Action armed for a real-coordinate instant"""
    slot: str
    target: Union[int, float]          # real epoch ms
    action: Callable[[], Any]
    self_correcting: bool = False      # re-check the clock after waking up

    @property
    def sort_key(self):
        return (self.target, SLOT_PRIORITY.get(self.slot, len(SLOT_PRIORITY)))


@dataclass
class ManagerEntry:
    """Scheduling state of one running calendar

    Created by ``CalendarManager.start`` and discarded by ``stop``.
    """
    name: str
    calendar: TradeCalendar
    trade_date: Optional[int] = None
    pre_trade_date: Optional[int] = None
    next_trade_date: Optional[int] = None
    day_start: Optional[Union[int, float]] = None
    day_end: Optional[Union[int, float]] = None
    system_periods: Deque[TimePeriod] = field(default_factory=deque)
    system_period: Optional[TimePeriod] = None
    timers: Dict[str, Timer] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None
    stopped: bool = False

    def next_timer(self) -> Optional[Timer]:
        """Earliest armed timer"""
        if not self.timers:
            return None
        return min(self.timers.values(), key=lambda t: t.sort_key)
