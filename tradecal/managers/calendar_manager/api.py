"""
Calendar Manager - keeps named trading calendars advancing in real time

Each started calendar gets a ManagerEntry holding its trade dates and
session periods, plus one scheduler task. The task repeatedly waits for the
earliest armed timer and runs its action; actions re-arm the next timers,
so a calendar cycles through

    trade-date-change -> system-period-change -> market-open -> market-close
    -> after-market-close -> (next trade date) ...

without any recursion. A failed scheduled resolution is retried every
``retry_delay_seconds`` until it succeeds.

Usage:
    manager = CalendarManager()
    manager.on(CalendarEvent.MARKET_OPEN, lambda cal, trade_date: ...)
    await manager.start("cn", calendar)
    ...
    await manager.aclose()
"""
import asyncio
import functools
import inspect
from collections import deque
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from tradecal.config import settings
from tradecal.core.enums import CalendarEvent
from tradecal.core.exceptions import ConfigurationError, NamingConflictError, UnknownCalendarError
from tradecal.logger import logger
from tradecal.managers.calendar_manager.events import EventBus, EventName, Handler
from tradecal.managers.calendar_manager.models import (
    AFTER_MARKET_CLOSE,
    MARKET_CLOSE,
    MARKET_OPEN,
    PERIOD_END,
    PERIOD_START,
    RETRY,
    ManagerEntry,
    Timer,
)
from tradecal.managers.time_manager.calendar import TradeCalendar
from tradecal.managers.time_manager.models import TimePeriod


def _shift_trade_date(trade_date: int, days: int) -> date:
    return datetime.strptime(str(trade_date), "%Y%m%d").date() + timedelta(days=days)


class CalendarManager:
    """Scheduling engine for one or more trading calendars

    Args:
        retry_delay_seconds: Delay before re-running a failed scheduled
            resolution (default from settings, 10s)
        events: Event bus to publish on (a private one is created if omitted)
    """

    def __init__(self, retry_delay_seconds: Optional[float] = None, events: Optional[EventBus] = None):
        if retry_delay_seconds is None:
            retry_delay_seconds = settings.SCHEDULER.retry_delay_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.events = events or EventBus()
        self._calendars: Dict[str, TradeCalendar] = {}
        self._entries: Dict[str, ManagerEntry] = {}

    # ==================== EVENTS ====================

    def on(self, event: EventName, handler: Handler) -> Handler:
        return self.events.on(event, handler)

    def once(self, event: EventName, handler: Handler) -> Handler:
        return self.events.once(event, handler)

    def off(self, event: EventName, handler: Handler) -> None:
        self.events.off(event, handler)

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        return self.events.subscribe(maxsize)

    def _emit(self, event: CalendarEvent, *args) -> None:
        self.events.emit(event, *args)

    # ==================== REGISTRY ====================

    @property
    def calendars(self) -> Dict[str, TradeCalendar]:
        """Registered calendars by name (running or not)"""
        return dict(self._calendars)

    @property
    def names(self) -> List[str]:
        return list(self._calendars)

    def get_entry(self, name: str) -> Optional[ManagerEntry]:
        """Scheduling state of a running calendar, None when not running"""
        return self._entries.get(name)

    def is_running(self, name: str) -> bool:
        return name in self._entries

    # ==================== LIFECYCLE ====================

    async def start(
        self,
        name_or_calendar: Union[str, TradeCalendar],
        calendar: Optional[TradeCalendar] = None,
    ) -> ManagerEntry:
        """Start (or restart) scheduling a calendar

        Args:
            name_or_calendar: Calendar name, or a calendar whose config carries a name
            calendar: Calendar to bind to the name (omit to restart a registered one)

        Returns:
            The new ManagerEntry

        Raises:
            NamingConflictError: Name already bound to a different calendar
            UnknownCalendarError: Name never registered and no calendar given
            ResolutionError: The initial resolution failed
        """
        if isinstance(name_or_calendar, str):
            name = name_or_calendar
        else:
            calendar = name_or_calendar
            name = calendar.name
            if not name:
                raise ConfigurationError("Calendar has no name; pass one explicitly")

        registered = self._calendars.get(name)
        if calendar is not None:
            if registered is not None and registered is not calendar:
                raise NamingConflictError(name)
            self._calendars[name] = calendar
        elif registered is None:
            raise UnknownCalendarError(name)
        else:
            calendar = registered

        # Restart: drop the previous run first
        self.stop(name)

        entry = ManagerEntry(name=name, calendar=calendar)
        self._entries[name] = entry
        logger.info(f"[{name}] starting at {calendar.current_time()}")
        try:
            await self._set_time_info(entry, 0, retry=False)
        except Exception:
            self._discard(entry)
            raise

        if not entry.stopped:
            entry.task = asyncio.create_task(self._run(entry), name=f"tradecal-{name}")
        return entry

    def stop(self, name: str) -> None:
        """Stop scheduling a calendar; no-op when it is not running"""
        entry = self._entries.get(name)
        if entry is None:
            return
        logger.debug(f"[{name}] stopped at => {entry.calendar.current_time()}")
        self._discard(entry)

        task = entry.task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    def stop_all(self) -> None:
        for name in list(self._entries):
            self.stop(name)

    async def aclose(self) -> None:
        """Stop every calendar and wait for the scheduler tasks to finish"""
        tasks = [e.task for e in self._entries.values() if e.task is not None]
        self.stop_all()
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.events.drain()

    async def __aenter__(self) -> "CalendarManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _discard(self, entry: ManagerEntry) -> None:
        entry.stopped = True
        entry.timers.clear()
        if self._entries.get(entry.name) is entry:
            del self._entries[entry.name]

    # ==================== SCHEDULER LOOP ====================

    async def _run(self, entry: ManagerEntry) -> None:
        calendar = entry.calendar
        while not entry.stopped:
            timer = entry.next_timer()
            if timer is None:
                logger.warning(f"[{entry.name}] no timers armed, scheduler idle")
                return

            if timer.self_correcting:
                await calendar.sleep_until_real(timer.target)
            else:
                await calendar.clock.sleep(timer.target - calendar.clock.now_ms())

            if entry.stopped:
                return
            if entry.timers.get(timer.slot) is not timer:
                continue
            del entry.timers[timer.slot]

            try:
                result = timer.action()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"[{entry.name}] {timer.slot} action failed")

    def _arm(
        self,
        entry: ManagerEntry,
        slot: str,
        target: Union[int, float],
        action: Callable[[], Any],
        self_correcting: bool = False,
    ) -> Optional[Timer]:
        """Arm (or replace) the timer in ``slot`` for a real timestamp"""
        if entry.stopped:
            logger.debug(f"[{entry.name}] calendar stopped, ignoring {slot} timer")
            return None
        timer = Timer(slot=slot, target=target, action=action, self_correcting=self_correcting)
        entry.timers[slot] = timer
        return timer

    @staticmethod
    def _cancel(entry: ManagerEntry, slot: str) -> None:
        entry.timers.pop(slot, None)

    # ==================== RESOLUTION PASS ====================

    async def _set_time_info(self, entry: ManagerEntry, anchor: Any, retry: bool = False) -> None:
        """Resolve the current trade date and arm the day's timers

        Args:
            entry: Calendar state
            anchor: Date to resolve from (0 = calendar today)
            retry: Re-arm itself after ``retry_delay_seconds`` on failure
                instead of raising
        """
        name = entry.name
        calendar = entry.calendar
        now = calendar.real_now()
        logger.debug(
            f"[{name}] start set trade time({calendar.current_time()}) => {entry.trade_date} {anchor}"
        )
        try:
            info = await calendar.real_time_info(anchor)
            after_market_end = calendar.real_after_market_end(info.trade_date)
            # Catch up when the resolved day is already over
            while now > after_market_end:
                info = await calendar.real_time_info(_shift_trade_date(info.trade_date, 1))
                after_market_end = calendar.real_after_market_end(info.trade_date)
            if entry.stopped:
                return

            logger.debug(
                f"[{name}] current trade time: {calendar.str_time_info(info)} "
                f"{info.market_open} {info.market_close} {after_market_end} {now}"
            )

            if entry.trade_date != info.trade_date:
                if entry.trade_date is not None:
                    pre_trade_date = entry.trade_date
                else:
                    pre_info = await calendar.real_time_info(_shift_trade_date(info.trade_date, -1), -1)
                    pre_trade_date = pre_info.trade_date
                    logger.info(f"[{name}] previous trade time: {calendar.str_time_info(pre_info)}")
                next_info = await calendar.real_time_info(_shift_trade_date(info.trade_date, 1), 1)
                logger.info(f"[{name}] next trade time: {calendar.str_time_info(next_info)}")
                if entry.stopped:
                    return

                entry.pre_trade_date = pre_trade_date
                entry.next_trade_date = next_info.trade_date
                entry.trade_date = info.trade_date
                entry.day_start = info.day_start
                entry.day_end = info.day_end
                logger.info(
                    f"[{name}] trade date change => {info.trade_date} "
                    f"{entry.pre_trade_date} {entry.next_trade_date}"
                )
                self._emit(
                    CalendarEvent.TRADE_DATE_CHANGE,
                    calendar, info.trade_date, entry.pre_trade_date, entry.next_trade_date,
                )

            entry.system_periods = deque(info.time_periods)
            self._change_system_period(entry)

            if info.time_periods:
                if now < info.market_open:
                    self._arm(entry, MARKET_OPEN, info.market_open, functools.partial(self._market_open, entry))
                self._arm(entry, MARKET_CLOSE, info.market_close, functools.partial(self._market_close, entry))

            self._arm(
                entry, AFTER_MARKET_CLOSE, after_market_end, functools.partial(self._after_market_close, entry)
            )
        except Exception as e:
            logger.error(f"[{name}] set time error => retry={retry}: {e!r}")
            if not retry:
                raise
            self._cancel(entry, AFTER_MARKET_CLOSE)
            retry_at = calendar.real_now() + self.retry_delay_seconds * 1000
            self._arm(entry, RETRY, retry_at, functools.partial(self._set_time_info, entry, anchor, True))

    def _change_system_period(self, entry: ManagerEntry) -> None:
        """Move to the next pending session period and arm its boundaries"""
        if not entry.system_periods:
            return
        period = entry.system_periods.popleft()
        entry.system_period = period
        calendar = entry.calendar
        self._emit(CalendarEvent.SYSTEM_PERIOD_CHANGE, calendar, period, list(entry.system_periods))
        logger.debug(f"[{entry.name}] system-period-change => {period}")

        self._arm(
            entry, PERIOD_START, period.start,
            functools.partial(self._period_start, entry, period), self_correcting=True,
        )
        self._arm(
            entry, PERIOD_END, period.end,
            functools.partial(self._period_end, entry, period), self_correcting=True,
        )

    # ==================== TIMER ACTIONS ====================

    def _period_start(self, entry: ManagerEntry, period: TimePeriod) -> None:
        logger.debug(f"[{entry.name}] system-time-start => {period}")
        self._emit(CalendarEvent.SYSTEM_TIME_START, entry.calendar, period)

    def _period_end(self, entry: ManagerEntry, period: TimePeriod) -> None:
        logger.debug(f"[{entry.name}] system-time-end => {period}")
        self._emit(CalendarEvent.SYSTEM_TIME_END, entry.calendar, period)
        self._change_system_period(entry)

    def _market_open(self, entry: ManagerEntry) -> None:
        logger.info(f"[{entry.name}] market open => {entry.trade_date}")
        self._emit(CalendarEvent.MARKET_OPEN, entry.calendar, entry.trade_date)

    def _market_close(self, entry: ManagerEntry) -> None:
        logger.info(f"[{entry.name}] market close => {entry.trade_date}")
        self._emit(CalendarEvent.MARKET_CLOSE, entry.calendar, entry.trade_date)

    async def _after_market_close(self, entry: ManagerEntry) -> None:
        logger.info(f"[{entry.name}] after market close => {entry.trade_date}")
        self._emit(CalendarEvent.AFTER_MARKET_CLOSE, entry.calendar, entry.trade_date)
        await self._set_time_info(entry, _shift_trade_date(entry.trade_date, 1), retry=True)
