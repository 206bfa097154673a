"""
Event bus for calendar lifecycle notifications

Consumers either register callbacks (sync or async) or subscribe a queue
and consume ``EventRecord`` items at their own pace.
"""
import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Set, Tuple, Union

from tradecal.core.enums import CalendarEvent
from tradecal.logger import logger


EventName = Union[CalendarEvent, str]
Handler = Callable[..., Any]


def _key(event: EventName) -> str:
    return event.value if isinstance(event, CalendarEvent) else str(event)


@dataclass(frozen=True)
class EventRecord:
    """Single emitted event as delivered to queue subscribers"""
    event: EventName
    args: Tuple[Any, ...]


class EventBus:
    """Minimal publish/subscribe hub

    Handler exceptions are logged and never reach the emitter.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self._queues: List[asyncio.Queue] = []
        self._pending: Set[asyncio.Task] = set()

    def on(self, event: EventName, handler: Handler) -> Handler:
        self._handlers.setdefault(_key(event), []).append(handler)
        return handler

    def once(self, event: EventName, handler: Handler) -> Handler:
        """Register a handler that is removed after its first call"""
        def _once(*args):
            self.off(event, _once)
            return handler(*args)

        _once.__wrapped__ = handler
        return self.on(event, _once)

    def off(self, event: EventName, handler: Handler) -> None:
        handlers = self._handlers.get(_key(event))
        if not handlers:
            return
        handlers[:] = [
            h for h in handlers
            if h is not handler and getattr(h, "__wrapped__", None) is not handler
        ]

    def listeners(self, event: EventName) -> List[Handler]:
        return list(self._handlers.get(_key(event), []))

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        """Queue receiving an EventRecord for every emitted event"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def emit(self, event: EventName, *args) -> None:
        key = _key(event)
        for handler in list(self._handlers.get(key, [])):
            try:
                result = handler(*args)
            except Exception:
                logger.exception(f"Handler {getattr(handler, '__name__', handler)!r} failed on '{key}'")
                continue
            if inspect.isawaitable(result):
                self._track(key, handler, result)

        if self._queues:
            record = EventRecord(event, args)
            for queue in list(self._queues):
                try:
                    queue.put_nowait(record)
                except asyncio.QueueFull:
                    logger.warning(f"Subscriber queue full, dropping '{key}' event")

    def _track(self, key: str, handler: Handler, awaitable) -> None:
        async def _run():
            try:
                await awaitable
            except Exception:
                logger.exception(f"Async handler {getattr(handler, '__name__', handler)!r} failed on '{key}'")

        task = asyncio.ensure_future(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for async handlers that are still running"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
