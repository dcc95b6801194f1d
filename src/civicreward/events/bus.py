"""
Notification channel for reward and payout events.

Provides in-memory and async event buses with glob-style pattern matching,
so UI listeners and auditors can follow rewards without reaching into the
observer or router.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


# Notification types
EVENT_REWARD_TRIGGERED = "reward.triggered"
EVENT_REWARD_REJECTED = "reward.rejected"
EVENT_REWARD_FAILED = "reward.failed"
EVENT_PAYOUT_INITIATED = "payout.initiated"
EVENT_PAYOUT_COMPLETED = "payout.completed"
EVENT_PAYOUT_FAILED = "payout.failed"

ALL_EVENT_TYPES = [
    EVENT_REWARD_TRIGGERED,
    EVENT_REWARD_REJECTED,
    EVENT_REWARD_FAILED,
    EVENT_PAYOUT_INITIATED,
    EVENT_PAYOUT_COMPLETED,
    EVENT_PAYOUT_FAILED,
]


@dataclass
class Event:
    """One notification. ``source`` names the emitting component."""

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: f"evt-{time.monotonic_ns()}")


EventHandler = Callable[[Event], Any]


class EventBus(ABC):
    """
    Fan-out of reward and payout notifications to listeners.

    Subscriptions are ``(pattern, handler)`` pairs matched with fnmatch
    against ``Event.event_type`` in subscription order.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._pending: set[asyncio.Future[Any]] = set()

    @abstractmethod
    def emit(self, event: Event) -> None:
        """Hand ``event`` to every matching listener. Never raises for a listener."""

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Listen for events whose type matches ``pattern``, e.g. ``payout.*``."""
        self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        """Drop ``handler`` from every pattern it was subscribed under."""
        self._subscriptions = [(p, h) for p, h in self._subscriptions if h is not handler]

    def _dispatch(self, event: Event) -> None:
        for pattern, handler in list(self._subscriptions):
            if not fnmatch.fnmatch(event.event_type, pattern):
                continue
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_done(event))
            except Exception:
                logger.exception("Listener %r failed on %s", handler, event.event_type)

    def _listener_done(self, event: Event) -> Callable[[asyncio.Future[Any]], None]:
        def done(task: asyncio.Future[Any]) -> None:
            self._pending.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Async listener failed on %s",
                    event.event_type,
                    exc_info=task.exception(),
                )

        return done


class InMemoryEventBus(EventBus):
    """Delivers inline, inside the emitting call. At most once per listener."""

    def emit(self, event: Event) -> None:
        self._dispatch(event)


class AsyncEventBus(EventBus):
    """
    Queues events and delivers them from a background task.

    Emitting never blocks the observer or router. There is no replay:
    an event that arrives while the queue is full is counted in
    ``dropped`` and discarded.
    """

    def __init__(self, maxsize: int = 10000) -> None:
        super().__init__()
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._consumer_task: asyncio.Task[None] | None = None
        self.dropped = 0

    def emit(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Notification queue full, dropping %s", event.event_type)

    async def start(self) -> None:
        if self._consumer_task is None:
            self._consumer_task = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        """Stop the consumer, then deliver whatever is still queued."""
        task, self._consumer_task = self._consumer_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            self._dispatch(self._queue.get_nowait())

    async def _consume(self) -> None:
        while True:
            self._dispatch(await self._queue.get())
