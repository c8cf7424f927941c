"""Async event bus for per-run pub/sub.

This module provides an EventBus that delivers RunEvents from background
generation runs to WebSocket consumers.

The bus supports:
- Multiple subscribers per run
- Buffering of events published before anyone subscribes
- History for replay to late or reconnecting subscribers
- Closing a run, which signals every subscriber with a sentinel
"""

import asyncio
import threading
from collections import defaultdict

import structlog

from events.types import RunEvent, RunEventType

logger = structlog.get_logger()


class EventBus:
    """Async pub/sub event bus keyed by run id.

    Event Buffering:
        Events published before any subscriber connects are buffered and
        delivered to the first subscriber, so a client that connects just
        after starting a run still sees its first events.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("run_123")
        >>> await bus.publish(RunEvent(type=RunEventType.RUN_STARTED, run_id="run_123"))
        >>> event = await queue.get()
        >>> bus.unsubscribe("run_123", queue)
        >>> await bus.close_run("run_123")
    """

    # Maximum number of events to retain per run for replay on reconnect.
    MAX_HISTORY_PER_RUN = 2000

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[RunEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[RunEvent]] = defaultdict(list)
        self._event_history: dict[str, list[RunEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def subscribe(self, run_id: str) -> asyncio.Queue[RunEvent]:
        """Subscribe to events for a run.

        Buffered events for the run (published before any subscriber
        connected) are delivered to the new queue immediately.

        Args:
            run_id: The run to subscribe to

        Returns:
            An asyncio.Queue receiving RunEvent objects
        """
        queue: asyncio.Queue[RunEvent] = asyncio.Queue()
        buffered_events: list[RunEvent] = []

        with self._lock:
            self._subscribers[run_id].append(queue)
            subscriber_count = len(self._subscribers[run_id])
            if run_id in self._event_buffer:
                buffered_events = self._event_buffer.pop(run_id)

        for event in buffered_events:
            queue.put_nowait(event)

        logger.info(
            "subscriber_added",
            run_id=run_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[RunEvent]) -> None:
        """Remove a subscriber queue. Unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(run_id)
            if not queues or queue not in queues:
                logger.warning("unsubscribe_queue_not_found", run_id=run_id)
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[run_id]

        logger.info("subscriber_removed", run_id=run_id)

    async def publish(self, event: RunEvent) -> None:
        """Publish an event to every subscriber of its run.

        With no subscribers the event is buffered. Every event except the
        close sentinel is also kept in the run's history.

        Args:
            event: The RunEvent to publish
        """
        with self._lock:
            if event.type != RunEventType.RUN_CLOSED:
                history = self._event_history[event.run_id]
                history.append(event)
                if len(history) > self.MAX_HISTORY_PER_RUN:
                    self._event_history[event.run_id] = history[-self.MAX_HISTORY_PER_RUN:]

            subscribers = list(self._subscribers.get(event.run_id, []))
            if not subscribers:
                self._event_buffer[event.run_id].append(event)
                logger.debug(
                    "event_buffered",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )
                return

        for queue in subscribers:
            # Queues are unbounded; put_nowait never blocks the publisher.
            queue.put_nowait(event)

        logger.debug(
            "event_published",
            run_id=event.run_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
        )

    def get_event_history(self, run_id: str) -> list[RunEvent]:
        """Return all stored events for a run in publish order."""
        with self._lock:
            return list(self._event_history.get(run_id, []))

    async def close_run(self, run_id: str) -> None:
        """Signal subscribers that a run is over and drop its subscriptions.

        Each subscriber queue receives a RUN_CLOSED sentinel. Buffered
        events are discarded; history is kept for replay.

        Args:
            run_id: The run to close
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(run_id, [])
            buffered = self._event_buffer.pop(run_id, [])

        for queue in queues_to_signal:
            queue.put_nowait(RunEvent(type=RunEventType.RUN_CLOSED, run_id=run_id))

        logger.info(
            "run_closed",
            run_id=run_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=len(buffered),
        )

    def get_subscriber_count(self, run_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(run_id, []))

    def clear_event_history(self, run_id: str) -> None:
        with self._lock:
            self._event_history.pop(run_id, None)


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance, creating it on first call."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance (used by tests)."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
