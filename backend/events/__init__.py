"""Event system for generation progress.

Key Components:
    - ProgressEventType / ProgressEvent: closed union of Game Coder loop states
    - RunEvent / RunEventType: envelope delivered to run subscribers
    - EventBus: async pub/sub keyed by run id

Usage:
    >>> from events import EventBus, RunEvent, RunEventType
    >>> bus = EventBus()
    >>> queue = bus.subscribe("run_123")
    >>> await bus.publish(RunEvent(type=RunEventType.RUN_STARTED, run_id="run_123"))
    >>> event = await queue.get()

Event Flow:
    1. GameCoderAgent reports each loop state through its on_progress callback
    2. RunManager wraps it in a RunEvent and publishes it on the bus
    3. The WebSocket handler forwards bus events to the client
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    CompleteEvent,
    ErrorEvent,
    ExtractingEvent,
    GeneratingEvent,
    ProgressEvent,
    ProgressEventType,
    RetryingEvent,
    RunEvent,
    RunEventType,
    ValidatingEvent,
    WritingEvent,
)

__all__ = [
    # Event types
    "ProgressEventType",
    "ProgressEvent",
    "GeneratingEvent",
    "ExtractingEvent",
    "WritingEvent",
    "ValidatingEvent",
    "RetryingEvent",
    "CompleteEvent",
    "ErrorEvent",
    "RunEventType",
    "RunEvent",
    # Event bus
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
