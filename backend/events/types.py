"""Event type definitions for generation progress and run lifecycle.

Progress events are a closed union discriminated on ``type``: one model
per state of the Game Coder loop, each carrying only the fields that
state produces. Run events wrap progress events for delivery over the
event bus.
"""

import time
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from validation.error_parser import GodotDiagnostic


class ProgressEventType(StrEnum):
    """States of the generate -> extract -> write -> validate loop, in order."""

    GENERATING = "generating"
    EXTRACTING = "extracting"
    WRITING = "writing"
    VALIDATING = "validating"
    RETRYING = "retrying"
    COMPLETE = "complete"
    ERROR = "error"


class _ProgressEventBase(BaseModel):
    attempt: int
    max_retries: int
    message: str
    timestamp: float = Field(default_factory=time.time)


class GeneratingEvent(_ProgressEventBase):
    """A model call is about to be made."""

    type: Literal[ProgressEventType.GENERATING] = ProgressEventType.GENERATING


class ExtractingEvent(_ProgressEventBase):
    """The model replied; files are being parsed out of the text."""

    type: Literal[ProgressEventType.EXTRACTING] = ProgressEventType.EXTRACTING


class WritingEvent(_ProgressEventBase):
    """Extracted files are being written to the project."""

    type: Literal[ProgressEventType.WRITING] = ProgressEventType.WRITING
    files: list[str] = Field(default_factory=list)


class ValidatingEvent(_ProgressEventBase):
    """The validator is checking the project."""

    type: Literal[ProgressEventType.VALIDATING] = ProgressEventType.VALIDATING


class RetryingEvent(_ProgressEventBase):
    """The attempt failed and another one follows.

    Attributes:
        reason: The failure recorded for the attempt
        diagnostics: Parsed validator diagnostics (empty for non-validation failures)
    """

    type: Literal[ProgressEventType.RETRYING] = ProgressEventType.RETRYING
    reason: str
    diagnostics: list[GodotDiagnostic] = Field(default_factory=list)


class CompleteEvent(_ProgressEventBase):
    """Validation passed; the run is finished."""

    type: Literal[ProgressEventType.COMPLETE] = ProgressEventType.COMPLETE
    files: list[str] = Field(default_factory=list)


class ErrorEvent(_ProgressEventBase):
    """The attempt budget is exhausted; the run is finished."""

    type: Literal[ProgressEventType.ERROR] = ProgressEventType.ERROR
    files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


ProgressEvent = Annotated[
    GeneratingEvent
    | ExtractingEvent
    | WritingEvent
    | ValidatingEvent
    | RetryingEvent
    | CompleteEvent
    | ErrorEvent,
    Field(discriminator="type"),
]

TERMINAL_PROGRESS_TYPES = frozenset({ProgressEventType.COMPLETE, ProgressEventType.ERROR})


class RunEventType(StrEnum):
    """Lifecycle of a background generation run."""

    RUN_STARTED = "run_started"
    PROGRESS = "progress"
    RUN_COMPLETE = "run_complete"
    RUN_FAILED = "run_failed"
    RUN_CLOSED = "run_closed"


class RunEvent(BaseModel):
    """An event delivered to subscribers of a run.

    Payload by type:

    RUN_STARTED:
        - prompt: str - The task prompt
        - project_path: str - Target project directory
        - max_retries: int - Attempt budget

    PROGRESS:
        ``progress`` holds the ProgressEvent; ``data`` is empty.

    RUN_COMPLETE:
        - success: bool - Whether validation passed
        - attempts: int - Model calls made
        - files: list[str] - Paths from the last extraction
        - errors: list[str] - One entry per failed attempt

    RUN_FAILED:
        - error: str - Exception message
        - error_type: str - Exception class name

    RUN_CLOSED:
        Sentinel put on subscriber queues when a run is closed.
    """

    type: RunEventType
    run_id: str
    timestamp: float = Field(default_factory=time.time)
    agent: str | None = None
    progress: ProgressEvent | None = None
    data: dict[str, Any] = Field(default_factory=dict)
