"""Game Coder agent: the generate -> extract -> write -> validate loop.

Each attempt asks the model for Godot files, extracts fenced files from
the reply, writes them into the project and runs the Godot validator.
A failed attempt feeds a corrective prompt into the next one until the
validator passes or the attempt budget runs out.

Recoverable failures (empty reply, nothing extracted, validation errors)
are recorded in ``GenerationResult.errors``. Transport errors, a missing
Godot binary and unsafe write paths propagate to the caller.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Protocol

import structlog

from agents.extractor import GeneratedFile, extract_files
from agents.prompts import (
    GAME_CODER_SYSTEM_PROMPT,
    build_extraction_retry_prompt,
    build_validation_retry_prompt,
)
from agents.session_cache import AgentSessionCache
from config import settings
from events.types import (
    CompleteEvent,
    ErrorEvent,
    ExtractingEvent,
    GeneratingEvent,
    ProgressEvent,
    RetryingEvent,
    ValidatingEvent,
    WritingEvent,
)
from llm.transport import ModelRef, PromptResponse
from validation.error_parser import GodotDiagnostic, parse_godot_errors
from validation.godot_cli import ValidationOutcome
from validation.workspace import write_project_file

logger = structlog.get_logger()

ProgressCallback = Callable[[ProgressEvent], Awaitable[None] | None]
FileWriter = Callable[[str | Path, str, str], object]


class PromptTransport(Protocol):
    async def send_prompt(
        self,
        session_id: str,
        text: str,
        *,
        model: ModelRef | None = None,
        system: str | None = None,
        agent: str | None = None,
    ) -> PromptResponse: ...


class ProjectValidator(Protocol):
    async def check_only(
        self, project_path: str | Path, script_path: str | None = None
    ) -> ValidationOutcome: ...

    def is_available(self) -> bool: ...


class AttemptFailure(StrEnum):
    """Why an attempt did not produce a validated project."""

    EMPTY_RESPONSE = "empty_response"
    NO_FILES = "no_files"
    VALIDATION = "validation"


@dataclass
class AttemptOutcome:
    """Record of one failed attempt, used to build the next outbound text."""

    attempt: int
    failure: AttemptFailure
    error: str
    diagnostic_text: str = ""
    diagnostics: list[GodotDiagnostic] = field(default_factory=list)


@dataclass
class GenerationResult:
    """Final result of a generate() call.

    Attributes:
        success: True when the validator accepted the project
        attempts: Number of model calls made
        files: Files from the last extraction performed
        errors: One entry per failed attempt, in order
    """

    success: bool
    attempts: int
    files: list[GeneratedFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def file_paths(self) -> list[str]:
        return [f.path for f in self.files]


class GameCoderAgent:
    """Drives one code-generation conversation until Godot accepts the output.

    Usage:
        >>> agent = GameCoderAgent(transport, session_cache, validator)
        >>> result = await agent.generate("Create a player character", "/games/demo")
        >>> result.success, result.attempts
    """

    SESSION_KEY = "Game Coder"

    def __init__(
        self,
        transport: PromptTransport,
        session_cache: AgentSessionCache,
        validator: ProjectValidator,
        model: ModelRef | None = None,
        writer: FileWriter = write_project_file,
    ) -> None:
        self.transport = transport
        self.session_cache = session_cache
        self.validator = validator
        self.model = model
        self.writer = writer

    async def generate(
        self,
        prompt: str,
        project_path: str | Path,
        *,
        model: ModelRef | None = None,
        max_retries: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """Generate, write and validate Godot files for a task.

        Args:
            prompt: The task prompt, sent verbatim on the first attempt
            project_path: Godot project directory files are written into
            model: Model override for this call
            max_retries: Attempt budget (defaults to settings.generation_max_retries)
            on_progress: Sync or async callback receiving progress events

        Returns:
            GenerationResult; success=False once the budget is exhausted

        Raises:
            ValueError: If max_retries is less than 1
            UnsafePathError: If a generated path escapes the project
            GodotNotFoundError: If the validator cannot find Godot
        """
        if max_retries is None:
            max_retries = settings.generation_max_retries
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        model = model or self.model
        session_id = await self.session_cache.get_or_create(self.SESSION_KEY)

        errors: list[str] = []
        files: list[GeneratedFile] = []
        outbound = prompt
        last_failure: AttemptOutcome | None = None

        async def emit(event: ProgressEvent) -> None:
            if on_progress is None:
                return
            result = on_progress(event)
            if inspect.isawaitable(result):
                await result

        logger.info(
            "generation_started",
            session_id=session_id,
            project_path=str(project_path),
            max_retries=max_retries,
        )

        for attempt in range(1, max_retries + 1):
            if last_failure is not None:
                outbound = self._next_outbound(prompt, outbound, last_failure)

            await emit(
                GeneratingEvent(
                    attempt=attempt,
                    max_retries=max_retries,
                    message=f"Generating code (attempt {attempt}/{max_retries})",
                )
            )
            response = await self.transport.send_prompt(
                session_id,
                outbound,
                model=model,
                system=GAME_CODER_SYSTEM_PROMPT,
                agent=self.SESSION_KEY,
            )

            last_failure = await self._run_attempt(
                attempt, max_retries, response, project_path, files, emit
            )
            if last_failure is None:
                logger.info(
                    "generation_succeeded",
                    session_id=session_id,
                    attempts=attempt,
                    files=len(files),
                )
                return GenerationResult(
                    success=True, attempts=attempt, files=files, errors=errors
                )

            errors.append(last_failure.error)
            logger.warning(
                "generation_attempt_failed",
                attempt=attempt,
                failure=last_failure.failure.value,
                diagnostics=len(last_failure.diagnostics),
            )

            if attempt < max_retries:
                await emit(
                    RetryingEvent(
                        attempt=attempt,
                        max_retries=max_retries,
                        message=f"Attempt {attempt} failed, retrying",
                        reason=last_failure.error,
                        diagnostics=last_failure.diagnostics,
                    )
                )

        await emit(
            ErrorEvent(
                attempt=max_retries,
                max_retries=max_retries,
                message=f"Failed after {max_retries} attempts",
                files=[f.path for f in files],
                errors=list(errors),
            )
        )
        logger.error(
            "generation_exhausted",
            session_id=session_id,
            attempts=max_retries,
            errors=len(errors),
        )
        return GenerationResult(
            success=False, attempts=max_retries, files=files, errors=errors
        )

    async def _run_attempt(
        self,
        attempt: int,
        max_retries: int,
        response: PromptResponse,
        project_path: str | Path,
        files: list[GeneratedFile],
        emit: Callable[[ProgressEvent], Awaitable[None]],
    ) -> AttemptOutcome | None:
        """Extract, write and validate one reply.

        ``files`` is replaced in place with this attempt's extraction.

        Returns:
            None when validation passed, else the failure record
        """
        if not response.text:
            return AttemptOutcome(
                attempt=attempt,
                failure=AttemptFailure.EMPTY_RESPONSE,
                error=f"Attempt {attempt}: No response from AI",
            )

        await emit(
            ExtractingEvent(
                attempt=attempt,
                max_retries=max_retries,
                message="Extracting files from response",
            )
        )
        files[:] = extract_files(response.text)
        if not files:
            return AttemptOutcome(
                attempt=attempt,
                failure=AttemptFailure.NO_FILES,
                error=f"Attempt {attempt}: No files extracted",
            )

        paths = [f.path for f in files]
        await emit(
            WritingEvent(
                attempt=attempt,
                max_retries=max_retries,
                message=f"Writing {len(files)} file(s)",
                files=paths,
            )
        )
        for generated in files:
            self.writer(project_path, generated.path, generated.content)

        await emit(
            ValidatingEvent(
                attempt=attempt,
                max_retries=max_retries,
                message="Validating project with Godot",
            )
        )
        outcome = await self.validator.check_only(project_path)
        if outcome.passed:
            await emit(
                CompleteEvent(
                    attempt=attempt,
                    max_retries=max_retries,
                    message=f"Generated {len(files)} file(s)",
                    files=paths,
                )
            )
            return None

        diagnostic_text = outcome.diagnostic_text
        return AttemptOutcome(
            attempt=attempt,
            failure=AttemptFailure.VALIDATION,
            error=f"Attempt {attempt}: {diagnostic_text}",
            diagnostic_text=diagnostic_text,
            diagnostics=parse_godot_errors(diagnostic_text),
        )

    @staticmethod
    def _next_outbound(prompt: str, previous: str, failure: AttemptOutcome) -> str:
        """Choose the text for the attempt after a failure."""
        if failure.failure is AttemptFailure.VALIDATION:
            return build_validation_retry_prompt(prompt, failure.diagnostic_text)
        if failure.failure is AttemptFailure.NO_FILES:
            return build_extraction_retry_prompt(prompt)
        # Empty reply: resend the same text.
        return previous
