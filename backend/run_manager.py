"""Run manager for background generation runs.

This module provides the RunManager class that starts Game Coder runs as
background asyncio tasks, streams their progress onto the event bus and
keeps their status and result for later lookup.

The RunManager coordinates between:
- GameCoderAgent: the generate -> validate loop for each run
- PlannerAgent: request planning (synchronous, not a run)
- AgentSessionCache: shared by both agents
- EventBus: per-run progress stream for WebSocket clients

Usage:
    >>> manager = RunManager(transport, session_cache, validator, get_event_bus())
    >>> run_id = await manager.start_generation("Create a player", "/games/demo")
    >>> manager.get_run(run_id).status
    >>> await manager.cleanup_all()
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from agents.game_coder import (
    GameCoderAgent,
    GenerationResult,
    ProjectValidator,
    PromptTransport,
)
from agents.planner import PlannerAgent, PlanResult
from agents.session_cache import AgentSessionCache
from config import settings
from events import EventBus
from events.types import ProgressEvent, RunEvent, RunEventType
from llm.transport import ModelRef
from metrics import UsageTracker
from models.schemas import RunStatus

logger = structlog.get_logger()

TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETE, RunStatus.FAILED, RunStatus.ERROR, RunStatus.CANCELLED}
)


@dataclass
class RunInfo:
    """State of one background generation run.

    Attributes:
        run_id: Unique identifier (e.g. "run_abc123def456")
        prompt: Task prompt given to the Game Coder
        project_path: Godot project directory
        max_retries: Attempt budget
        status: Current run status
        created_at: Unix timestamp when the run was created
        completed_at: Unix timestamp when the run reached a terminal status
        result: GenerationResult once the loop returned
        error_message: Exception message when status is ERROR
    """

    run_id: str
    prompt: str
    project_path: str
    max_retries: int
    status: RunStatus
    created_at: float
    completed_at: float | None = None
    result: GenerationResult | None = None
    error_message: str | None = None


class RunManager:
    """Owns the agents and the lifecycle of generation runs.

    Thread Safety:
        The run and task registries are guarded by an asyncio.Lock.
    """

    AGENT_NAME = GameCoderAgent.SESSION_KEY

    def __init__(
        self,
        transport: PromptTransport,
        session_cache: AgentSessionCache,
        validator: ProjectValidator,
        event_bus: EventBus,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        self.session_cache = session_cache
        self.event_bus = event_bus
        self.validator = validator
        self.usage_tracker = usage_tracker if usage_tracker is not None else UsageTracker()
        self.game_coder = GameCoderAgent(transport, session_cache, validator)
        self.planner = PlannerAgent(transport, session_cache)
        self._runs: dict[str, RunInfo] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()
        self.run_ttl_seconds = settings.run_ttl_minutes * 60
        logger.info("run_manager_initialized")

    @staticmethod
    def _generate_run_id() -> str:
        return f"run_{uuid.uuid4().hex[:12]}"

    async def start_generation(
        self,
        prompt: str,
        project_path: str | Path,
        *,
        model: ModelRef | None = None,
        max_retries: int | None = None,
    ) -> str:
        """Start a Game Coder run in the background.

        Args:
            prompt: Task prompt
            project_path: Godot project directory
            model: Optional model override
            max_retries: Attempt budget (defaults to settings.generation_max_retries)

        Returns:
            The new run id

        Raises:
            ValueError: If max_retries is less than 1
        """
        if max_retries is None:
            max_retries = settings.generation_max_retries
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        run_id = self._generate_run_id()
        info = RunInfo(
            run_id=run_id,
            prompt=prompt,
            project_path=str(project_path),
            max_retries=max_retries,
            status=RunStatus.STARTED,
            created_at=time.time(),
        )

        await self.event_bus.publish(
            RunEvent(
                type=RunEventType.RUN_STARTED,
                run_id=run_id,
                agent=self.AGENT_NAME,
                data={
                    "prompt": prompt,
                    "project_path": info.project_path,
                    "max_retries": max_retries,
                },
            )
        )

        async with self._lock:
            self._evict_expired_runs()
            self._runs[run_id] = info
            task = asyncio.create_task(
                self._run_generation(info, model), name=f"run_{run_id}"
            )
            self._tasks[run_id] = task

            def _remove_task(t: asyncio.Task[None], rid: str = run_id) -> None:
                self._tasks.pop(rid, None)

            task.add_done_callback(_remove_task)

        logger.info("run_started", run_id=run_id, max_retries=max_retries)
        return run_id

    async def _run_generation(self, info: RunInfo, model: ModelRef | None) -> None:
        run_id = info.run_id
        info.status = RunStatus.RUNNING

        async def forward_progress(event: ProgressEvent) -> None:
            await self.event_bus.publish(
                RunEvent(
                    type=RunEventType.PROGRESS,
                    run_id=run_id,
                    agent=self.AGENT_NAME,
                    progress=event,
                )
            )

        try:
            result = await self.game_coder.generate(
                info.prompt,
                info.project_path,
                model=model,
                max_retries=info.max_retries,
                on_progress=forward_progress,
            )
        except asyncio.CancelledError:
            self._finish(info, RunStatus.CANCELLED)
            logger.info("run_cancelled", run_id=run_id)
            await self._publish_failure(run_id, "Run cancelled", "CancelledError")
            await self.event_bus.close_run(run_id)
            raise
        except Exception as e:
            info.error_message = str(e)
            self._finish(info, RunStatus.ERROR)
            logger.error(
                "run_error",
                run_id=run_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._publish_failure(run_id, str(e), type(e).__name__)
            await self.event_bus.close_run(run_id)
            return

        info.result = result
        self._finish(info, RunStatus.COMPLETE if result.success else RunStatus.FAILED)
        await self.event_bus.publish(
            RunEvent(
                type=RunEventType.RUN_COMPLETE,
                run_id=run_id,
                agent=self.AGENT_NAME,
                data=self._result_payload(result),
            )
        )
        logger.info(
            "run_finished",
            run_id=run_id,
            success=result.success,
            attempts=result.attempts,
        )
        await self.event_bus.close_run(run_id)

    @staticmethod
    def _finish(info: RunInfo, status: RunStatus) -> None:
        info.status = status
        info.completed_at = time.time()

    @staticmethod
    def _result_payload(result: GenerationResult) -> dict[str, Any]:
        return {
            "success": result.success,
            "attempts": result.attempts,
            "files": result.file_paths,
            "errors": list(result.errors),
        }

    async def _publish_failure(self, run_id: str, error: str, error_type: str) -> None:
        await self.event_bus.publish(
            RunEvent(
                type=RunEventType.RUN_FAILED,
                run_id=run_id,
                agent=self.AGENT_NAME,
                data={"error": error, "error_type": error_type},
            )
        )

    def _evict_expired_runs(self) -> list[str]:
        """Forget finished runs older than the TTL. Caller holds the lock."""
        cutoff = time.time() - self.run_ttl_seconds
        expired = [
            run_id
            for run_id, info in self._runs.items()
            if info.status in TERMINAL_STATUSES
            and info.completed_at is not None
            and info.completed_at < cutoff
        ]
        for run_id in expired:
            del self._runs[run_id]
            self.event_bus.clear_event_history(run_id)
        if expired:
            logger.info("expired_runs_evicted", count=len(expired))
        return expired

    async def evict_expired_runs(self) -> list[str]:
        """Forget finished runs whose TTL has passed.

        Returns:
            Ids of the evicted runs
        """
        async with self._lock:
            return self._evict_expired_runs()

    def get_run(self, run_id: str) -> RunInfo | None:
        return self._runs.get(run_id)

    def get_all_runs(self) -> list[RunInfo]:
        return list(self._runs.values())

    def get_active_run_count(self) -> int:
        return sum(1 for info in self._runs.values() if info.status not in TERMINAL_STATUSES)

    async def cancel_run(self, run_id: str) -> RunInfo:
        """Cancel a running generation.

        Cancelling a run that already finished is a no-op.

        Args:
            run_id: The run to cancel

        Returns:
            The run's info after cancellation

        Raises:
            KeyError: If the run doesn't exist
        """
        async with self._lock:
            info = self._runs.get(run_id)
            if info is None:
                raise KeyError(f"Run '{run_id}' not found")
            if info.status in TERMINAL_STATUSES:
                logger.info(
                    "cancel_run_noop_terminal_state",
                    run_id=run_id,
                    status=info.status.value,
                )
                return info
            task = self._tasks.get(run_id)

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if info.status not in TERMINAL_STATUSES:
            # Cancelled before the task started running.
            self._finish(info, RunStatus.CANCELLED)
            await self.event_bus.close_run(run_id)

        return info

    async def create_plan(self, user_request: str) -> PlanResult:
        return await self.planner.create_plan(user_request)

    def clear_agent_sessions(self) -> int:
        """Forget all cached agent conversations."""
        return self.session_cache.clear()

    async def cleanup_all(self) -> None:
        """Cancel every unfinished run and forget all runs.

        Called on application shutdown.
        """
        async with self._lock:
            tasks = list(self._tasks.items())
            self._tasks.clear()

        logger.info("cleanup_all_start", run_count=len(tasks))
        for run_id, task in tasks:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error("cleanup_task_cancel_failed", run_id=run_id, error=str(e))

        async with self._lock:
            run_ids = list(self._runs)
            self._runs.clear()
        for run_id in run_ids:
            self.event_bus.clear_event_history(run_id)
        logger.info("cleanup_all_complete")
