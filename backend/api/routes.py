"""HTTP API routes for the game builder backend.

This module defines the HTTP endpoints for planning, generation runs,
agent session management, LLM usage and health checks. Run progress is
streamed via WebSocket in websocket.py.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, status

from llm.transport import ModelRef, SessionNotFoundError
from models.schemas import (
    ClearSessionsResponse,
    GeneratedFileInfo,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    PlanRequest,
    PlanResponse,
    PlanStepResponse,
    RunDetailResponse,
    UsageResponse,
)
from validation.godot_cli import GodotNotFoundError

if TYPE_CHECKING:
    from run_manager import RunInfo, RunManager

logger = structlog.get_logger(__name__)

router = APIRouter()

# -----------------------------------------------------------------------------
# Dependency injection
# -----------------------------------------------------------------------------

_run_manager: RunManager | None = None


def set_run_manager(manager: RunManager) -> None:
    """Set the run manager instance for the routes.

    This should be called during application startup.

    Args:
        manager: The RunManager instance to use for all routes.
    """
    global _run_manager
    _run_manager = manager
    logger.info("run_manager_configured")


def get_run_manager() -> RunManager:
    """Get the run manager instance.

    Raises:
        RuntimeError: If the run manager has not been configured.
    """
    if _run_manager is None:
        logger.error("run_manager_not_configured")
        raise RuntimeError(
            "RunManager not configured. Call set_run_manager() during startup."
        )
    return _run_manager


def _to_run_detail(info: RunInfo) -> RunDetailResponse:
    result = info.result
    return RunDetailResponse(
        run_id=info.run_id,
        status=info.status,
        prompt=info.prompt,
        project_path=info.project_path,
        max_retries=info.max_retries,
        created_at=info.created_at,
        completed_at=info.completed_at,
        success=result.success if result else None,
        attempts=result.attempts if result else None,
        files=[GeneratedFileInfo.from_generated(f) for f in result.files] if result else [],
        errors=list(result.errors) if result else [],
        error_message=info.error_message,
    )


# -----------------------------------------------------------------------------
# Planning
# -----------------------------------------------------------------------------


@router.post(
    "/api/plan",
    response_model=PlanResponse,
    summary="Plan a request",
    description="Decompose a free-text request into agent steps.",
)
async def create_plan(request: PlanRequest) -> PlanResponse:
    """Run the planner on a request.

    Malformed model output never fails the request; it yields the
    single-step fallback plan with ``used_fallback`` set.

    Raises:
        HTTPException: 404 if the planner's session vanished, 500 on
            transport failures.
    """
    run_manager = get_run_manager()

    try:
        result = await run_manager.create_plan(request.request)
    except SessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Agent session not found: {e}",
        ) from e
    except Exception as e:
        logger.error("plan_request_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create plan: {e}",
        ) from e

    steps = [
        PlanStepResponse(
            agent=step.agent,
            task=step.task,
            depends_on=step.depends_on,
            dependency_indices=indices,
        )
        for step, indices in zip(result.plan.steps, result.dependency_indices, strict=True)
    ]
    return PlanResponse(
        steps=steps,
        total_steps=result.plan.total_steps,
        used_fallback=result.used_fallback,
        raw=result.raw,
    )


# -----------------------------------------------------------------------------
# Generation runs
# -----------------------------------------------------------------------------


@router.post(
    "/api/generate",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a generation run",
    description="Start the Game Coder in the background for a Godot project.",
)
async def start_generation(request: GenerateRequest) -> GenerateResponse:
    """Start a background generation run.

    Returns:
        GenerateResponse with the run id and its WebSocket URL.

    Raises:
        HTTPException: 503 if Godot is not installed, 400 on invalid input.
    """
    run_manager = get_run_manager()

    if not run_manager.validator.is_available():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Godot not found. Install Godot or set GODOT_PATH.",
        )

    model = None
    if request.model_selection is not None:
        model = ModelRef(
            provider_id=request.model_selection.provider_id,
            model_id=request.model_selection.model_id,
        )

    try:
        run_id = await run_manager.start_generation(
            request.prompt,
            request.project_path,
            model=model,
            max_retries=request.max_retries,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    info = run_manager.get_run(run_id)
    logger.info("generation_requested", run_id=run_id, prompt_length=len(request.prompt))
    return GenerateResponse(
        run_id=run_id,
        websocket_url=f"/ws/{run_id}",
        status=info.status,
    )


@router.get(
    "/api/runs/{run_id}",
    response_model=RunDetailResponse,
    summary="Get run status",
)
async def get_run(
    run_id: Annotated[str, Path(description="The run ID")]
) -> RunDetailResponse:
    """Return a run's status and, once finished, its result.

    Raises:
        HTTPException: 404 if the run is unknown.
    """
    info = get_run_manager().get_run(run_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} not found",
        )
    return _to_run_detail(info)


@router.post(
    "/api/runs/{run_id}/cancel",
    response_model=RunDetailResponse,
    summary="Cancel a run",
)
async def cancel_run(
    run_id: Annotated[str, Path(description="The run ID")]
) -> RunDetailResponse:
    """Cancel a running generation.

    Raises:
        HTTPException: 404 if the run is unknown.
    """
    try:
        info = await get_run_manager().cancel_run(run_id)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} not found",
        ) from e

    logger.info("run_cancel_requested", run_id=run_id, status=info.status.value)
    return _to_run_detail(info)


# -----------------------------------------------------------------------------
# Agent sessions, usage and health
# -----------------------------------------------------------------------------


@router.delete(
    "/api/agent-sessions",
    response_model=ClearSessionsResponse,
    summary="Clear agent sessions",
    description="Forget cached agent conversations; the next call starts fresh.",
)
async def clear_agent_sessions() -> ClearSessionsResponse:
    cleared = get_run_manager().clear_agent_sessions()
    return ClearSessionsResponse(cleared=cleared)


@router.get(
    "/api/usage",
    response_model=UsageResponse,
    summary="LLM usage",
    description="Token usage and estimated cost per agent and per model.",
)
async def get_usage() -> UsageResponse:
    return UsageResponse.from_stats(get_run_manager().usage_tracker.get_stats())


@router.delete(
    "/api/usage",
    response_model=UsageResponse,
    summary="Reset LLM usage",
)
async def reset_usage() -> UsageResponse:
    """Reset usage tracking and return the totals accumulated until now."""
    tracker = get_run_manager().usage_tracker
    stats = UsageResponse.from_stats(tracker.get_stats())
    tracker.reset()
    return stats


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with Godot availability.",
)
async def health_check() -> HealthResponse:
    """Report liveness, Godot availability and active run count."""
    godot_available = False
    active_runs = 0

    try:
        run_manager = get_run_manager()
        godot_available = run_manager.validator.is_available()
        active_runs = run_manager.get_active_run_count()
    except RuntimeError:
        # RunManager not configured yet (e.g., during startup)
        pass
    except GodotNotFoundError:
        godot_available = False

    return HealthResponse(
        status="healthy" if godot_available else "unhealthy",
        timestamp=time.time(),
        godot_available=godot_available,
        active_runs=active_runs,
    )
