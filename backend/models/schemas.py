"""Pydantic schemas for API request/response models.

This module defines the data models used by the HTTP API and WebSocket handlers.
All models use Pydantic v2.
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from agents.extractor import GeneratedFile
from metrics import UsageBucket, UsageStats


class RunStatus(StrEnum):
    """Generation run lifecycle status."""

    STARTED = "started"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ModelSelection(BaseModel):
    """Provider/model override for a request."""

    model_config = ConfigDict(protected_namespaces=())

    provider_id: str = Field(
        min_length=1,
        description="LiteLLM provider prefix",
        examples=["anthropic", "openrouter"],
    )
    model_id: str = Field(
        min_length=1,
        description="Model identifier within the provider",
        examples=["claude-3-5-haiku-20241022"],
    )


class GenerateRequest(BaseModel):
    """Request body for starting a generation run."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    prompt: str = Field(
        min_length=1,
        max_length=20000,
        description="Task prompt for the Game Coder",
        examples=["Create a player character with WASD movement"],
    )
    project_path: str = Field(
        min_length=1,
        description="Godot project directory on the server",
        examples=["/home/me/games/demo"],
    )
    max_retries: int | None = Field(
        default=None,
        ge=1,
        le=10,
        description="Attempt budget (server default when omitted)",
    )
    model_selection: ModelSelection | None = Field(
        default=None,
        alias="model",
        description="Optional model override",
    )


class GenerateResponse(BaseModel):
    """Response for starting a generation run."""

    run_id: str = Field(
        description="Unique run identifier",
        examples=["run_abc123def456"],
    )
    websocket_url: str = Field(
        description="WebSocket URL for progress streaming",
        examples=["/ws/run_abc123def456"],
    )
    status: RunStatus


class GeneratedFileInfo(BaseModel):
    """A file produced by the last extraction of a run."""

    path: str
    type: str
    size: int = Field(description="Content length in characters")

    @classmethod
    def from_generated(cls, generated: GeneratedFile) -> "GeneratedFileInfo":
        return cls(path=generated.path, type=generated.type, size=len(generated.content))


class RunDetailResponse(BaseModel):
    """Status and, once finished, result of a run."""

    run_id: str
    status: RunStatus
    prompt: str
    project_path: str
    max_retries: int
    created_at: float
    completed_at: float | None = None
    success: bool | None = None
    attempts: int | None = None
    files: list[GeneratedFileInfo] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    error_message: str | None = None


class PlanRequest(BaseModel):
    """Request body for planning a user request."""

    request: str = Field(
        min_length=1,
        max_length=20000,
        description="Free-text request to plan",
        examples=["Make a platformer with coins and a goal flag"],
    )


class PlanStepResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent: str
    task: str
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    dependency_indices: list[int] = Field(default_factory=list)


class PlanResponse(BaseModel):
    """Execution plan produced by the planner."""

    steps: list[PlanStepResponse]
    total_steps: int
    used_fallback: bool
    raw: str = Field(description="Verbatim model output")


class ClearSessionsResponse(BaseModel):
    cleared: int = Field(description="Number of agent sessions forgotten")


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    godot_available: bool = Field(
        default=False,
        description="Whether a Godot binary could be located",
    )
    active_runs: int = Field(
        default=0,
        description="Number of runs not yet finished",
    )


class UsageBucketResponse(BaseModel):
    messages: int
    tokens: int
    cost: float = Field(description="Estimated cost in USD")


class UsageResponse(BaseModel):
    """LLM token usage and estimated cost since the last reset."""

    total_messages: int
    total_tokens: int
    total_cost: float = Field(description="Estimated cost in USD")
    by_agent: dict[str, UsageBucketResponse] = Field(default_factory=dict)
    by_model: dict[str, UsageBucketResponse] = Field(default_factory=dict)

    @classmethod
    def from_stats(cls, stats: UsageStats) -> "UsageResponse":
        def buckets(source: dict[str, UsageBucket]) -> dict[str, UsageBucketResponse]:
            return {
                name: UsageBucketResponse(messages=b.messages, tokens=b.tokens, cost=b.cost)
                for name, b in source.items()
            }

        return cls(
            total_messages=stats.total_messages,
            total_tokens=stats.total_tokens,
            total_cost=stats.total_cost,
            by_agent=buckets(stats.by_agent),
            by_model=buckets(stats.by_model),
        )
