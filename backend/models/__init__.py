"""Models module for Pydantic schemas.

This module exposes all request/response models used by the API.
"""

from models.schemas import (
    ClearSessionsResponse,
    GeneratedFileInfo,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    ModelSelection,
    PlanRequest,
    PlanResponse,
    PlanStepResponse,
    RunDetailResponse,
    RunStatus,
    UsageBucketResponse,
    UsageResponse,
)

__all__ = [
    "ClearSessionsResponse",
    "GeneratedFileInfo",
    "GenerateRequest",
    "GenerateResponse",
    "HealthResponse",
    "ModelSelection",
    "PlanRequest",
    "PlanResponse",
    "PlanStepResponse",
    "RunDetailResponse",
    "RunStatus",
    "UsageBucketResponse",
    "UsageResponse",
]
