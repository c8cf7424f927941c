"""Tests for models/schemas.py -- Pydantic request/response models.

Validates construction, validation rules, enum values, and the ``model``
alias on GenerateRequest (``model_`` names clash with Pydantic's
protected namespace).
"""

import pytest
from pydantic import ValidationError

from agents.extractor import GeneratedFile
from models.schemas import (
    GeneratedFileInfo,
    GenerateRequest,
    HealthResponse,
    PlanStepResponse,
    RunStatus,
)

# =========================================================================
# RunStatus enum
# =========================================================================


class TestRunStatus:
    def test_all_statuses(self) -> None:
        expected = {"started", "running", "complete", "failed", "error", "cancelled"}
        assert {s.value for s in RunStatus} == expected

    def test_string_coercion(self) -> None:
        assert RunStatus("failed") == RunStatus.FAILED


# =========================================================================
# GenerateRequest
# =========================================================================


class TestGenerateRequest:
    def test_minimal(self) -> None:
        req = GenerateRequest(prompt="Create a player", project_path="/games/demo")
        assert req.max_retries is None
        assert req.model_selection is None

    def test_model_alias(self) -> None:
        req = GenerateRequest.model_validate(
            {
                "prompt": "Create a player",
                "project_path": "/games/demo",
                "model": {"provider_id": "anthropic", "model_id": "claude-3-5-haiku-20241022"},
            }
        )
        assert req.model_selection.provider_id == "anthropic"

    @pytest.mark.parametrize("max_retries", [0, 11])
    def test_budget_bounds(self, max_retries: int) -> None:
        with pytest.raises(ValidationError):
            GenerateRequest(
                prompt="Create a player", project_path="/games/demo", max_retries=max_retries
            )

    def test_empty_prompt_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GenerateRequest(prompt="", project_path="/games/demo")

    def test_blank_model_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GenerateRequest.model_validate(
                {
                    "prompt": "x",
                    "project_path": "/games/demo",
                    "model": {"provider_id": "anthropic", "model_id": ""},
                }
            )


# =========================================================================
# Responses
# =========================================================================


class TestPlanStepResponse:
    def test_wire_name(self) -> None:
        step = PlanStepResponse(agent="game-coder", task="x", depends_on=["scene-builder"])
        assert step.model_dump(by_alias=True)["dependsOn"] == ["scene-builder"]

    def test_accepts_wire_name(self) -> None:
        step = PlanStepResponse.model_validate(
            {"agent": "game-coder", "task": "x", "dependsOn": ["scene-builder"]}
        )
        assert step.depends_on == ["scene-builder"]


class TestGeneratedFileInfo:
    def test_from_generated(self) -> None:
        info = GeneratedFileInfo.from_generated(
            GeneratedFile(path="scenes/Main.tscn", content="[gd_scene]", type="tscn")
        )
        assert (info.path, info.type, info.size) == ("scenes/Main.tscn", "tscn", 10)


class TestHealthResponse:
    def test_defaults(self) -> None:
        resp = HealthResponse(status="healthy", timestamp=1.0)
        assert resp.godot_available is False
        assert resp.active_runs == 0

    def test_invalid_status(self) -> None:
        with pytest.raises(ValidationError):
            HealthResponse(status="degraded", timestamp=1.0)
