"""Tests for api/routes.py and api/websocket.py -- HTTP and WebSocket handlers.

Uses FastAPI TestClient (backed by httpx) with a mocked RunManager.
No real LLM or Godot calls are made.
"""

import asyncio
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agents.extractor import GeneratedFile
from agents.game_coder import GenerationResult
from agents.planner import PlanResult, build_fallback_plan, parse_plan, resolve_step_dependencies
from api.routes import router, set_run_manager
from api.websocket import websocket_router
from events.bus import get_event_bus, reset_event_bus
from events.types import RunEvent, RunEventType
from llm.transport import ModelRef, SessionNotFoundError
from metrics import UsageTracker
from models.schemas import RunStatus

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_run_info(
    run_id: str = "run_aabb11223344",
    status: RunStatus = RunStatus.RUNNING,
    result: GenerationResult | None = None,
    error_message: str | None = None,
) -> MagicMock:
    info = MagicMock()
    info.run_id = run_id
    info.status = status
    info.prompt = "Create a player"
    info.project_path = "/games/demo"
    info.max_retries = 3
    info.created_at = 1700000000.0
    info.completed_at = None if status == RunStatus.RUNNING else 1700000010.0
    info.result = result
    info.error_message = error_message
    return info


@pytest.fixture()
def mock_run_manager() -> MagicMock:
    mgr = MagicMock()
    mgr.start_generation = AsyncMock(return_value="run_aabb11223344")
    mgr.get_run = MagicMock(return_value=_make_run_info(status=RunStatus.STARTED))
    mgr.cancel_run = AsyncMock(return_value=_make_run_info(status=RunStatus.CANCELLED))
    mgr.create_plan = AsyncMock(
        return_value=PlanResult(
            plan=build_fallback_plan("Fix a bug"),
            raw="Not JSON",
            used_fallback=True,
            dependency_indices=[[]],
        )
    )
    mgr.clear_agent_sessions = MagicMock(return_value=2)
    mgr.get_active_run_count = MagicMock(return_value=1)
    mgr.validator = MagicMock()
    mgr.validator.is_available = MagicMock(return_value=True)
    mgr.usage_tracker = UsageTracker()
    return mgr


@pytest.fixture()
def client(mock_run_manager: MagicMock) -> Generator[TestClient, None, None]:
    """Create a FastAPI TestClient with a mocked run manager."""
    app = FastAPI()
    app.include_router(router)
    app.include_router(websocket_router)
    set_run_manager(mock_run_manager)
    with TestClient(app) as c:
        yield c


# =========================================================================
# Health Check
# =========================================================================


class TestHealthCheck:
    """GET /health."""

    def test_healthy_with_godot(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["godot_available"] is True
        assert data["active_runs"] == 1
        assert data["version"] == "0.1.0"

    def test_unhealthy_without_godot(
        self, client: TestClient, mock_run_manager: MagicMock
    ) -> None:
        mock_run_manager.validator.is_available.return_value = False
        data = client.get("/health").json()
        assert data["status"] == "unhealthy"
        assert data["godot_available"] is False


# =========================================================================
# Planning
# =========================================================================


class TestPlan:
    """POST /api/plan."""

    def test_fallback_plan(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        resp = client.post("/api/plan", json={"request": "Fix a bug"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["used_fallback"] is True
        assert data["total_steps"] == 1
        assert data["raw"] == "Not JSON"
        assert data["steps"] == [
            {"agent": "game-coder", "task": "Fix a bug", "dependsOn": [], "dependency_indices": []}
        ]
        mock_run_manager.create_plan.assert_awaited_once_with("Fix a bug")

    def test_dependency_indices(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        raw = (
            '{"steps": [{"agent": "scene-builder", "task": "Main scene"},'
            ' {"agent": "game-coder", "task": "Player", "dependsOn": ["scene-builder"]}]}'
        )
        plan = parse_plan(raw)
        mock_run_manager.create_plan.return_value = PlanResult(
            plan=plan, raw=raw, dependency_indices=resolve_step_dependencies(plan)
        )

        data = client.post("/api/plan", json={"request": "Make a game"}).json()

        assert data["used_fallback"] is False
        assert [s["dependency_indices"] for s in data["steps"]] == [[], [0]]

    def test_empty_request_rejected(self, client: TestClient) -> None:
        assert client.post("/api/plan", json={"request": ""}).status_code == 422

    def test_session_not_found(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.create_plan.side_effect = SessionNotFoundError("ses_gone")
        assert client.post("/api/plan", json={"request": "x"}).status_code == 404

    def test_transport_failure(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.create_plan.side_effect = RuntimeError("provider down")
        resp = client.post("/api/plan", json={"request": "x"})
        assert resp.status_code == 500
        assert "provider down" in resp.json()["detail"]


# =========================================================================
# Generation runs
# =========================================================================


class TestStartGeneration:
    """POST /api/generate."""

    def test_accepted(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        resp = client.post(
            "/api/generate",
            json={"prompt": "Create a player", "project_path": "/games/demo"},
        )

        assert resp.status_code == 202
        data = resp.json()
        assert data["run_id"] == "run_aabb11223344"
        assert data["websocket_url"] == "/ws/run_aabb11223344"
        assert data["status"] == "started"
        mock_run_manager.start_generation.assert_awaited_once_with(
            "Create a player", "/games/demo", model=None, max_retries=None
        )

    def test_model_and_budget_forwarded(
        self, client: TestClient, mock_run_manager: MagicMock
    ) -> None:
        client.post(
            "/api/generate",
            json={
                "prompt": "Create a player",
                "project_path": "/games/demo",
                "max_retries": 2,
                "model": {"provider_id": "openrouter", "model_id": "some/model"},
            },
        )
        kwargs = mock_run_manager.start_generation.await_args.kwargs
        assert kwargs["max_retries"] == 2
        assert kwargs["model"] == ModelRef(provider_id="openrouter", model_id="some/model")

    def test_zero_budget_rejected(self, client: TestClient) -> None:
        resp = client.post(
            "/api/generate",
            json={"prompt": "Create a player", "project_path": "/games/demo", "max_retries": 0},
        )
        assert resp.status_code == 422

    def test_godot_missing(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.validator.is_available.return_value = False
        resp = client.post(
            "/api/generate",
            json={"prompt": "Create a player", "project_path": "/games/demo"},
        )
        assert resp.status_code == 503
        mock_run_manager.start_generation.assert_not_awaited()


class TestGetRun:
    """GET /api/runs/{run_id}."""

    def test_finished_run_includes_result(
        self, client: TestClient, mock_run_manager: MagicMock
    ) -> None:
        result = GenerationResult(
            success=False,
            attempts=2,
            files=[GeneratedFile(path="scripts/player.gd", content="extends Node", type="gdscript")],
            errors=["Attempt 1: E1", "Attempt 2: E2"],
        )
        mock_run_manager.get_run.return_value = _make_run_info(
            status=RunStatus.FAILED, result=result
        )

        data = client.get("/api/runs/run_aabb11223344").json()

        assert data["status"] == "failed"
        assert data["success"] is False
        assert data["attempts"] == 2
        assert data["files"] == [{"path": "scripts/player.gd", "type": "gdscript", "size": 12}]
        assert data["errors"] == ["Attempt 1: E1", "Attempt 2: E2"]

    def test_running_run_has_no_result(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.get_run.return_value = _make_run_info()
        data = client.get("/api/runs/run_aabb11223344").json()
        assert data["status"] == "running"
        assert data["success"] is None
        assert data["files"] == []

    def test_not_found(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.get_run.return_value = None
        assert client.get("/api/runs/run_missing").status_code == 404


class TestCancelRun:
    """POST /api/runs/{run_id}/cancel."""

    def test_cancel(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        resp = client.post("/api/runs/run_aabb11223344/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    def test_not_found(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.cancel_run.side_effect = KeyError("run_missing")
        assert client.post("/api/runs/run_missing/cancel").status_code == 404


class TestClearAgentSessions:
    """DELETE /api/agent-sessions."""

    def test_clear(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        resp = client.delete("/api/agent-sessions")
        assert resp.status_code == 200
        assert resp.json() == {"cleared": 2}


# =========================================================================
# Usage
# =========================================================================


class TestUsage:
    """GET and DELETE /api/usage."""

    def test_empty(self, client: TestClient) -> None:
        data = client.get("/api/usage").json()
        assert data == {
            "total_messages": 0,
            "total_tokens": 0,
            "total_cost": 0.0,
            "by_agent": {},
            "by_model": {},
        }

    def test_recorded_usage(self, client: TestClient, mock_run_manager: MagicMock) -> None:
        mock_run_manager.usage_tracker.record("Game Coder", "anthropic/m", 100, 50, cost=0.5)

        data = client.get("/api/usage").json()

        assert data["total_tokens"] == 150
        assert data["by_agent"]["Game Coder"] == {"messages": 1, "tokens": 150, "cost": 0.5}
        assert data["by_model"]["anthropic/m"]["messages"] == 1

    def test_reset_returns_previous_totals(
        self, client: TestClient, mock_run_manager: MagicMock
    ) -> None:
        mock_run_manager.usage_tracker.record("Game Coder", "anthropic/m", 100, 50, cost=0.5)

        resp = client.delete("/api/usage")

        assert resp.status_code == 200
        assert resp.json()["total_messages"] == 1
        assert client.get("/api/usage").json()["total_messages"] == 0


# =========================================================================
# WebSocket
# =========================================================================


class TestWebSocket:
    """WS /ws/{run_id}."""

    def test_finished_run_replayed_then_closed(self, client: TestClient) -> None:
        reset_event_bus()
        bus = get_event_bus()
        run_id = "run_replay"
        asyncio.run(bus.publish(RunEvent(type=RunEventType.RUN_STARTED, run_id=run_id)))
        asyncio.run(
            bus.publish(
                RunEvent(
                    type=RunEventType.RUN_COMPLETE,
                    run_id=run_id,
                    data={"success": True, "attempts": 1, "files": [], "errors": []},
                )
            )
        )

        with client.websocket_connect(f"/ws/{run_id}") as ws:
            first = ws.receive_json()
            second = ws.receive_json()

        assert first["type"] == "run_started"
        assert second["type"] == "run_complete"
        assert second["data"]["success"] is True
        reset_event_bus()
