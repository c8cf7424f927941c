"""Tests for run_manager.py -- background generation runs on the event bus."""

import asyncio
from pathlib import Path

import pytest

from agents.session_cache import AgentSessionCache
from conftest import FakeTransport, FakeValidator, failing, fenced
from events.bus import EventBus
from events.types import ProgressEventType, RunEventType
from models.schemas import RunStatus
from run_manager import RunManager

PLAYER_REPLY = fenced("scripts/player.gd", "extends CharacterBody2D")


def _manager(
    event_bus: EventBus,
    replies: list[str | None],
    outcomes: list | None = None,
) -> tuple[RunManager, FakeTransport]:
    transport = FakeTransport(replies)
    manager = RunManager(
        transport, AgentSessionCache(transport), FakeValidator(outcomes), event_bus
    )
    return manager, transport


async def _wait_for_run(manager: RunManager, run_id: str) -> None:
    task = manager._tasks.get(run_id)
    if task is not None:
        await asyncio.wait_for(asyncio.shield(task), timeout=2.0)


# ---------------------------------------------------------------------------
# start_generation
# ---------------------------------------------------------------------------


class TestStartGeneration:
    async def test_successful_run(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])

        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)

        info = manager.get_run(run_id)
        assert run_id.startswith("run_")
        assert info.status == RunStatus.COMPLETE
        assert info.result.success is True
        assert info.completed_at is not None

    async def test_event_stream(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])

        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)

        history = event_bus.get_event_history(run_id)
        assert history[0].type == RunEventType.RUN_STARTED
        assert history[0].data["prompt"] == "Create a player"
        assert history[-1].type == RunEventType.RUN_COMPLETE
        assert history[-1].data["files"] == ["scripts/player.gd"]

        progress = [e.progress.type for e in history if e.type == RunEventType.PROGRESS]
        assert progress[0] == ProgressEventType.GENERATING
        assert progress[-1] == ProgressEventType.COMPLETE

    async def test_exhausted_run_is_failed(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY], [failing("E1")])

        run_id = await manager.start_generation("Create a player", project_dir, max_retries=1)
        await _wait_for_run(manager, run_id)

        info = manager.get_run(run_id)
        assert info.status == RunStatus.FAILED
        assert info.result.errors == ["Attempt 1: E1"]

    async def test_exception_marks_run_error(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [fenced("../escape.gd", "extends Node")])

        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)

        info = manager.get_run(run_id)
        assert info.status == RunStatus.ERROR
        assert "escape.gd" in info.error_message
        last = event_bus.get_event_history(run_id)[-1]
        assert last.type == RunEventType.RUN_FAILED
        assert last.data["error_type"] == "UnsafePathError"

    async def test_invalid_budget_rejected(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [])
        with pytest.raises(ValueError):
            await manager.start_generation("Create a player", project_dir, max_retries=0)
        assert manager.get_all_runs() == []

    async def test_subscriber_receives_close_sentinel(
        self, event_bus: EventBus, project_dir: Path
    ) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])
        run_id = await manager.start_generation("Create a player", project_dir)
        queue = event_bus.subscribe(run_id)
        await _wait_for_run(manager, run_id)

        received = []
        while not queue.empty():
            received.append(queue.get_nowait().type)
        assert received[-1] == RunEventType.RUN_CLOSED


# ---------------------------------------------------------------------------
# cancel_run
# ---------------------------------------------------------------------------


class TestCancelRun:
    async def test_cancel_running(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, transport = _manager(event_bus, [])
        started = asyncio.Event()

        async def slow_send(*args, **kwargs):
            started.set()
            await asyncio.sleep(10)

        transport.send_prompt = slow_send

        run_id = await manager.start_generation("Create a player", project_dir)
        await asyncio.wait_for(started.wait(), timeout=1.0)
        info = await manager.cancel_run(run_id)

        assert info.status == RunStatus.CANCELLED
        assert manager.get_active_run_count() == 0
        assert event_bus.get_event_history(run_id)[-1].type == RunEventType.RUN_FAILED

    async def test_cancel_before_start(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])

        run_id = await manager.start_generation("Create a player", project_dir)
        info = await manager.cancel_run(run_id)

        assert info.status == RunStatus.CANCELLED

    async def test_cancel_finished_is_noop(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])
        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)

        info = await manager.cancel_run(run_id)
        assert info.status == RunStatus.COMPLETE

    async def test_cancel_unknown(self, event_bus: EventBus) -> None:
        manager, _ = _manager(event_bus, [])
        with pytest.raises(KeyError):
            await manager.cancel_run("run_missing")


# ---------------------------------------------------------------------------
# Planning and sessions
# ---------------------------------------------------------------------------


class TestPlanningAndSessions:
    async def test_create_plan_delegates(self, event_bus: EventBus) -> None:
        manager, _ = _manager(event_bus, ["Not JSON"])
        result = await manager.create_plan("Fix a bug")
        assert result.used_fallback is True

    async def test_agents_share_session_cache(
        self, event_bus: EventBus, project_dir: Path
    ) -> None:
        manager, transport = _manager(event_bus, ["Not JSON", PLAYER_REPLY])
        await manager.create_plan("Fix a bug")
        run_id = await manager.start_generation("Fix a bug", project_dir)
        await _wait_for_run(manager, run_id)

        assert transport.created_titles == ["Agent: Orchestrator", "Agent: Game Coder"]
        assert manager.clear_agent_sessions() == 2

    async def test_cleanup_all_cancels_runs(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, transport = _manager(event_bus, [])

        async def slow_send(*args, **kwargs):
            await asyncio.sleep(10)

        transport.send_prompt = slow_send
        run_id = await manager.start_generation("Create a player", project_dir)
        info = manager.get_run(run_id)
        await asyncio.sleep(0)

        await manager.cleanup_all()
        assert info.status == RunStatus.CANCELLED
        assert manager.get_run(run_id) is None

    async def test_cleanup_all_clears_event_history(
        self, event_bus: EventBus, project_dir: Path
    ) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])
        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)
        assert event_bus.get_event_history(run_id)

        await manager.cleanup_all()

        assert event_bus.get_event_history(run_id) == []
        assert manager.get_all_runs() == []


# ---------------------------------------------------------------------------
# Finished-run eviction
# ---------------------------------------------------------------------------


class TestRunEviction:
    async def test_expired_run_evicted(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])
        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)
        manager.get_run(run_id).completed_at -= manager.run_ttl_seconds + 1

        assert await manager.evict_expired_runs() == [run_id]
        assert manager.get_run(run_id) is None
        assert event_bus.get_event_history(run_id) == []

    async def test_recent_run_kept(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY])
        run_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, run_id)

        assert await manager.evict_expired_runs() == []
        assert manager.get_run(run_id) is not None

    async def test_unfinished_run_never_evicted(
        self, event_bus: EventBus, project_dir: Path
    ) -> None:
        manager, transport = _manager(event_bus, [])

        async def slow_send(*args, **kwargs):
            await asyncio.sleep(10)

        transport.send_prompt = slow_send
        manager.run_ttl_seconds = 0
        run_id = await manager.start_generation("Create a player", project_dir)
        manager.get_run(run_id).created_at -= 3600

        assert await manager.evict_expired_runs() == []
        await manager.cleanup_all()

    async def test_new_run_evicts_expired(self, event_bus: EventBus, project_dir: Path) -> None:
        manager, _ = _manager(event_bus, [PLAYER_REPLY, PLAYER_REPLY])
        old_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, old_id)
        manager.get_run(old_id).completed_at -= manager.run_ttl_seconds + 1

        new_id = await manager.start_generation("Create a player", project_dir)
        await _wait_for_run(manager, new_id)

        assert [info.run_id for info in manager.get_all_runs()] == [new_id]
