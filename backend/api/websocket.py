"""WebSocket handler for run progress streaming.

This module streams RunEvents for one generation run to the frontend and
accepts simple commands (cancel, ping) from the client.
"""

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from events import RunEventType, get_event_bus

if TYPE_CHECKING:
    from run_manager import RunManager

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

_run_manager: "RunManager | None" = None

_FINAL_EVENT_TYPES = {RunEventType.RUN_COMPLETE, RunEventType.RUN_FAILED}


def set_run_manager(manager: "RunManager") -> None:
    """Set the run manager used by WebSocket command handlers."""
    global _run_manager
    _run_manager = manager
    logger.info("websocket_run_manager_configured")


def get_run_manager() -> "RunManager":
    """Return the configured run manager for WebSocket command handlers."""
    if _run_manager is None:
        raise RuntimeError(
            "RunManager not configured for WebSocket handlers. "
            "Call set_run_manager() during startup."
        )
    return _run_manager


@websocket_router.websocket("/ws/{run_id}")
async def websocket_endpoint(websocket: WebSocket, run_id: str) -> None:
    """Stream a run's events: history first, then live events.

    The connection is closed by the server once the run's final event
    has been sent.

    Args:
        websocket: The WebSocket connection.
        run_id: The run to stream events for.
    """
    await websocket.accept()
    logger.info("websocket_connected", run_id=run_id)

    event_bus = get_event_bus()

    # Subscribe before reading history so nothing published in between is lost.
    queue = event_bus.subscribe(run_id)

    try:
        last_replay_timestamp: float = 0.0
        history = event_bus.get_event_history(run_id)
        for event in history:
            await websocket.send_json(event.model_dump(mode="json"))
            last_replay_timestamp = event.timestamp

        if history and history[-1].type in _FINAL_EVENT_TYPES:
            logger.info("websocket_replayed_finished_run", run_id=run_id, event_count=len(history))
            await websocket.close()
            return

        async def send_events() -> bool:
            """Forward live events. Returns True when the run closed."""
            try:
                while True:
                    event = await queue.get()
                    if event.type == RunEventType.RUN_CLOSED:
                        logger.info("run_closed_sentinel", run_id=run_id)
                        return True
                    # Already sent during history replay.
                    if event.timestamp <= last_replay_timestamp:
                        continue
                    await websocket.send_json(event.model_dump(mode="json"))
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send", run_id=run_id)
            except Exception as e:
                logger.error("websocket_send_error", run_id=run_id, error=str(e))
            return False

        async def receive_commands() -> None:
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message", run_id=run_id)
                        continue
                    command_type = data.get("type")
                    if command_type == "cancel":
                        await handle_cancel_command(run_id)
                    elif command_type == "ping":
                        await websocket.send_json(
                            {"type": "pong", "timestamp": data.get("timestamp")}
                        )
                    else:
                        logger.warning(
                            "unknown_command", run_id=run_id, command_type=command_type
                        )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive", run_id=run_id)
            except Exception as e:
                logger.error("websocket_receive_error", run_id=run_id, error=str(e))

        send_task = asyncio.create_task(send_events())
        receive_task = asyncio.create_task(receive_commands())

        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if send_task in done and send_task.result():
            await websocket.close()

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", run_id=run_id)
    except Exception as e:
        logger.error("websocket_error", run_id=run_id, error=str(e))
    finally:
        event_bus.unsubscribe(run_id, queue)
        logger.info("websocket_cleanup_complete", run_id=run_id)


async def handle_cancel_command(run_id: str) -> None:
    """Cancel a run on request from the WebSocket client."""
    run_manager = get_run_manager()
    try:
        await run_manager.cancel_run(run_id)
    except KeyError:
        logger.warning("cancel_command_run_not_found", run_id=run_id)
        return
    logger.info("cancel_command_complete", run_id=run_id)
