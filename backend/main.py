"""FastAPI application entry point for the Godot game builder backend.

This module initializes the FastAPI application with middleware, routers
and the lifespan that wires the LLM transport, agents and validator.

Usage:
    uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agents.session_cache import AgentSessionCache
from api.routes import router
from api.routes import set_run_manager as set_routes_run_manager
from api.websocket import set_run_manager as set_websocket_run_manager
from api.websocket import websocket_router
from config import settings
from events import get_event_bus
from llm.transport import LLMTransport
from metrics import UsageTracker
from run_manager import RunManager
from validation.godot_cli import GodotValidator, detect_godot

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the shared transport, session cache, validator and run manager.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    godot_binary = detect_godot(settings.godot_path)
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        default_model=f"{settings.default_provider_id}/{settings.default_model_id}",
        godot_binary=godot_binary,
    )
    if godot_binary is None:
        # Planning still works; generation requests get 503 until Godot is installed.
        logger.warning("godot_not_found")

    usage_tracker = UsageTracker()
    transport = LLMTransport(usage_tracker=usage_tracker)
    run_manager = RunManager(
        transport,
        AgentSessionCache(transport),
        GodotValidator(godot_path=settings.godot_path),
        get_event_bus(),
        usage_tracker=usage_tracker,
    )

    set_routes_run_manager(run_manager)
    set_websocket_run_manager(run_manager)
    app.state.run_manager = run_manager

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    await app.state.run_manager.cleanup_all()
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="Godot Game Builder",
    description="Backend API that plans game requests and generates "
    "Godot projects validated by the Godot CLI.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router, tags=["generation"])
app.include_router(websocket_router, tags=["websocket"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    return {
        "message": "Godot Game Builder API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
