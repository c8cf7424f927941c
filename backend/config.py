"""Application configuration using Pydantic Settings.

This module provides centralized configuration for the game builder agent
backend. All settings can be overridden via environment variables or a
.env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        default_provider_id: Provider used when a call supplies no model.
        default_model_id: Model used when a call supplies no model.
        llm_request_timeout_seconds: Timeout for a single completion request.
        llm_max_retries: Transport-level retries for transient provider errors.
        context_max_messages: Conversation messages kept per session before
            the oldest turns are pruned.
        generation_max_retries: Default attempt budget for the Game Coder.
        planner_max_steps: Step cap the planner prompt asks the model to honor.
        run_ttl_minutes: How long finished runs stay queryable before eviction.
        godot_path: Explicit Godot binary. Autodetected when empty.
        godot_check_timeout_seconds: Timeout for single-script checks.
        godot_import_timeout_seconds: Timeout for whole-project import checks.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # LLM Configuration
    # Provider ids follow LiteLLM prefixes (anthropic, openrouter, gemini, ...)
    default_provider_id: str = "anthropic"
    default_model_id: str = "claude-3-5-haiku-20241022"
    llm_request_timeout_seconds: int = 120
    llm_max_retries: int = 3
    context_max_messages: int = 20

    # Agent Limits
    generation_max_retries: int = 3
    planner_max_steps: int = 6
    run_ttl_minutes: int = 60

    # Godot Configuration
    godot_path: str | None = None
    godot_check_timeout_seconds: int = 30
    godot_import_timeout_seconds: int = 60

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:5173"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:5173"]'
        - Comma-separated: 'http://localhost:5173,http://localhost:8080'
        - Single value: 'http://localhost:5173'
        - Already a list: ["http://localhost:5173"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:5173"]

    @field_validator("godot_path", mode="before")
    @classmethod
    def blank_godot_path_is_unset(cls, v: Any) -> Any:
        """Treat GODOT_PATH="" the same as an unset variable."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
