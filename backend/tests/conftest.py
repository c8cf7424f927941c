"""Shared test fixtures for backend tests.

Provides scripted fakes for the LLM transport and the Godot validator so
tests never touch a real model API or a Godot binary.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from agents.extractor import ...`` resolve when running pytest
# from the repository root.
_backend_root = str(Path(__file__).resolve().parent.parent)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.session_cache import AgentSessionCache  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from llm.transport import PromptResponse, SessionInfo, SessionNotFoundError  # noqa: E402
from validation.godot_cli import ValidationOutcome  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    return EventBus()


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Transport returning scripted reply texts in order.

    ``None`` in the script yields a reply with no text part. Every call is
    recorded in ``calls`` as a dict of its arguments.
    """

    def __init__(self, replies: list[str | None] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[dict[str, Any]] = []
        self.created_titles: list[str] = []

    async def create_session(self, title: str) -> SessionInfo:
        self.created_titles.append(title)
        return SessionInfo(id=f"ses_{len(self.created_titles)}", title=title)

    async def send_prompt(
        self,
        session_id: str,
        text: str,
        *,
        model: Any = None,
        system: str | None = None,
        agent: str | None = None,
        tools: Any = None,
        attachments: Any = None,
    ) -> PromptResponse:
        if not session_id.startswith("ses_"):
            raise SessionNotFoundError(session_id)
        self.calls.append(
            {
                "session_id": session_id,
                "text": text,
                "model": model,
                "system": system,
                "agent": agent,
            }
        )
        reply = self.replies.pop(0) if self.replies else None
        parts = [{"type": "text", "text": reply}] if reply else []
        return PromptResponse(text=reply, parts=parts, raw=None)

    @property
    def sent_texts(self) -> list[str]:
        return [call["text"] for call in self.calls]


class FakeValidator:
    """Validator returning scripted outcomes; passes once the script runs out."""

    def __init__(self, outcomes: list[ValidationOutcome] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.checked: list[str] = []
        self.available = True

    async def check_only(
        self, project_path: str | Path, script_path: str | None = None
    ) -> ValidationOutcome:
        self.checked.append(str(project_path))
        if self.outcomes:
            return self.outcomes.pop(0)
        return ValidationOutcome(exit_code=0, stdout="", stderr="")

    def is_available(self) -> bool:
        return self.available


def passing() -> ValidationOutcome:
    return ValidationOutcome(exit_code=0, stdout="", stderr="")


def failing(stderr: str, stdout: str = "") -> ValidationOutcome:
    return ValidationOutcome(exit_code=1, stdout=stdout, stderr=stderr)


def fenced(path: str, content: str, lang: str = "gdscript") -> str:
    """Build one fenced block with a filename declaration."""
    return f"```{lang}\n# filename: {path}\n{content}\n```"


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def fake_validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture()
def session_cache(fake_transport: FakeTransport) -> AgentSessionCache:
    return AgentSessionCache(fake_transport)


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    """An empty Godot project directory."""
    project = tmp_path / "game"
    project.mkdir()
    (project / "project.godot").write_text("config_version=5\n", encoding="utf-8")
    return project
