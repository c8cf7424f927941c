"""LLM session transport.

The transport owns conversations; agents only keep session ids.

Usage:
    >>> from llm import LLMTransport, get_default_model
    >>> transport = LLMTransport()
    >>> session = await transport.create_session("Agent: Game Coder")
    >>> reply = await transport.send_prompt(session.id, "Hello", model=get_default_model())
"""

from llm.transport import (
    LLMTransport,
    ModelRef,
    PromptResponse,
    SessionInfo,
    SessionNotFoundError,
    get_default_model,
)

__all__ = [
    "LLMTransport",
    "ModelRef",
    "PromptResponse",
    "SessionInfo",
    "SessionNotFoundError",
    "get_default_model",
]
