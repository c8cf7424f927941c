"""LLM session transport built on LiteLLM.

This module provides:
- ModelRef: provider/model pair used to address a completion model
- get_default_model: model selector consulted when a caller supplies none
- LLMTransport: stateful conversations (sessions) over ``litellm.acompletion``
  with retry on transient provider errors and a sliding history window

A session is a titled message history, bounded by a sliding window, owned by
the transport.
Agents only ever hold its id.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from metrics import UsageTracker, estimate_cost

logger = structlog.get_logger()


class SessionNotFoundError(KeyError):
    """Raised when a prompt targets a session the transport does not know."""


@dataclass(frozen=True)
class ModelRef:
    """A completion model addressed by provider and model id.

    Attributes:
        provider_id: LiteLLM provider prefix (e.g. "anthropic", "openrouter")
        model_id: Model identifier within that provider
    """

    provider_id: str
    model_id: str

    @property
    def litellm_name(self) -> str:
        """Model string in the form LiteLLM routes on."""
        return f"{self.provider_id}/{self.model_id}"


def get_default_model() -> ModelRef:
    """Return the configured default model."""
    return ModelRef(
        provider_id=settings.default_provider_id,
        model_id=settings.default_model_id,
    )


@dataclass
class SessionInfo:
    """Handle for a conversation held by the transport."""

    id: str
    title: str


@dataclass
class PromptResponse:
    """Result of sending one prompt to a session.

    Attributes:
        text: First text part of the reply, or None when the model sent no text
        parts: Reply parts (``{"type": "text", ...}`` and ``{"type": "tool", ...}``)
        raw: The original ModelResponse from LiteLLM
    """

    text: str | None
    parts: list[dict[str, Any]]
    raw: ModelResponse | None = field(default=None, repr=False)


@dataclass
class _Conversation:
    """Stored history of one session.

    ``messages`` keeps the first user turn plus the most recent turns;
    ``pruned`` counts the turns dropped in between.
    """

    title: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    pruned: int = 0
    created_at: float = field(default_factory=time.time)

    def trim(self, max_messages: int) -> None:
        """Drop the oldest turns after the anchor so window() fits max_messages.

        The first user message usually carries the task statement, so it is
        preserved. One slot of the window is reserved for the pruning marker.
        """
        if max_messages < 3:
            return
        if not self.pruned and len(self.messages) <= max_messages:
            return
        excess = len(self.messages) - (max_messages - 1)
        if excess > 0:
            del self.messages[1 : 1 + excess]
            self.pruned += excess

    def window(self) -> list[dict[str, Any]]:
        """History as sent to the model, with a marker for pruned turns."""
        if not self.pruned:
            return list(self.messages)
        marker = {
            "role": "user",
            "content": f"[Note: {self.pruned} earlier messages were pruned for context limits.]",
        }
        return [self.messages[0], marker, *self.messages[1:]]

    def discard(self, message: dict[str, Any]) -> None:
        """Remove one stored message by identity. Already-pruned messages are ignored."""
        for index, stored in enumerate(self.messages):
            if stored is message:
                del self.messages[index]
                return


class LLMTransport:
    """Conversation transport over LiteLLM.

    The transport keeps one message history per session. Each
    ``send_prompt`` appends the user turn, calls the model with the
    history and appends the assistant reply. Stored history is trimmed to
    the sliding window.

    Retries on: RateLimitError, ServiceUnavailableError, Timeout.
    Does NOT retry on: AuthenticationError, BadRequestError.
    Failures after the retry budget propagate to the caller.

    Attributes:
        retry_attempts: Number of retries for transient errors
        retry_delay: Base delay in seconds (exponential backoff, capped at 4s)
        max_history_messages: Sliding window size per session
        usage_tracker: Receives token usage of each successful call, if set
    """

    def __init__(
        self,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
        max_history_messages: int | None = None,
        request_timeout_seconds: int | None = None,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None else settings.llm_max_retries
        )
        self.retry_delay = retry_delay
        self.max_history_messages = max_history_messages or settings.context_max_messages
        self.request_timeout_seconds = (
            request_timeout_seconds or settings.llm_request_timeout_seconds
        )
        self._sessions: dict[str, _Conversation] = {}
        self.usage_tracker = usage_tracker

    async def create_session(self, title: str) -> SessionInfo:
        """Create a new, empty conversation.

        Args:
            title: Human-readable title for the conversation

        Returns:
            SessionInfo with the new session id
        """
        session_id = f"ses_{uuid4().hex[:12]}"
        self._sessions[session_id] = _Conversation(title=title)
        logger.info("llm_session_created", session_id=session_id, title=title)
        return SessionInfo(id=session_id, title=title)

    def delete_session(self, session_id: str) -> None:
        """Forget a conversation. Unknown ids are ignored."""
        self._sessions.pop(session_id, None)

    def list_sessions(self) -> list[SessionInfo]:
        """Return all live conversations, oldest first."""
        ordered = sorted(self._sessions.items(), key=lambda item: item[1].created_at)
        return [SessionInfo(id=sid, title=conv.title) for sid, conv in ordered]

    async def send_prompt(
        self,
        session_id: str,
        text: str,
        *,
        model: ModelRef | None = None,
        system: str | None = None,
        agent: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        attachments: list[str] | None = None,
    ) -> PromptResponse:
        """Send a user turn to a session and return the model's reply.

        Args:
            session_id: Target conversation
            text: User message text
            model: Model to use (defaults to get_default_model())
            system: System prompt prepended to the history for this call
            agent: Logical agent name, used for logging and usage accounting
            tools: Tool definitions forwarded to the model
            attachments: Image URLs or data URLs sent alongside the text

        Returns:
            PromptResponse with the first text part, all parts and the raw response

        Raises:
            SessionNotFoundError: If the session id is unknown
            AuthenticationError: If the provider rejects the credentials
            BadRequestError: If the request is malformed
            Exception: The last transient error once retries are exhausted
        """
        conversation = self._sessions.get(session_id)
        if conversation is None:
            raise SessionNotFoundError(session_id)

        model = model or get_default_model()
        user_message = self._user_message(text, attachments)
        conversation.messages.append(user_message)
        conversation.trim(self.max_history_messages)

        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend(conversation.window())

        start_time = time.time()
        try:
            response = await self._complete_with_retry(
                messages=messages,
                model=model.litellm_name,
                tools=tools,
            )
        except BaseException:
            # Other prompts may have been appended to this session meanwhile.
            conversation.discard(user_message)
            raise
        latency_ms = int((time.time() - start_time) * 1000)

        prompt_response = self._parse_response(response)
        conversation.messages.append(
            {"role": "assistant", "content": prompt_response.text or ""}
        )
        conversation.trim(self.max_history_messages)

        usage = getattr(response, "usage", None)
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        if self.usage_tracker is not None:
            self.usage_tracker.record(
                agent or "unknown",
                model.litellm_name,
                input_tokens,
                output_tokens,
                cost=estimate_cost(response, model.litellm_name, input_tokens, output_tokens),
            )

        logger.info(
            "llm_prompt_complete",
            session_id=session_id,
            agent=agent,
            model=model.litellm_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
            has_text=prompt_response.text is not None,
        )
        return prompt_response

    @staticmethod
    def _user_message(text: str, attachments: list[str] | None) -> dict[str, Any]:
        if not attachments:
            return {"role": "user", "content": text}
        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        content.extend(
            {"type": "image_url", "image_url": {"url": url}} for url in attachments
        )
        return {"role": "user", "content": content}

    async def _complete_with_retry(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None,
    ) -> ModelResponse:
        last_exception: Exception | None = None

        for attempt in range(self.retry_attempts + 1):
            try:
                return await self._make_request(messages=messages, model=model, tools=tools)
            except (RateLimitError, ServiceUnavailableError, Timeout) as e:
                last_exception = e
                if attempt < self.retry_attempts:
                    delay = min(self.retry_delay * (2 ** attempt), 4.0)
                    logger.warning(
                        "llm_call_retry",
                        model=model,
                        attempt=attempt + 1,
                        max_retries=self.retry_attempts,
                        error_type=type(e).__name__,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await self._async_sleep(delay)
                else:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        attempts=self.retry_attempts + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_failed_no_retry",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

        raise last_exception or Exception("LLM call failed after all retries")

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "timeout": self.request_timeout_seconds,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        return await acompletion(**kwargs)

    @staticmethod
    def _parse_response(response: ModelResponse) -> PromptResponse:
        message = response.choices[0].message
        parts: list[dict[str, Any]] = []

        if message.content:
            parts.append({"type": "text", "text": message.content})

        for tc in message.tool_calls or []:
            parts.append(
                {
                    "type": "tool",
                    "id": tc.id,
                    "name": tc.function.name,
                    "arguments": tc.function.arguments,
                }
            )

        text_part = next((p for p in parts if p["type"] == "text"), None)
        return PromptResponse(
            text=text_part["text"] if text_part else None,
            parts=parts,
            raw=response,
        )

    async def _async_sleep(self, seconds: float) -> None:
        """Async sleep for retry delay, separate for easier mocking."""
        await asyncio.sleep(seconds)
