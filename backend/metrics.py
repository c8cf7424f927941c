"""In-memory token usage and cost tracking for LLM calls.

The transport records one entry per successful completion. Totals are
aggregated per agent and per model as entries arrive, so stats stay cheap
to read; only the most recent entries are kept verbatim.

Usage:
    >>> from metrics import UsageTracker
    >>> tracker = UsageTracker()
    >>> tracker.record("Game Coder", "anthropic/claude-3-5-haiku-20241022", 1200, 800)
    >>> tracker.get_stats().total_tokens
    2000
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import structlog
from litellm import completion_cost

logger = structlog.get_logger(__name__)

# USD per 1M tokens, used when LiteLLM has no price for the model.
FALLBACK_INPUT_COST_PER_MILLION = 5.0
FALLBACK_OUTPUT_COST_PER_MILLION = 15.0

MAX_RECENT_ENTRIES = 500


def flat_rate_cost(prompt_tokens: int, completion_tokens: int) -> float:
    return (
        prompt_tokens / 1_000_000 * FALLBACK_INPUT_COST_PER_MILLION
        + completion_tokens / 1_000_000 * FALLBACK_OUTPUT_COST_PER_MILLION
    )


def estimate_cost(
    response: Any,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
) -> float:
    """Estimated USD cost of one completion.

    Uses LiteLLM's price table; unpriced models fall back to a conservative
    flat rate.

    Args:
        response: The ModelResponse returned by LiteLLM
        model: LiteLLM model string, for logging
        prompt_tokens: Input tokens of the call
        completion_tokens: Output tokens of the call

    Returns:
        Cost in USD
    """
    try:
        return float(completion_cost(completion_response=response))
    except Exception as e:
        logger.debug("usage_cost_unpriced", model=model, error=str(e))
        return flat_rate_cost(prompt_tokens, completion_tokens)


@dataclass
class UsageEntry:
    """Token usage of a single LLM call."""

    agent: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost: float
    timestamp: float = field(default_factory=time.time)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class UsageBucket:
    messages: int = 0
    tokens: int = 0
    cost: float = 0.0

    def add(self, entry: UsageEntry) -> None:
        self.messages += 1
        self.tokens += entry.total_tokens
        self.cost += entry.cost


@dataclass
class UsageStats:
    """Aggregated usage since the last reset.

    Attributes:
        total_messages: Number of recorded LLM calls
        total_tokens: Sum of input and output tokens
        total_cost: Estimated USD cost
        by_agent: Per-agent buckets keyed by agent name
        by_model: Per-model buckets keyed by LiteLLM model string
    """

    total_messages: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    by_agent: dict[str, UsageBucket] = field(default_factory=dict)
    by_model: dict[str, UsageBucket] = field(default_factory=dict)


class UsageTracker:
    """Accumulates LLM token usage and estimated cost.

    Attributes:
        _stats: Running aggregate
        _recent: Bounded window of the latest entries
    """

    def __init__(self, max_recent_entries: int = MAX_RECENT_ENTRIES) -> None:
        self._stats = UsageStats()
        self._recent: deque[UsageEntry] = deque(maxlen=max_recent_entries)

    def record(
        self,
        agent: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        cost: float | None = None,
    ) -> UsageEntry:
        """Record one LLM call.

        Args:
            agent: Logical agent name (e.g. "Game Coder")
            model: LiteLLM model string
            prompt_tokens: Input tokens
            completion_tokens: Output tokens
            cost: Estimated USD cost; flat-rate estimate when None

        Returns:
            The recorded entry
        """
        if cost is None:
            cost = flat_rate_cost(prompt_tokens, completion_tokens)
        entry = UsageEntry(
            agent=agent,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=cost,
        )

        self._stats.total_messages += 1
        self._stats.total_tokens += entry.total_tokens
        self._stats.total_cost += entry.cost
        self._stats.by_agent.setdefault(agent, UsageBucket()).add(entry)
        self._stats.by_model.setdefault(model, UsageBucket()).add(entry)
        self._recent.append(entry)

        logger.debug(
            "usage_recorded",
            agent=agent,
            model=model,
            total_tokens=entry.total_tokens,
            cost=entry.cost,
        )
        return entry

    def get_stats(self) -> UsageStats:
        return self._stats

    def get_total_cost(self) -> float:
        return self._stats.total_cost

    def get_entries(self) -> list[UsageEntry]:
        """Most recent entries, oldest first."""
        return list(self._recent)

    def reset(self) -> None:
        logger.info("usage_reset", total_messages=self._stats.total_messages)
        self._stats = UsageStats()
        self._recent.clear()
