"""Planner agent: turns a user request into an execution plan.

One LLM call produces a JSON plan of agent steps. The text is parsed
strictly and validated against a pydantic schema; anything that does not
fit becomes a single game-coder step carrying the original request, so
planning never fails on model output.
"""

import json
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from agents.game_coder import PromptTransport
from agents.prompts import build_planner_prompt
from agents.session_cache import AgentSessionCache
from config import settings
from llm.transport import ModelRef, PromptResponse

logger = structlog.get_logger()

FALLBACK_AGENT = "game-coder"
AUTOMATIC_AGENTS = frozenset({"debugger", "reviewer"})


class PlanStep(BaseModel):
    """One delegated task. ``depends_on`` holds agent names of earlier steps."""

    model_config = ConfigDict(populate_by_name=True)

    agent: str
    task: str
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")

    @field_validator("agent", "task")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v


class ExecutionPlan(BaseModel):
    """Ordered steps; ``total_steps`` always equals ``len(steps)``."""

    model_config = ConfigDict(populate_by_name=True)

    steps: list[PlanStep] = Field(min_length=1)
    total_steps: int = Field(default=0, alias="totalSteps")

    @model_validator(mode="after")
    def normalize_total_steps(self) -> "ExecutionPlan":
        self.total_steps = len(self.steps)
        return self


@dataclass
class PlanResult:
    """Outcome of create_plan().

    Attributes:
        plan: The accepted or fallback plan
        raw: Verbatim model text ("" when the model returned none)
        used_fallback: True when the model output was rejected
        dependency_indices: Per step, indices of the steps it depends on
    """

    plan: ExecutionPlan
    raw: str
    used_fallback: bool = False
    dependency_indices: list[list[int]] = field(default_factory=list)


def build_fallback_plan(user_request: str) -> ExecutionPlan:
    """Single game-coder step that carries the request verbatim."""
    return ExecutionPlan(steps=[PlanStep(agent=FALLBACK_AGENT, task=user_request)])


def parse_plan(raw: str) -> ExecutionPlan | None:
    """Parse model text into a plan.

    The whole text must be a JSON object matching the plan schema; no
    extraction from surrounding prose or code fences is attempted.

    Returns:
        The validated plan, or None when the text does not fit
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.warning("plan_parse_failed", reason="invalid_json", error=str(e))
        return None

    try:
        return ExecutionPlan.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "plan_parse_failed",
            reason="schema_mismatch",
            error_count=e.error_count(),
        )
        return None


def resolve_step_dependencies(plan: ExecutionPlan) -> list[list[int]]:
    """Resolve each step's agent-name dependencies to step indices.

    A name resolves to the nearest preceding step run by that agent.
    Names with no preceding match (unknown agents, forward references,
    a step naming only its own agent) are dropped with a warning.

    Args:
        plan: The plan to resolve

    Returns:
        One list of indices per step, in dependsOn order without duplicates
    """
    resolved: list[list[int]] = []
    for index, step in enumerate(plan.steps):
        indices: list[int] = []
        for name in step.depends_on:
            match = next(
                (j for j in range(index - 1, -1, -1) if plan.steps[j].agent == name),
                None,
            )
            if match is None:
                logger.warning(
                    "plan_dependency_unresolved",
                    step=index,
                    agent=step.agent,
                    depends_on=name,
                )
                continue
            if match not in indices:
                indices.append(match)
        resolved.append(indices)
    return resolved


class PlannerAgent:
    """Plans a user request with one call on a dedicated conversation.

    Usage:
        >>> planner = PlannerAgent(transport, session_cache)
        >>> result = await planner.create_plan("Make a platformer")
        >>> [step.agent for step in result.plan.steps]
    """

    SESSION_KEY = "Orchestrator"

    def __init__(
        self,
        transport: PromptTransport,
        session_cache: AgentSessionCache,
        model: ModelRef | None = None,
        max_steps: int | None = None,
    ) -> None:
        self.transport = transport
        self.session_cache = session_cache
        self.model = model
        self.max_steps = max_steps or settings.planner_max_steps
        self._session_id: str | None = None

    async def create_plan(self, user_request: str) -> PlanResult:
        """Ask the model for a plan, falling back to a single step.

        Args:
            user_request: Free-text request from the user

        Returns:
            PlanResult; never raises on malformed model output

        Raises:
            Exception: Transport failures propagate unchanged
        """
        if self._session_id is None:
            self._session_id = await self.session_cache.get_or_create(self.SESSION_KEY)

        response: PromptResponse = await self.transport.send_prompt(
            self._session_id,
            build_planner_prompt(user_request, self.max_steps),
            model=self.model,
            agent=self.SESSION_KEY,
        )
        raw = response.text or ""

        plan = parse_plan(raw)
        used_fallback = plan is None
        if plan is None:
            plan = build_fallback_plan(user_request)
            logger.info("plan_fallback_used", session_id=self._session_id)
        else:
            self._warn_on_rule_violations(plan)

        dependency_indices = resolve_step_dependencies(plan)
        logger.info(
            "plan_created",
            session_id=self._session_id,
            total_steps=plan.total_steps,
            agents=[step.agent for step in plan.steps],
            used_fallback=used_fallback,
        )
        return PlanResult(
            plan=plan,
            raw=raw,
            used_fallback=used_fallback,
            dependency_indices=dependency_indices,
        )

    def _warn_on_rule_violations(self, plan: ExecutionPlan) -> None:
        if plan.total_steps > self.max_steps:
            logger.warning(
                "plan_exceeds_step_cap",
                total_steps=plan.total_steps,
                max_steps=self.max_steps,
            )
        automatic = sorted({s.agent for s in plan.steps} & AUTOMATIC_AGENTS)
        if automatic:
            logger.warning("plan_includes_automatic_agents", agents=automatic)
