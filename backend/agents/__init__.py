"""Agents, prompts and file extraction.

This module exports the components that drive LLM work:
- GameCoderAgent: generate -> extract -> write -> validate loop
- PlannerAgent: request -> dependency-annotated execution plan
- AgentSessionCache: agent name -> conversation id
- extract_files: fenced-file extraction from model replies
"""

from agents.extractor import GeneratedFile, extract_files, infer_type
from agents.game_coder import (
    AttemptFailure,
    AttemptOutcome,
    GameCoderAgent,
    GenerationResult,
)
from agents.planner import (
    ExecutionPlan,
    PlannerAgent,
    PlanResult,
    PlanStep,
    build_fallback_plan,
    parse_plan,
    resolve_step_dependencies,
)
from agents.prompts import (
    GAME_CODER_SYSTEM_PROMPT,
    PLANNER_PROMPT,
    build_extraction_retry_prompt,
    build_planner_prompt,
    build_validation_retry_prompt,
)
from agents.session_cache import AgentSessionCache

__all__ = [
    # Extraction
    "GeneratedFile",
    "extract_files",
    "infer_type",
    # Game Coder
    "AttemptFailure",
    "AttemptOutcome",
    "GameCoderAgent",
    "GenerationResult",
    # Planner
    "ExecutionPlan",
    "PlannerAgent",
    "PlanResult",
    "PlanStep",
    "build_fallback_plan",
    "parse_plan",
    "resolve_step_dependencies",
    # Prompts
    "GAME_CODER_SYSTEM_PROMPT",
    "PLANNER_PROMPT",
    "build_extraction_retry_prompt",
    "build_planner_prompt",
    "build_validation_retry_prompt",
    # Sessions
    "AgentSessionCache",
]
