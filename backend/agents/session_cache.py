"""Agent name -> conversation handle cache.

Each logical agent (Game Coder, Orchestrator, ...) talks to the LLM
through one long-lived conversation. The cache creates that conversation
on first use and hands back the same id afterwards.

The cache is not synchronized. Two concurrent first lookups for the same
key may both create a conversation; the later one wins the mapping and
the earlier conversation stays alive in the transport but untracked.
Callers that need at most one conversation per agent must serialize
their first ``get_or_create`` call.
"""

from typing import Protocol

import structlog

from llm.transport import SessionInfo

logger = structlog.get_logger()


class SessionFactory(Protocol):
    """Anything that can open a titled conversation."""

    async def create_session(self, title: str) -> SessionInfo: ...


class AgentSessionCache:
    """Lazily created, explicitly cleared agent -> session id map."""

    def __init__(self, transport: SessionFactory) -> None:
        self.transport = transport
        self._sessions: dict[str, str] = {}

    @staticmethod
    def title_for(agent_key: str) -> str:
        """Conversation title used for an agent's session."""
        return f"Agent: {agent_key}"

    async def get_or_create(self, agent_key: str) -> str:
        """Return the session id for an agent, creating it on first use.

        Args:
            agent_key: Logical agent identity (e.g. "Game Coder")

        Returns:
            The cached or newly created session id
        """
        existing = self._sessions.get(agent_key)
        if existing:
            return existing

        session = await self.transport.create_session(self.title_for(agent_key))
        self._sessions[agent_key] = session.id
        logger.debug("agent_session_cached", agent=agent_key, session_id=session.id)
        return session.id

    def clear(self) -> int:
        """Drop every cached mapping.

        Conversations themselves are left to the transport.

        Returns:
            Number of entries removed
        """
        count = len(self._sessions)
        self._sessions.clear()
        logger.info("agent_sessions_cleared", count=count)
        return count

    def __contains__(self, agent_key: object) -> bool:
        return agent_key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
