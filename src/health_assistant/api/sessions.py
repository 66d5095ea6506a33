"""In-process registry of assistant conversations."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import uuid4

from health_assistant.services.conversation import ConversationService

_logger = logging.getLogger(__name__)


@dataclass
class SessionRegistry:
    """Keeps one conversation per session id."""

    factory: Callable[[], ConversationService]
    sessions: dict[str, ConversationService] = field(default_factory=dict)

    def create(self) -> str:
        session_id = str(uuid4())
        self.sessions[session_id] = self.factory()
        return session_id

    def get(self, session_id: str) -> ConversationService | None:
        return self.sessions.get(session_id)

    async def remove(self, session_id: str) -> bool:
        """Close and forget one conversation; return False when unknown."""
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        _logger.info("Closed assistant session %s", session_id)
        return True

    async def close_all(self) -> None:
        """Stop background work for every conversation."""
        sessions = list(self.sessions.values())
        self.sessions.clear()
        await asyncio.gather(*(session.close() for session in sessions))
        _logger.info("Closed %s assistant sessions", len(sessions))
