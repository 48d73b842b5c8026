from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from .controller import ConversationController
from .state import ConversationState, IntakeError

logger = logging.getLogger(__name__)

# Sessions in these states accept no further dialogue.
_FINISHED_STATES = frozenset(
    {ConversationState.SAVED, ConversationState.CANCELLED, ConversationState.UNAVAILABLE}
)
# An operation is running; the session is never evicted underneath it.
_BUSY_STATES = frozenset(
    {ConversationState.INITIALIZING, ConversationState.AI_RESPONDING, ConversationState.SAVING}
)


class SessionNotFoundError(IntakeError):
    """Raised when a session does not exist or belongs to someone else."""


@dataclass(slots=True)
class _Entry:
    controller: ConversationController
    last_seen: float


class SessionRegistry:
    """In-process map of open intake sessions, each owned by one user.

    Finished sessions and sessions idle for longer than ``idle_timeout``
    seconds are evicted on every :meth:`add`. An owner keeps at most
    ``max_per_owner`` sessions; the least recently used ones go first.
    """

    def __init__(
        self,
        *,
        idle_timeout: float | None = 1800.0,
        max_per_owner: int | None = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, _Entry] = {}
        self._idle_timeout = idle_timeout
        self._max_per_owner = max_per_owner
        self._clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    async def add(self, controller: ConversationController) -> str:
        await self.sweep()
        await self._enforce_owner_limit(controller.reporter.uid)
        session_id = uuid4().hex
        self._sessions[session_id] = _Entry(controller, self._clock())
        logger.info("Registered intake session %s for %s", session_id, controller.reporter.uid)
        return session_id

    def get(self, session_id: str, owner_uid: str) -> ConversationController:
        entry = self._sessions.get(session_id)
        if entry is None or entry.controller.reporter.uid != owner_uid:
            raise SessionNotFoundError(f"Intake session {session_id} not found")
        entry.last_seen = self._clock()
        return entry.controller

    async def discard(self, session_id: str) -> None:
        entry = self._sessions.pop(session_id, None)
        if entry is not None:
            await entry.controller.aclose()

    async def sweep(self) -> int:
        """Evict finished and idle sessions; return how many were removed."""

        now = self._clock()
        expired = [
            session_id
            for session_id, entry in self._sessions.items()
            if entry.controller.state in _FINISHED_STATES
            or (
                self._idle_timeout is not None
                and entry.controller.state not in _BUSY_STATES
                and now - entry.last_seen > self._idle_timeout
            )
        ]
        for session_id in expired:
            await self.discard(session_id)
        if expired:
            logger.info("Evicted %d intake session(s)", len(expired))
        return len(expired)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.discard(session_id)

    async def _enforce_owner_limit(self, owner_uid: str) -> None:
        if self._max_per_owner is None:
            return
        owned = sorted(
            (
                (entry.last_seen, session_id)
                for session_id, entry in self._sessions.items()
                if entry.controller.reporter.uid == owner_uid and entry.controller.state not in _BUSY_STATES
            ),
        )
        excess = sum(1 for entry in self._sessions.values() if entry.controller.reporter.uid == owner_uid)
        excess -= self._max_per_owner - 1
        for _, session_id in owned[: max(excess, 0)]:
            logger.info("Evicting intake session %s: %s reached the session limit", session_id, owner_uid)
            await self.discard(session_id)
