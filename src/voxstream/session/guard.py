"""Pending-session guard — the session transition state machine.

    IDLE -> CREATING -> PENDING(id) -> SETTLING(id) -> IDLE

While a transition is in flight (CREATING, PENDING or SETTLING) background
session-list refreshes must not reset the active session. Every arm bumps a
generation counter so a settle timer started for an older transition can
never release a newer one.
"""

from __future__ import annotations

import enum
import logging

from voxstream.exceptions import SessionStateError

logger = logging.getLogger(__name__)


class SessionPhase(enum.Enum):
    IDLE = "idle"
    CREATING = "creating"  # Session being persisted, no id yet
    PENDING = "pending"  # Guard armed for an id
    SETTLING = "settling"  # Messages in place, waiting out the settle delay


_TRANSITIONS: dict[SessionPhase, set[SessionPhase]] = {
    SessionPhase.IDLE: {SessionPhase.CREATING, SessionPhase.PENDING},
    SessionPhase.CREATING: {SessionPhase.PENDING, SessionPhase.IDLE},
    SessionPhase.PENDING: {
        SessionPhase.PENDING,
        SessionPhase.CREATING,
        SessionPhase.SETTLING,
        SessionPhase.IDLE,
    },
    SessionPhase.SETTLING: {
        SessionPhase.PENDING,
        SessionPhase.CREATING,
        SessionPhase.IDLE,
    },
}


class PendingSessionGuard:
    """Single-value guard for the session currently in transition."""

    def __init__(self) -> None:
        self._phase = SessionPhase.IDLE
        self._session_id: str | None = None
        self._generation = 0

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_transition(self) -> bool:
        """True whenever a background refresh must leave the active session alone."""
        return self._phase is not SessionPhase.IDLE

    def holds(self, session_id: str) -> bool:
        return self._session_id is not None and self._session_id == session_id

    def begin_create(self) -> int:
        """A new session is about to be persisted.

        Returns the generation of this create, for ``abort_create()`` and
        ``is_current()``.
        """
        self._move(SessionPhase.CREATING)
        self._session_id = None
        self._generation += 1
        return self._generation

    def abort_create(self, generation: int) -> bool:
        """Session creation failed; go idle unless a newer transition took over.

        Returns True if the guard was reset.
        """
        if self._phase is not SessionPhase.CREATING or generation != self._generation:
            logger.debug(
                "Create %d superseded (guard is %s, gen %d)",
                generation,
                self._phase.value,
                self._generation,
            )
            return False
        self._move(SessionPhase.IDLE)
        return True

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def abandon(self) -> None:
        """Drop whatever transition is in flight and go idle.

        Bumps the generation so settle timers and creates started before
        this point can no longer act on the guard.
        """
        if self._phase is not SessionPhase.IDLE:
            self._move(SessionPhase.IDLE)
        self._session_id = None
        self._generation += 1

    def arm(self, session_id: str) -> int:
        """Guard ``session_id``, superseding any earlier transition."""
        if not session_id:
            raise ValueError("Cannot arm the guard without a session id")
        self._move(SessionPhase.PENDING)
        self._session_id = session_id
        self._generation += 1
        logger.debug("Guard armed for %s (gen %d)", session_id, self._generation)
        return self._generation

    def settle(self, session_id: str) -> int | None:
        """Start settling ``session_id``.

        Returns the generation to hand to ``release()``, or None if the
        guard has moved on to another transition in the meantime.
        """
        if self._phase is not SessionPhase.PENDING or not self.holds(session_id):
            logger.debug(
                "Not settling %s: guard is %s for %s",
                session_id,
                self._phase.value,
                self._session_id,
            )
            return None
        self._move(SessionPhase.SETTLING)
        return self._generation

    def release(self, session_id: str, generation: int) -> bool:
        """Clear the guard if it is still settling this exact transition."""
        if (
            self._phase is not SessionPhase.SETTLING
            or not self.holds(session_id)
            or generation != self._generation
        ):
            return False
        self._move(SessionPhase.IDLE)
        self._session_id = None
        return True

    def _move(self, target: SessionPhase) -> None:
        if target not in _TRANSITIONS[self._phase]:
            raise SessionStateError(self._phase.value, target.value)
        self._phase = target
