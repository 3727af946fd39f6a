"""Matchmaking session records.

One ``SessionRecord`` exists per live connection. Records refer to each other
by session id only, so nothing holds a live reference to a record the
registry has already dropped.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from vocaline.protocol import DEFAULT_DISPLAY_NAME, SessionStatus

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session state machine states.

    State Transitions:
    - CONNECTED → WAITING (on join)
    - WAITING → PAIRED (on successful match)
    - WAITING → WAITING (on partner change while still queued)
    - PAIRED → WAITING (on partner change or partner leaving)
    - DISCONNECTED → WAITING (on re-join over the same connection)
    - * → DISCONNECTED (on leave)

    Closing the connection deletes the record from any state.
    """

    CONNECTED = "connected"
    WAITING = "waiting"
    PAIRED = "paired"
    DISCONNECTED = "disconnected"


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTED: {SessionState.WAITING, SessionState.DISCONNECTED},
    SessionState.WAITING: {
        SessionState.WAITING,
        SessionState.PAIRED,
        SessionState.DISCONNECTED,
    },
    SessionState.PAIRED: {SessionState.WAITING, SessionState.DISCONNECTED},
    SessionState.DISCONNECTED: {SessionState.WAITING, SessionState.DISCONNECTED},
}

# Client-facing status reported for each state
STATE_STATUS: dict[SessionState, SessionStatus] = {
    SessionState.CONNECTED: SessionStatus.CONNECTING,
    SessionState.WAITING: SessionStatus.WAITING_FOR_MATCH,
    SessionState.PAIRED: SessionStatus.IN_CALL,
    SessionState.DISCONNECTED: SessionStatus.DISCONNECTED,
}


@dataclass
class SessionRecord:
    """Server-side state of one connected client."""

    id: str
    display_name: str = DEFAULT_DISPLAY_NAME
    state: SessionState = SessionState.CONNECTED
    partner: str | None = None  # non-None iff state is PAIRED
    excluded_partner: str | None = None  # most recent former partner

    connected_at: float = field(default_factory=time.monotonic)
    waiting_since: float | None = None

    @property
    def status(self) -> SessionStatus:
        """Status value reported to the client."""
        return STATE_STATUS[self.state]

    @property
    def is_waiting(self) -> bool:
        return self.state is SessionState.WAITING

    @property
    def is_paired(self) -> bool:
        return self.state is SessionState.PAIRED and self.partner is not None

    def transition_state(self, new_state: SessionState) -> None:
        """Transition session to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        if new_state is SessionState.WAITING and old_state is not SessionState.WAITING:
            self.waiting_since = time.monotonic()
        elif new_state is not SessionState.WAITING:
            self.waiting_since = None

        logger.info(
            "Session state transition",
            extra={
                "session_id": self.id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )
