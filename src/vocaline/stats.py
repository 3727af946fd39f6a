"""Aggregate matchmaking statistics pushed to every connected client."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vocaline.protocol import StatsUpdateMessage, to_envelope
from vocaline.registry import ConnectionRegistry
from vocaline.session import SessionState

logger = logging.getLogger(__name__)

# (session_id, envelope) -> delivered
Sender = Callable[[str, dict[str, Any]], bool]


@dataclass(frozen=True)
class StatsSnapshot:
    """Server-wide counts at one point in time."""

    connected_users: int
    waiting_users: int
    active_conversations: int

    def to_message(self) -> StatsUpdateMessage:
        return StatsUpdateMessage(
            connected_users=self.connected_users,
            waiting_users=self.waiting_users,
            active_conversations=self.active_conversations,
        )


class StatsBroadcaster:
    """Recomputes stats from the registry and sends them to all sessions."""

    def __init__(self, registry: ConnectionRegistry, send: Sender) -> None:
        self._registry = registry
        self._send = send

    def compute(self) -> StatsSnapshot:
        """Count registered, waiting and paired sessions.

        Each pairing yields two PAIRED records, so conversations are half the
        paired count.
        """
        return StatsSnapshot(
            connected_users=len(self._registry),
            waiting_users=len(self._registry.pool),
            active_conversations=self._registry.count_in_state(SessionState.PAIRED) // 2,
        )

    def broadcast(self) -> StatsSnapshot:
        """Push a fresh snapshot to every registered session.

        Returns:
            The snapshot that was broadcast
        """
        snapshot = self.compute()
        if not len(self._registry):
            return snapshot

        envelope = to_envelope(snapshot.to_message())
        delivered = 0
        for record in self._registry.records():
            if self._send(record.id, envelope):
                delivered += 1

        logger.debug(
            "Stats broadcast",
            extra={
                "connected": snapshot.connected_users,
                "waiting": snapshot.waiting_users,
                "conversations": snapshot.active_conversations,
                "delivered": delivered,
            },
        )
        return snapshot
