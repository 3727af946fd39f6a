"""Session coordinator: the single writer of all matchmaking state.

Every inbound event (connect, message, close, scheduled match attempt) is
handled by a synchronous method running on the event loop thread. Handlers
never await, so each event's read-modify-write sequence completes before the
next event starts and the registry, pool and records need no further locking.
Outbound envelopes are queued on the connections and written asynchronously
by the transport.

Thread-safety: This class is NOT thread-safe. Use from a single event loop.
"""

import asyncio
import functools
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import ValidationError

from vocaline.config import MatchmakingConfig
from vocaline.matchmaker import Matchmaker
from vocaline.metrics import MetricsCollector, get_metrics_collector
from vocaline.pool import WaitingPool
from vocaline.protocol import (
    HANDSHAKE_TYPES,
    ClientMessageType,
    ErrorMessage,
    InfoMessage,
    JoinPayload,
    MatchFoundMessage,
    MutePayload,
    PartnerDisconnectedMessage,
    ProtocolError,
    ServerMessage,
    StatusUpdateMessage,
    WelcomeMessage,
    parse_envelope,
    to_envelope,
)
from vocaline.registry import ConnectionRegistry
from vocaline.relay import SignalRelay
from vocaline.session import SessionRecord, SessionState
from vocaline.stats import StatsBroadcaster, StatsSnapshot
from vocaline.transport.base import ClientConnection

logger = logging.getLogger(__name__)

PARTNER_LEFT_MESSAGE = "Your partner has disconnected."
PARTNER_CHANGED_MESSAGE = "Your partner has moved on to a new conversation."
ALREADY_ACTIVE_MESSAGE = "Already in matchmaking"
USERNAME_REQUIRED_MESSAGE = "Username required"
NOT_IN_MATCHMAKING_MESSAGE = "Not in matchmaking"
INVALID_MUTE_MESSAGE = "isMuted must be a boolean"


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(ABC):
    """Runs callbacks after a delay on the coordinator's event loop."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        """Schedule ``callback`` to run after ``delay`` seconds."""
        pass


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class SessionCoordinator:
    """Orchestrates joins, pairings, partner changes and disconnects.

    Owns the connection registry (and through it the waiting pool), the
    matchmaker, the signal relay and the stats broadcaster. Nothing else may
    mutate matchmaking state.
    """

    def __init__(
        self,
        config: MatchmakingConfig | None = None,
        *,
        registry: ConnectionRegistry | None = None,
        matchmaker: Matchmaker | None = None,
        scheduler: Scheduler | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize session coordinator.

        Args:
            config: Matchmaking configuration (defaults if None)
            registry: Connection registry (a fresh one if None)
            matchmaker: Partner selection (seeded from config if None)
            scheduler: Delayed-call scheduler (event loop if None)
            metrics: Metrics collector (global singleton if None)
        """
        self.config = config or MatchmakingConfig()
        self.registry = registry or ConnectionRegistry()
        self.matchmaker = matchmaker or Matchmaker(seed=self.config.random_seed)
        self.metrics = metrics or get_metrics_collector()
        self._scheduler = scheduler or LoopScheduler()

        self.relay = SignalRelay(self._send, self.metrics)
        self.broadcaster = StatsBroadcaster(self.registry, self._send)

        # Pending match attempt per session
        self._pending: dict[str, Cancellable] = {}

        self._handlers: dict[str, Callable[[SessionRecord, dict[str, Any]], None]] = {
            ClientMessageType.JOIN.value: self._on_join,
            ClientMessageType.CHANGE_PARTNER.value: self._on_change_partner,
            ClientMessageType.DISCONNECT_FROM_MATCHMAKING.value: self._on_leave,
            ClientMessageType.MUTE.value: self._on_mute,
        }
        for message_type in HANDSHAKE_TYPES:
            self._handlers[message_type.value] = functools.partial(
                self._on_handshake, message_type.value
            )

    @property
    def pool(self) -> WaitingPool:
        """Waiting pool owned by the registry."""
        return self.registry.pool

    def __len__(self) -> int:
        return len(self.registry)

    def stats(self) -> StatsSnapshot:
        """Current aggregate counts."""
        return self.broadcaster.compute()

    # === Transport events ===

    def connect(self, connection: ClientConnection) -> str:
        """Register a newly opened connection.

        Returns:
            Session id assigned to the connection
        """
        session_id = self.registry.register(connection)
        self.metrics.record_connection_opened()

        logger.info(
            "Client connected",
            extra={"session_id": session_id, "remote": connection.remote_address},
        )

        self._send_message(session_id, WelcomeMessage())
        self._broadcast_stats()
        return session_id

    def handle_message(self, session_id: str, raw: str | bytes) -> None:
        """Dispatch one inbound frame.

        Malformed frames are discarded without a response; unknown envelope
        types are answered with an error envelope. Nothing raised by a
        handler escapes to the transport.
        """
        record = self.registry.get(session_id)
        if record is None:
            logger.debug("Message for unknown session dropped", extra={"session_id": session_id})
            return

        try:
            envelope = parse_envelope(raw)
        except ProtocolError as e:
            self.metrics.record_protocol_error()
            logger.debug(
                "Malformed envelope discarded",
                extra={"session_id": session_id, "error": str(e)},
            )
            return

        handler = self._handlers.get(envelope.type)
        if handler is None:
            self.metrics.record_protocol_error()
            logger.warning(
                "Unknown message type",
                extra={"session_id": session_id, "type": envelope.type},
            )
            self._send_message(
                session_id, ErrorMessage(message=f"Unknown message type: {envelope.type}")
            )
            return

        try:
            handler(record, envelope.payload)
        except Exception as e:
            logger.exception(
                "Error processing message",
                extra={"session_id": session_id, "type": envelope.type, "error": str(e)},
            )

    def disconnect(self, session_id: str) -> None:
        """Tear down a session whose connection closed.

        Dissolves any pairing exactly like a leave, then deletes the record.
        Unknown session ids are ignored.
        """
        record = self.registry.get(session_id)
        if record is None:
            return

        self._cancel_pending(session_id)
        partner_id = record.partner
        record.partner = None
        if partner_id is not None:
            self._release_partner(partner_id, record.id, PARTNER_LEFT_MESSAGE)

        result = self.registry.remove(session_id)
        for orphan_id in result.orphaned_partners:
            self._send_message(orphan_id, PartnerDisconnectedMessage(message=PARTNER_LEFT_MESSAGE))
            self._send_status(orphan_id)
            self._schedule_match(orphan_id)

        self.metrics.record_connection_closed(time.monotonic() - record.connected_at)
        logger.info(
            "Client disconnected",
            extra={"session_id": session_id, "username": record.display_name},
        )
        self._broadcast_stats()

    # === Client requests ===

    def _on_join(self, record: SessionRecord, payload: dict[str, Any]) -> None:
        if record.state in (SessionState.WAITING, SessionState.PAIRED):
            self._send_message(record.id, InfoMessage(message=ALREADY_ACTIVE_MESSAGE))
            return

        try:
            join = JoinPayload.model_validate(payload)
        except ValidationError:
            self._send_message(record.id, ErrorMessage(message=USERNAME_REQUIRED_MESSAGE))
            return

        record.display_name = join.username
        record.excluded_partner = None
        record.transition_state(SessionState.WAITING)
        self.pool.enqueue(record.id)
        self.metrics.record_join()

        logger.info(
            "Client joined matchmaking",
            extra={"session_id": record.id, "username": record.display_name},
        )

        self._send_status(record.id)
        self._schedule_match(record.id)
        self._broadcast_stats()

    def _on_change_partner(self, record: SessionRecord, payload: dict[str, Any]) -> None:
        if record.state not in (SessionState.WAITING, SessionState.PAIRED):
            self._send_message(record.id, ErrorMessage(message=NOT_IN_MATCHMAKING_MESSAGE))
            return

        former_partner = record.partner
        record.partner = None
        record.transition_state(SessionState.WAITING)
        # Requester re-enters at the front and its attempt is scheduled first
        self.pool.enqueue_front(record.id)
        self._schedule_match(record.id)

        if former_partner is not None:
            # Only the abandoned side records the exclusion
            self._release_partner(former_partner, record.id, PARTNER_CHANGED_MESSAGE)

        self.metrics.record_partner_change()
        logger.info(
            "Partner change requested",
            extra={"session_id": record.id, "former_partner_id": former_partner},
        )

        self._send_status(record.id)
        self._broadcast_stats()

    def _on_leave(self, record: SessionRecord, payload: dict[str, Any]) -> None:
        self._cancel_pending(record.id)

        partner_id = record.partner
        record.partner = None
        record.excluded_partner = None
        record.transition_state(SessionState.DISCONNECTED)
        self.pool.remove(record.id)

        if partner_id is not None:
            self._release_partner(partner_id, record.id, PARTNER_LEFT_MESSAGE)

        self.metrics.record_leave()
        logger.info(
            "Client left matchmaking",
            extra={"session_id": record.id, "former_partner_id": partner_id},
        )

        self._send_status(record.id)
        self._broadcast_stats()

    def _on_handshake(
        self, message_type: str, record: SessionRecord, payload: dict[str, Any]
    ) -> None:
        self.relay.relay(record, message_type, payload)

    def _on_mute(self, record: SessionRecord, payload: dict[str, Any]) -> None:
        try:
            mute = MutePayload.model_validate(payload)
        except ValidationError:
            self._send_message(record.id, ErrorMessage(message=INVALID_MUTE_MESSAGE))
            return

        self.relay.relay_mute(record, mute.is_muted)

    # === Matchmaking ===

    def attempt_match(self, session_id: str) -> bool:
        """Try to pair a waiting session with an eligible partner.

        A no-op if the session is gone, no longer waiting, or nobody is
        eligible; a later join, partner change or leave schedules a fresh
        attempt.

        Returns:
            True if a pairing was formed
        """
        requester = self.registry.get(session_id)
        if requester is None or not requester.is_waiting:
            return False

        partner = self.matchmaker.select_partner(
            requester, self.pool.snapshot(), self.registry.get
        )
        if partner is None:
            return False

        # Both sides must still be waiting at commit time
        if not (requester.is_waiting and partner.is_waiting):
            logger.warning(
                "Match candidate no longer waiting",
                extra={"session_id": requester.id, "partner_id": partner.id},
            )
            return False

        wait_seconds = (
            time.monotonic() - requester.waiting_since
            if requester.waiting_since is not None
            else None
        )

        self._cancel_pending(requester.id)
        self._cancel_pending(partner.id)
        self.pool.remove(requester.id)
        self.pool.remove(partner.id)
        for me, other in ((requester, partner), (partner, requester)):
            me.partner = other.id
            me.excluded_partner = None
            me.transition_state(SessionState.PAIRED)

        self.metrics.record_match(wait_seconds)
        logger.info(
            "Match formed",
            extra={"session_id": requester.id, "partner_id": partner.id},
        )

        # The side whose attempt succeeded leads the handshake
        self._send_message(
            requester.id,
            MatchFoundMessage(partner_username=partner.display_name, initiate_call=True),
        )
        self._send_message(
            partner.id,
            MatchFoundMessage(partner_username=requester.display_name, initiate_call=False),
        )
        self._broadcast_stats()
        return True

    def _schedule_match(self, session_id: str) -> None:
        """Schedule a debounced match attempt, replacing any pending one."""
        self._cancel_pending(session_id)
        self._pending[session_id] = self._scheduler.call_later(
            self.config.match_delay_s, lambda: self._run_scheduled_match(session_id)
        )

    def _run_scheduled_match(self, session_id: str) -> None:
        self._pending.pop(session_id, None)
        try:
            self.attempt_match(session_id)
        except Exception as e:
            logger.exception(
                "Scheduled match attempt failed",
                extra={"session_id": session_id, "error": str(e)},
            )

    def _cancel_pending(self, session_id: str) -> None:
        handle = self._pending.pop(session_id, None)
        if handle is not None:
            handle.cancel()

    def _release_partner(self, partner_id: str, outgoing_id: str, message: str) -> None:
        """Return a session whose partner went away to the waiting pool.

        Args:
            partner_id: Session left behind
            outgoing_id: Session that ended the pairing (excluded from rematch)
            message: Explanation sent with ``partner_disconnected``
        """
        partner = self.registry.get(partner_id)
        if partner is None:
            return

        partner.partner = None
        partner.excluded_partner = outgoing_id
        partner.transition_state(SessionState.WAITING)
        self.pool.enqueue(partner.id)

        self._send_message(partner.id, PartnerDisconnectedMessage(message=message))
        self._send_status(partner.id)
        self._schedule_match(partner.id)

    # === Outbound ===

    def _send(self, session_id: str, envelope: dict[str, Any]) -> bool:
        """Hand an envelope to a session's connection (fire-and-forget)."""
        connection = self.registry.connection_for(session_id)
        if connection is None:
            return False

        if connection.send(envelope):
            return True

        self.metrics.record_dropped_message()
        logger.warning(
            "Connection not writable, message dropped",
            extra={"session_id": session_id, "type": envelope.get("type")},
        )
        return False

    def _send_message(self, session_id: str, message: ServerMessage) -> bool:
        return self._send(session_id, to_envelope(message))

    def _send_status(self, session_id: str) -> None:
        record = self.registry.get(session_id)
        if record is not None:
            self._send_message(session_id, StatusUpdateMessage(status=record.status))

    def _broadcast_stats(self) -> None:
        snapshot = self.broadcaster.broadcast()
        self.metrics.update_population(
            snapshot.connected_users, snapshot.waiting_users, snapshot.active_conversations
        )

    def shutdown(self) -> None:
        """Cancel every pending match attempt."""
        for session_id in list(self._pending):
            self._cancel_pending(session_id)
