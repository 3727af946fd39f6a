"""Connection registry: the single owner of all session records."""

import logging
import uuid
from dataclasses import dataclass, field

from vocaline.pool import WaitingPool
from vocaline.session import SessionRecord, SessionState
from vocaline.transport.base import ClientConnection

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base exception for registry errors."""

    pass


class DuplicateConnectionError(RegistryError):
    """Raised when a connection handle is registered twice."""

    pass


class UnknownSessionError(RegistryError):
    """Raised when a session id is not registered."""

    pass


@dataclass
class RemovalResult:
    """Outcome of removing a session from the registry."""

    record: SessionRecord
    connection: ClientConnection
    # Sessions that still pointed at the removed one as their partner and were
    # put back into WAITING; the caller must notify and re-match them.
    orphaned_partners: list[str] = field(default_factory=list)


class ConnectionRegistry:
    """Maps session ids to session records and their connections.

    The registry owns the waiting pool so that removing a session and
    excising it from the pool happen in one step.
    """

    def __init__(self, pool: WaitingPool | None = None) -> None:
        self.pool = pool if pool is not None else WaitingPool()
        self._records: dict[str, SessionRecord] = {}
        self._connections: dict[str, ClientConnection] = {}
        self._by_connection: dict[ClientConnection, str] = {}

    def register(self, connection: ClientConnection) -> str:
        """Create a session record for a new connection.

        Args:
            connection: Newly accepted connection

        Returns:
            Generated session id (never reused)

        Raises:
            DuplicateConnectionError: If the connection is already registered
        """
        if connection in self._by_connection:
            raise DuplicateConnectionError(
                f"Connection already registered as {self._by_connection[connection]}"
            )

        session_id = uuid.uuid4().hex
        self._records[session_id] = SessionRecord(id=session_id)
        self._connections[session_id] = connection
        self._by_connection[connection] = session_id

        logger.debug(
            "Session registered",
            extra={"session_id": session_id, "remote": connection.remote_address},
        )
        return session_id

    def get(self, session_id: str | None) -> SessionRecord | None:
        """Look up a session record (None if absent)."""
        if session_id is None:
            return None
        return self._records.get(session_id)

    def require(self, session_id: str) -> SessionRecord:
        """Look up a session record that must exist.

        Raises:
            UnknownSessionError: If the session is not registered
        """
        record = self._records.get(session_id)
        if record is None:
            raise UnknownSessionError(f"Unknown session: {session_id}")
        return record

    def connection_for(self, session_id: str) -> ClientConnection | None:
        """Connection that owns a session (None if absent)."""
        return self._connections.get(session_id)

    def session_id_for(self, connection: ClientConnection) -> str | None:
        """Session id registered for a connection (None if absent)."""
        return self._by_connection.get(connection)

    def remove(self, session_id: str) -> RemovalResult:
        """Delete a session record and every reference to it.

        Removes the session from the waiting pool and clears ``partner`` and
        ``excluded_partner`` references held by other records. A record still
        paired with the removed session is moved back to WAITING and queued.

        Raises:
            UnknownSessionError: If the session is not registered
        """
        record = self._records.pop(session_id, None)
        if record is None:
            raise UnknownSessionError(f"Unknown session: {session_id}")

        connection = self._connections.pop(session_id)
        self._by_connection.pop(connection, None)
        self.pool.remove(session_id)

        result = RemovalResult(record=record, connection=connection)
        for other in self._records.values():
            if other.excluded_partner == session_id:
                other.excluded_partner = None
            if other.partner == session_id:
                logger.warning(
                    "Removed session was still referenced as partner",
                    extra={"session_id": session_id, "partner_id": other.id},
                )
                other.partner = None
                other.transition_state(SessionState.WAITING)
                self.pool.enqueue(other.id)
                result.orphaned_partners.append(other.id)

        logger.debug("Session removed", extra={"session_id": session_id})
        return result

    def records(self) -> list[SessionRecord]:
        """Snapshot of all registered records."""
        return list(self._records.values())

    def items(self) -> list[tuple[SessionRecord, ClientConnection]]:
        """Snapshot of all (record, connection) pairs."""
        return [(self._records[sid], conn) for sid, conn in self._connections.items()]

    def count_in_state(self, state: SessionState) -> int:
        return sum(1 for record in self._records.values() if record.state is state)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __len__(self) -> int:
        return len(self._records)
