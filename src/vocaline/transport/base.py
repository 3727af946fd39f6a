"""Base transport abstraction for client connections.

Defines the interface the session coordinator uses to talk to clients, so
matchmaking logic stays independent of the wire transport.
"""

from abc import ABC, abstractmethod
from typing import Any


class ClientConnection(ABC):
    """One bidirectional, message-oriented client connection.

    Sends are fire-and-forget: the coordinator never awaits delivery and
    never blocks on a slow receiver.
    """

    @abstractmethod
    def send(self, envelope: dict[str, Any]) -> bool:
        """Queue an envelope for delivery to the client.

        Args:
            envelope: JSON-serializable ``{type, payload}`` envelope

        Returns:
            True if the envelope was accepted, False if the connection is not
            currently writable (closed or its outbound buffer is full)
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release transport resources."""
        pass

    @property
    @abstractmethod
    def remote_address(self) -> str:
        """Peer address for logging."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the connection is still writable."""
        pass


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a transport server that accepts client
    connections and hands them to the session coordinator.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Initialize and bind the transport server to begin accepting connections.
        This should be non-blocking and return once the server is ready.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails (for network transports)
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server.

        Gracefully shut down the transport, closing all active connections and
        releasing resources.
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
