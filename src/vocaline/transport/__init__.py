"""Transport layer for client connections.

Provides the connection abstraction used by the session coordinator and
its WebSocket implementation.
"""

from vocaline.transport.base import ClientConnection, Transport
from vocaline.transport.websocket_transport import (
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "ClientConnection",
    "Transport",
    "WebSocketConnection",
    "WebSocketTransport",
]
