"""WebSocket transport implementation.

Accepts client WebSocket connections, feeds every inbound frame to the
session coordinator and writes outbound envelopes from a bounded
per-connection queue so the coordinator never waits on a slow client.
"""

import asyncio
import json
import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response
from websockets.protocol import State

from vocaline.config import WebSocketConfig
from vocaline.transport.base import ClientConnection, Transport

if TYPE_CHECKING:
    from vocaline.coordinator import SessionCoordinator

logger = logging.getLogger(__name__)

HTTP_BANNER = "Vocaline WebSocket backend is running\n"

# "Try again later": the server is at its connection limit
CLOSE_CODE_TRY_AGAIN_LATER = 1013


class WebSocketConnection(ClientConnection):
    """WebSocket-backed client connection.

    Envelopes passed to ``send`` are queued and written by a background
    writer task in order. A closed socket or a full queue means the
    connection is not writable and the envelope is refused.
    """

    def __init__(self, websocket: ServerConnection, queue_size: int = 64) -> None:
        """Initialize WebSocket connection.

        Args:
            websocket: Accepted WebSocket connection
            queue_size: Maximum envelopes buffered for this client
        """
        self._websocket = websocket
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._writer_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def remote_address(self) -> str:
        address = self._websocket.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)

    @property
    def is_open(self) -> bool:
        """Check if the connection is still writable."""
        return not self._closed and self._websocket.state == State.OPEN

    def start(self) -> None:
        """Start the background writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer_loop())

    def send(self, envelope: dict[str, Any]) -> bool:
        if not self.is_open:
            return False

        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            return False
        return True

    async def _writer_loop(self) -> None:
        """Write queued envelopes to the socket until it closes."""
        try:
            while True:
                envelope = await self._queue.get()
                await self._websocket.send(json.dumps(envelope))
        except websockets.exceptions.ConnectionClosed:
            self._closed = True
        except Exception as e:
            self._closed = True
            logger.error(
                "Failed to write to WebSocket",
                extra={"remote": self.remote_address, "error": str(e)},
            )

    async def close(self) -> None:
        """Stop the writer and close the socket."""
        self._closed = True

        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None

        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"remote": self.remote_address, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Manages the WebSocket server lifecycle and drives the session
    coordinator from connection events.
    """

    def __init__(
        self, coordinator: "SessionCoordinator", config: WebSocketConfig | None = None
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            coordinator: Session coordinator receiving connection events
            config: WebSocket settings (defaults if None)
        """
        self._coordinator = coordinator
        self._config = config or WebSocketConfig()
        self._server: Server | None = None
        self._running = False

        logger.info(
            "WebSocket transport initialized",
            extra={
                "host": self._config.host,
                "port": self._config.port,
                "max_connections": self._config.max_connections,
            },
        )

    @property
    def transport_type(self) -> str:
        """Transport type identifier."""
        return "websocket"

    @property
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        return self._running

    @property
    def port(self) -> int:
        """Bound port (resolves port 0 after start)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._config.port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server",
            extra={"host": self._config.host, "port": self._config.port},
        )

        try:
            self._server = await serve(
                self._handle_connection,
                self._config.host,
                self._config.port,
                process_request=self._process_request,
                max_size=self._config.max_message_bytes,
                ping_interval=self._config.ping_interval_s,
                ping_timeout=self._config.ping_timeout_s,
            )
            self._running = True

            logger.info(
                "WebSocket server started",
                extra={"host": self._config.host, "port": self.port},
            )

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._config.host, "port": self._config.port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server, closing all open connections."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")

        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        """Answer plain HTTP requests (health probes, proxies) with a banner."""
        if request.headers.get("Upgrade", "").lower() != "websocket":
            return connection.respond(HTTPStatus.OK, HTTP_BANNER)
        return None

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Run one client connection from accept to close.

        Args:
            websocket: WebSocket connection
        """
        if len(self._coordinator) >= self._config.max_connections:
            self._coordinator.metrics.record_connection_rejected()
            logger.warning(
                "Connection limit reached, rejecting client",
                extra={"remote": websocket.remote_address},
            )
            await websocket.close(code=CLOSE_CODE_TRY_AGAIN_LATER, reason="Server full")
            return

        connection = WebSocketConnection(websocket, self._config.outbound_queue_size)
        connection.start()
        session_id = self._coordinator.connect(connection)

        try:
            async for raw_message in websocket:
                self._coordinator.handle_message(session_id, raw_message)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.info(
                "WebSocket connection closed abnormally",
                extra={"session_id": session_id, "code": e.rcvd.code if e.rcvd else None},
            )
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"session_id": session_id, "error": str(e)},
            )
        finally:
            self._coordinator.disconnect(session_id)
            await connection.close()
            logger.debug("WebSocket connection closed", extra={"session_id": session_id})
