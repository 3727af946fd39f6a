"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- Vocaline server lifecycle (WebSocket transport + health server)
- WebSocket client helpers for reading typed envelopes
"""

import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator
from typing import Any

import pytest_asyncio
from websockets.asyncio.client import ClientConnection

from vocaline.config import (
    HealthConfig,
    MatchmakingConfig,
    TransportConfig,
    VocalineConfig,
    WebSocketConfig,
)
from vocaline.server import VocalineServer

logger = logging.getLogger(__name__)

# Short debounce so matches form quickly in tests
TEST_MATCH_DELAY_S = 0.05
RECV_TIMEOUT_S = 5.0


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Returns:
        Available port number

    Notes:
        Uses ephemeral port allocation (port=0) to avoid conflicts.
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


def make_test_config() -> VocalineConfig:
    """Server config bound to localhost on free ports."""
    return VocalineConfig(
        transport=TransportConfig(
            websocket=WebSocketConfig(host="127.0.0.1", port=get_free_port())
        ),
        matchmaking=MatchmakingConfig(match_delay_s=TEST_MATCH_DELAY_S, random_seed=1),
        health=HealthConfig(host="127.0.0.1", port=get_free_port()),
        graceful_shutdown_timeout_s=2,
    )


@pytest_asyncio.fixture
async def vocaline_server() -> AsyncIterator[VocalineServer]:
    """Start a Vocaline server for one test.

    Yields:
        Running server (``transport.port`` is the WebSocket port)
    """
    server = VocalineServer(make_test_config())
    await server.start()
    logger.info("Test server started", extra={"port": server.transport.port})

    yield server

    await server.stop()


async def recv_envelope(ws: ClientConnection, timeout: float = RECV_TIMEOUT_S) -> dict[str, Any]:
    """Receive and decode one envelope."""
    raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
    envelope: dict[str, Any] = json.loads(raw)
    return envelope


async def recv_until(
    ws: ClientConnection, message_type: str, timeout: float = RECV_TIMEOUT_S
) -> dict[str, Any]:
    """Receive envelopes until one of ``message_type`` arrives.

    Returns:
        Payload of the matching envelope

    Raises:
        asyncio.TimeoutError: If no matching envelope arrives in time
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise asyncio.TimeoutError(f"No {message_type} envelope within {timeout}s")
        envelope = await recv_envelope(ws, timeout=remaining)
        if envelope["type"] == message_type:
            payload: dict[str, Any] = envelope["payload"]
            return payload


async def send_envelope(
    ws: ClientConnection, message_type: str, payload: dict[str, Any] | None = None
) -> None:
    await ws.send(json.dumps({"type": message_type, "payload": payload or {}}))
