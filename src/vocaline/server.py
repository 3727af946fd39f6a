"""Matchmaking server with WebSocket transport.

Main server implementation that:
1. Starts the WebSocket transport
2. Provides HTTP health check and metrics endpoints
3. Registers client connections with the session coordinator
4. Pairs waiting clients and relays their handshake envelopes
5. Shuts down gracefully on SIGINT/SIGTERM
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from vocaline.config import VocalineConfig
from vocaline.coordinator import SessionCoordinator
from vocaline.health import setup_health_routes
from vocaline.metrics import get_metrics_collector
from vocaline.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "configs" / "vocaline.yaml"


class VocalineServer:
    """Wires the coordinator, WebSocket transport and health server together.

    Thread-safety: This class is NOT thread-safe. Use from a single async task.
    """

    def __init__(self, config: VocalineConfig) -> None:
        """Initialize server.

        Args:
            config: Server configuration
        """
        self.config = config
        self.metrics = get_metrics_collector()
        self.coordinator = SessionCoordinator(config.matchmaking, metrics=self.metrics)
        self.transport = WebSocketTransport(self.coordinator, config.transport.websocket)
        self._health_runner: AppRunner | None = None

    async def start(self) -> None:
        """Start the transport and, if enabled, the health check server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If a port cannot be bound
        """
        await self.transport.start()

        if self.config.health.enabled:
            health_app = Application()
            setup_health_routes(health_app, self.coordinator, self.transport, self.metrics)

            self._health_runner = AppRunner(health_app)
            await self._health_runner.setup()
            site = TCPSite(self._health_runner, self.config.health.host, self.config.health_port)
            await site.start()
            logger.info("Health check server started", extra={"port": self.config.health_port})

        logger.info(
            "Vocaline server ready",
            extra={
                "port": self.transport.port,
                "match_delay_s": self.config.matchmaking.match_delay_s,
            },
        )

    async def stop(self) -> None:
        """Stop accepting clients, close connections and cancel pending matches."""
        logger.info("Shutting down Vocaline server")

        try:
            await asyncio.wait_for(
                self.transport.stop(), timeout=self.config.graceful_shutdown_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Transport did not stop within timeout",
                extra={"timeout_s": self.config.graceful_shutdown_timeout_s},
            )

        self.coordinator.shutdown()

        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None
            logger.info("Health check server stopped")

        logger.info("Vocaline server stopped")

    async def serve_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Run until ``stop_event`` is set or SIGINT/SIGTERM is received."""
        stop_event = stop_event or asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/thread, rely on KeyboardInterrupt
                pass

        await self.start()
        try:
            await stop_event.wait()
        except asyncio.CancelledError:
            logger.info("Server loop cancelled")
        finally:
            await self.stop()


async def start_server(config_path: Path | None = None) -> None:
    """Load configuration and run the server until interrupted.

    Args:
        config_path: Path to YAML config file (defaults are used if missing)

    Raises:
        ValueError: If configuration is invalid
    """
    config = VocalineConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    server = VocalineServer(config)
    await server.serve_forever()


def main() -> None:
    """Entry point for the matchmaking server."""
    parser = argparse.ArgumentParser(description="Vocaline matchmaking and signaling server")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to server config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Vocaline server interrupted")


if __name__ == "__main__":
    main()
