"""Health check endpoints for the matchmaking server.

Provides HTTP endpoints for load balancers, monitoring systems, and
orchestration tools (e.g., Docker healthcheck, Kubernetes liveness probe),
plus Prometheus metrics scraping.
"""

import logging
import time
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from vocaline.metrics import MetricsCollector, get_metrics_collector

if TYPE_CHECKING:
    from vocaline.coordinator import SessionCoordinator
    from vocaline.transport.base import Transport

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler.

    Provides /health (transport running, current matchmaking counts),
    /liveness, and /metrics for Prometheus scraping.
    """

    def __init__(
        self,
        coordinator: "SessionCoordinator",
        transport: "Transport | None" = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize health check handler.

        Args:
            coordinator: Session coordinator to report stats from
            transport: Client transport (optional)
            metrics: Metrics collector (global singleton if None)
        """
        self.coordinator = coordinator
        self.transport = transport
        self.start_time = time.time()
        self.metrics_collector = metrics or get_metrics_collector()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is accepting connections
            503 Service Unavailable: Transport is not running

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": {"type": str, "running": bool},
            "stats": {"connected_users": int, "waiting_users": int,
                      "active_conversations": int}
        }
        """
        transport_ok = self.transport is None or self.transport.is_running
        stats = asdict(self.coordinator.stats())

        response_data: dict[str, Any] = {
            "status": "healthy" if transport_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": {
                "type": self.transport.transport_type if self.transport else None,
                "running": transport_ok,
            },
            "stats": stats,
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=200 if transport_ok else 503)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even if the transport is down.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
        """
        try:
            metrics_text = self.metrics_collector.export_prometheus()

            return web.Response(
                text=metrics_text,
                content_type="text/plain; version=0.0.4",
                status=200,
            )

        except Exception as e:
            logger.error(
                "Failed to export metrics",
                extra={"error": str(e)},
                exc_info=True,
            )
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint (JSON)."""
        try:
            summary = self.metrics_collector.get_summary()

            return web.json_response(
                {
                    "status": "ok",
                    "uptime_seconds": time.time() - self.start_time,
                    "metrics": summary,
                },
                status=200,
            )

        except Exception as e:
            logger.error(
                "Failed to generate metrics summary",
                extra={"error": str(e)},
                exc_info=True,
            )
            return web.json_response({"status": "error", "error": str(e)}, status=500)


def setup_health_routes(
    app: web.Application,
    coordinator: "SessionCoordinator",
    transport: "Transport | None" = None,
    metrics: MetricsCollector | None = None,
) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        coordinator: Session coordinator to report stats from
        transport: Client transport (optional)
        metrics: Metrics collector (global singleton if None)
    """
    handler = HealthCheckHandler(coordinator, transport=transport, metrics=metrics)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info("Health check endpoints configured: /health, /liveness, /metrics, /metrics/summary")
