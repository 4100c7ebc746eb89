"""
Prometheus metrics collection and HTTP exposition.

Module-level metric objects are shared by every controller. The
[BaseService][notestream.core.base_service.BaseService] helpers
``set_gauge()``, ``inc_counter()`` and ``observe_fetch()`` record into them
and are no-ops while metrics are disabled.

Architecture:
    SERVICE_GAUGE:            Point-in-time values (store size, failure streak).
    SERVICE_COUNTER:          Cumulative totals (records admitted, polls).
    CYCLE_DURATION_SECONDS:   Poll cycle latency histogram.
    FETCH_DURATION_SECONDS:   Upstream request latency histogram, per operation.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True.
    """

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Metrics
#
# Labels used by the ingestion controller:
#   gauge:   store_size, consecutive_failures, last_cycle_timestamp
#   counter: records_admitted, records_rejected, polls_completed,
#            transport_failures, cycles_success,
#            cycles_failed, errors_{type}
# ---------------------------------------------------------------------------

CYCLE_DURATION_SECONDS = Histogram(
    "notestream_cycle_duration_seconds",
    "Duration of a poll cycle in seconds",
    ["service"],
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60),
)

FETCH_DURATION_SECONDS = Histogram(
    "notestream_fetch_duration_seconds",
    "Duration of upstream requests in seconds",
    ["service", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

SERVICE_GAUGE = Gauge(
    "notestream_gauge",
    "Pipeline gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "notestream_counter",
    "Pipeline counter values (cumulative totals)",
    ["service", "name"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... feed runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind the endpoint; no-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Release the listening socket. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a [MetricsServer][notestream.core.metrics.MetricsServer].

    The caller must ``stop()`` it during shutdown.
    """
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
