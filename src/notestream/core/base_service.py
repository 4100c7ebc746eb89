"""
Abstract base class for interval-driven pipeline components.

``BaseService[ConfigT]`` provides the lifecycle shared by components that
repeat a unit of work on a timer (the ingestion controller's poll cycle):
structured logging via [Logger][notestream.core.logger.Logger], graceful
shutdown via ``asyncio.Event``, interval-based cycling with
[run_forever()][notestream.core.base_service.BaseService.run_forever],
consecutive failure limits, and Prometheus metrics helpers.

See Also:
    [BaseServiceConfig][notestream.core.base_service.BaseServiceConfig]: Base
        configuration model.
    [IngestionController][notestream.services.ingestion.IngestionController]:
        The concrete subclass.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    FETCH_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    MetricsConfig,
)
from .yaml import load_yaml


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Base configuration shared by every interval-driven component.

    See Also:
        [BaseService][notestream.core.base_service.BaseService]: Consumes
            this configuration.
        [MetricsConfig][notestream.core.metrics.MetricsConfig]: Embedded
            Prometheus endpoint configuration.
    """

    interval: float = Field(
        default=45.0,
        ge=5.0,
        description="Seconds between poll cycles",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop cycling after this many consecutive errors (0 = unlimited)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Abstract base class for interval-driven components.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][notestream.core.base_service.BaseService.run].

    Attributes:
        SERVICE_NAME: Identifier used in logging and metric labels.
        CONFIG_CLASS: Pydantic model used by the factory methods.
        _config: Typed configuration.
        _logger: [Logger][notestream.core.logger.Logger] named after the service.
        _shutdown_event: Clear while running; set once shutdown is requested.

    Note:
        The lifecycle is ``async with service:`` then either single
        [run()][notestream.core.base_service.BaseService.run] calls or
        [run_forever()][notestream.core.base_service.BaseService.run_forever].
    """

    SERVICE_NAME: ClassVar[str]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, config: ConfigT | None = None) -> None:
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        """The typed configuration (read-only)."""
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """Execute one cycle of work.

        Called repeatedly by
        [run_forever()][notestream.core.base_service.BaseService.run_forever].
        """
        ...

    def request_shutdown(self) -> None:
        """Request a graceful stop. Safe to call from signal handlers."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Whether shutdown has not been requested yet."""
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Wait for a shutdown request or *timeout* seconds.

        Returns:
            ``True`` if shutdown was requested during the wait, ``False``
            if the timeout elapsed.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def run_forever(self) -> None:
        """Sleep ``config.interval`` seconds, run one cycle, repeat.

        The first cycle starts after one interval because the initial
        load happens outside this loop. Exits on shutdown or once
        ``config.max_consecutive_failures`` cycles in a row have raised
        (``0`` disables the limit). ``CancelledError`` always propagates.

        Tracked automatically: ``cycles_success``, ``cycles_failed`` and
        ``errors_{ExceptionType}`` counters, the ``consecutive_failures``
        and ``last_cycle_timestamp`` gauges, and ``CYCLE_DURATION_SECONDS``.
        """
        interval = self._config.interval
        max_consecutive_failures = self._config.max_consecutive_failures

        self._logger.info(
            "run_forever_started",
            interval=interval,
            max_consecutive_failures=max_consecutive_failures,
        )

        consecutive_failures = 0

        while self.is_running:
            if await self.wait(interval):
                break

            cycle_start = time.monotonic()
            try:
                await self.run()

                self.inc_counter("cycles_success")
                if self._config.metrics.enabled:
                    CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                        time.monotonic() - cycle_start
                    )
                self.set_gauge("last_cycle_timestamp", time.time())
                self.set_gauge("consecutive_failures", 0)
                consecutive_failures = 0

            except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                raise

            except Exception as e:  # Intentionally broad: top-level error boundary for run_forever
                consecutive_failures += 1
                self.inc_counter("cycles_failed")
                self.set_gauge("consecutive_failures", consecutive_failures)
                self.inc_counter(f"errors_{type(e).__name__}")

                self._logger.error(
                    "run_cycle_error",
                    error=str(e),
                    consecutive_failures=consecutive_failures,
                )

                if 0 < max_consecutive_failures <= consecutive_failures:
                    self._logger.critical(
                        "max_consecutive_failures_reached",
                        failures=consecutive_failures,
                        limit=max_consecutive_failures,
                    )
                    break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, **kwargs: Any) -> Self:
        """Create an instance from a YAML configuration file.

        Args:
            config_path: Path to the YAML file.
            **kwargs: Extra constructor arguments (the upstream, the target...).
        """
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> Self:
        """Create an instance from a configuration dictionary parsed into ``CONFIG_CLASS``."""
        config = cast("ConfigT", cls.CONFIG_CLASS(**data))
        return cls(config=config, **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set a named gauge for this service. No-op when metrics are disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment a named counter for this service. No-op when metrics are disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)

    def observe_fetch(self, operation: str, seconds: float) -> None:
        """Record the latency of one upstream request. No-op when metrics are disabled."""
        if not self._config.metrics.enabled:
            return
        FETCH_DURATION_SECONDS.labels(service=self.SERVICE_NAME, operation=operation).observe(
            seconds
        )
