"""Infrastructure shared by every pipeline component.

Attributes:
    BaseService: Interval-driven lifecycle with shutdown, failure limits,
        and metrics helpers.
    BaseServiceConfig: Base Pydantic configuration for ``BaseService``.
    EventEmitter: Fan-out of typed pipeline events to renderers.
    Logger: Structured key=value / JSON logger.
    Upstream: Protocol of everything the pipeline needs from the network.
    MetricsServer: aiohttp endpoint for Prometheus scraping.

See Also:
    [notestream.core.exceptions][]: Exception hierarchy.
    [notestream.core.events][]: Event dataclasses.
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .events import (
    BadgeUpdated,
    EmbedsResolved,
    EventEmitter,
    FailureReported,
    FeedEmpty,
    PipelineEvent,
    ProfilePatched,
    RecordAdmitted,
    StateChanged,
    ViewRendered,
)
from .exceptions import (
    ConfigurationError,
    DecodeError,
    NoteStreamError,
    ResolutionError,
    TransportError,
    UpstreamError,
    VerificationError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import MetricsConfig, MetricsServer, start_metrics_server
from .upstream import StreamSubscription, Upstream, VerificationResult
from .yaml import load_yaml


__all__ = [
    "BadgeUpdated",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "DecodeError",
    "EmbedsResolved",
    "EventEmitter",
    "FailureReported",
    "FeedEmpty",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "NoteStreamError",
    "PipelineEvent",
    "ProfilePatched",
    "RecordAdmitted",
    "ResolutionError",
    "StateChanged",
    "StreamSubscription",
    "StructuredFormatter",
    "TransportError",
    "Upstream",
    "UpstreamError",
    "VerificationError",
    "VerificationResult",
    "ViewRendered",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
