"""Ingestion controller package.

Re-exports all public symbols for convenient imports::

    from notestream.services.ingestion import IngestionController, IngestionConfig
"""

from .configs import (
    EmbedsConfig,
    IngestionConfig,
    MuteConfig,
    SourcesConfig,
    StreamingConfig,
    VerificationConfig,
)
from .service import IngestionController
from .utils import FeedTarget, OperationToken


__all__ = [
    "EmbedsConfig",
    "FeedTarget",
    "IngestionConfig",
    "IngestionController",
    "MuteConfig",
    "OperationToken",
    "SourcesConfig",
    "StreamingConfig",
    "VerificationConfig",
]
