"""Ingestion controller configuration models.

See Also:
    [IngestionController][notestream.services.ingestion.IngestionController]:
        The controller that consumes these configurations.
    [BaseServiceConfig][notestream.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures`` and
        ``metrics``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from notestream.core.base_service import BaseServiceConfig
from notestream.models.constants import (
    DEFAULT_FEED_LIMIT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SOURCES,
    ReplyTargetPolicy,
)
from notestream.models.mute import MuteRules
from notestream.models.relay import Relay


class SourcesConfig(BaseModel):
    """Relays queried for every feed request.

    URLs are normalized on load (``ws://`` clearnet upgraded to ``wss://``,
    trailing slashes removed, duplicates dropped).
    """

    relays: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SOURCES),
        min_length=1,
        description="Relay URLs",
    )
    request_timeout: float = Field(
        default=10.0, ge=1.0, le=120.0, description="Per-relay request timeout in seconds"
    )

    @field_validator("relays", mode="after")
    @classmethod
    def normalize_relays(cls, v: list[str]) -> list[str]:
        """Validate every URL with [Relay][notestream.models.relay.Relay] and deduplicate."""
        normalized: list[str] = []
        for raw in v:
            url = Relay(raw).url
            if url not in normalized:
                normalized.append(url)
        return normalized


class StreamingConfig(BaseModel):
    """Push-stream delivery for the initial load."""

    enabled: bool = Field(default=True, description="Stream the initial load instead of batching")
    timeout: float = Field(
        default=15.0,
        ge=1.0,
        le=300.0,
        description="Treat the stream as ended if end-of-stream has not arrived by then",
    )


class VerificationConfig(BaseModel):
    """Background signature checks."""

    enabled: bool = Field(default=True, description="Verify signatures of admitted records")
    delay: float = Field(
        default=0.01, ge=0.0, le=1.0, description="Seconds between two check launches"
    )


class EmbedsConfig(BaseModel):
    """Embedded reference resolution."""

    enabled: bool = Field(default=True, description="Resolve nostr: references in content")


class MuteConfig(BaseModel):
    """User mute preferences, converted into an immutable rule snapshot.

    See Also:
        [MuteRules][notestream.models.mute.MuteRules]: The snapshot handed
            to the filter engine.
    """

    muted_users: list[str] = Field(default_factory=list, description="Muted author ids")
    muted_words: list[str] = Field(default_factory=list, description="Muted words or phrases")
    muted_hashtags: list[str] = Field(default_factory=list, description="Muted topic tags")
    hide_encrypted_notes: bool = Field(
        default=True, description="Hide text notes whose content looks encoded"
    )

    def to_rules(self) -> MuteRules:
        """Return the normalized [MuteRules][notestream.models.mute.MuteRules]."""
        return MuteRules.build(
            muted_authors=self.muted_users,
            muted_words=self.muted_words,
            muted_topics=self.muted_hashtags,
            hide_unreadable=self.hide_encrypted_notes,
        )


class IngestionConfig(BaseServiceConfig):
    """Ingestion controller configuration.

    ``interval`` (inherited) is the poll period and defaults to 45 seconds.
    """

    interval: float = Field(
        default=DEFAULT_POLL_INTERVAL, ge=5.0, description="Seconds between poll cycles"
    )
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    limit: int = Field(
        default=DEFAULT_FEED_LIMIT, ge=1, le=500, description="Records per feed request"
    )
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    embeds: EmbedsConfig = Field(default_factory=EmbedsConfig)
    mute: MuteConfig = Field(default_factory=MuteConfig)
    reply_policy: ReplyTargetPolicy = Field(
        default=ReplyTargetPolicy.LAST_E_TAG,
        description="Parent selection for replies without a reply marker",
    )
