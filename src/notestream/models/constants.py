"""Shared constants for the models layer.

Defines enumerations and defaults used across the models, services, and
utils layers. Placing them here avoids circular dependencies between
layers.

See Also:
    [notestream.models.relations][]: Uses
        [ReplyTargetPolicy][notestream.models.constants.ReplyTargetPolicy]
        to resolve implicit reply targets.
    [notestream.services.ingestion][]: Drives
        [IngestionState][notestream.models.constants.IngestionState]
        transitions.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class EventKind(IntEnum):
    """Well-known Nostr event kinds handled by the pipeline.

    Attributes:
        SET_METADATA: Kind 0, author profile metadata (NIP-01).
        TEXT_NOTE: Kind 1, plain text note (NIP-01). The only kind
            subject to content-based muting.
        CONTACTS: Kind 3, follow list (NIP-02).
        REPOST: Kind 6, repost carrying the original as JSON content (NIP-18).
    """

    SET_METADATA = 0
    TEXT_NOTE = 1
    CONTACTS = 3
    REPOST = 6


EVENT_KIND_MAX = 65_535


class FeedMode(StrEnum):
    """Which slice of the network a feed shows.

    Attributes:
        GLOBAL: Everything the sources offer (firehose).
        FOLLOWS: Records authored by a follow list.
        PROFILE: Records authored by one identity, reposts included.
    """

    GLOBAL = "global"
    FOLLOWS = "follows"
    PROFILE = "profile"


class IngestionState(StrEnum):
    """Lifecycle states of an ingestion controller.

    ``POLLING`` marks an incremental fetch in flight; between polls the
    controller rests in ``LOADED`` while the poll timer runs.
    """

    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    BATCH_FETCHING = "batch_fetching"
    LOADED = "loaded"
    POLLING = "polling"


class MergeMode(StrEnum):
    """Note store merge strategies.

    Attributes:
        REPLACE: The store becomes exactly the incoming set.
        APPEND: Only records whose id is not yet stored are inserted.
    """

    REPLACE = "replace"
    APPEND = "append"


class ReplyTargetPolicy(StrEnum):
    """How to pick a parent when no ``e`` tag carries the ``reply`` marker.

    Attributes:
        LAST_E_TAG: The last ``e`` tag is the implicit reply target.
        FIRST_E_TAG: The first ``e`` tag is the implicit reply target.
        MARKED_ONLY: No implicit target; unmarked records have no parent.
    """

    LAST_E_TAG = "last_e_tag"
    FIRST_E_TAG = "first_e_tag"
    MARKED_ONLY = "marked_only"


class BadgeState(StrEnum):
    """Verification badge shown next to a rendered record."""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class BadgeSubject(StrEnum):
    """Which signature a badge describes."""

    RECORD = "record"
    REPOST_ORIGINAL = "repost_original"


class FailureKind(StrEnum):
    """Category of a failure surfaced to the presentation layer."""

    TRANSPORT = "transport"
    DECODE = "decode"
    RESOLUTION = "resolution"


EMBED_MAX_DEPTH = 5
"""Embedded cards nest at most this many levels; deeper references render as text."""

DEFAULT_FEED_LIMIT = 50
DEFAULT_POLL_INTERVAL = 45.0
DEFAULT_REPLY_LIMIT = 500
UNREADABLE_MIN_LENGTH = 20

DEFAULT_SOURCES: tuple[str, ...] = (
    "wss://relay.damus.io",
    "wss://relay.primal.net",
    "wss://nos.lol",
)


class NetworkType(StrEnum):
    """Network a relay URL belongs to.

    Clearnet sources are forced onto ``wss://``; overlay networks keep
    ``ws://`` because the overlay encrypts. ``LOCAL`` and ``UNKNOWN`` only
    exist for detection and are rejected by
    [Relay][notestream.models.relay.Relay].
    """

    CLEARNET = "clearnet"
    TOR = "tor"
    I2P = "i2p"
    LOKI = "loki"
    LOCAL = "local"
    UNKNOWN = "unknown"
