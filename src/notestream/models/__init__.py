"""Pure frozen dataclasses with zero I/O for records, profiles, and filter rules.

The models layer is the foundation of the diamond DAG. It has **no
dependencies** on any other notestream package. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``
so invalid instances never escape the constructor.

Attributes:
    Record: Immutable Nostr event with NIP-01 JSON conversion.
    Profile: Author display fields with the never-downgrade merge rule.
    MuteRules: Normalized snapshot of muted authors, words, and topics.
    Relay: Validated relay URL with network detection. Rejects local IPs.
    ReferenceToken: A ``nostr:`` URI found in content.
    DecodedReference: Record id, author id, and relay hints of a token.

See Also:
    [notestream.models.relations][]: Reply and repost relation extraction.
    [notestream.models.constants][]: Shared enumerations and defaults.
"""

from .constants import (
    DEFAULT_FEED_LIMIT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SOURCES,
    EMBED_MAX_DEPTH,
    EVENT_KIND_MAX,
    BadgeState,
    BadgeSubject,
    EventKind,
    FailureKind,
    FeedMode,
    IngestionState,
    MergeMode,
    NetworkType,
    ReplyTargetPolicy,
)
from .mute import MuteRules
from .profile import Profile
from .record import Record
from .reference import DecodedReference, ReferenceToken, ReferenceType, scan_references
from .relations import parent_id, reply_target_author, repost_target_id, root_id
from .relay import Relay, merge_sources


__all__ = [
    "DEFAULT_FEED_LIMIT",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_SOURCES",
    "EMBED_MAX_DEPTH",
    "EVENT_KIND_MAX",
    "BadgeState",
    "BadgeSubject",
    "DecodedReference",
    "EventKind",
    "FailureKind",
    "FeedMode",
    "IngestionState",
    "MergeMode",
    "MuteRules",
    "NetworkType",
    "Profile",
    "Record",
    "ReferenceToken",
    "ReferenceType",
    "Relay",
    "ReplyTargetPolicy",
    "merge_sources",
    "parent_id",
    "reply_target_author",
    "repost_target_id",
    "root_id",
    "scan_references",
]
