"""
Inline ``nostr:`` reference tokens (NIP-21 / NIP-19).

Record content may mention authors (``npub1...``, ``nprofile1...``) and
other records (``note1...``, ``nevent1...``) with ``nostr:`` URIs.
[scan_references()][notestream.models.reference.scan_references] finds
them; decoding the bech32 payload is an upstream concern and yields a
[DecodedReference][notestream.models.reference.DecodedReference].
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

from ._validation import validate_hex_id


_REFERENCE_PATTERN = re.compile(r"nostr:(n(?:event|profile|pub|ote)1[a-z0-9]+)", re.IGNORECASE)


class ReferenceType(StrEnum):
    """Bech32 entity carried by a reference token."""

    NOTE = "note"
    EVENT = "nevent"
    PUBKEY = "npub"
    PROFILE = "nprofile"

    @property
    def targets_record(self) -> bool:
        """Whether the reference points at a record rather than an author."""
        return self in (ReferenceType.NOTE, ReferenceType.EVENT)


@dataclass(frozen=True, slots=True)
class ReferenceToken:
    """One ``nostr:`` URI found in content.

    Attributes:
        raw: The token exactly as it appeared, ``nostr:`` prefix included.
        entity: The bech32 string without the prefix.
        type: The [ReferenceType][notestream.models.reference.ReferenceType]
            derived from the bech32 prefix.
        start: Offset of ``raw`` in the scanned content.
        end: Offset just past ``raw``.
    """

    raw: str
    entity: str
    type: ReferenceType
    start: int = field(default=0, compare=False)
    end: int = field(default=0, compare=False)


@dataclass(frozen=True, slots=True)
class DecodedReference:
    """Result of decoding a reference token.

    Exactly one of ``record_id`` and ``author_id`` is required; a
    ``nevent`` may carry both the record id and its author.

    Attributes:
        type: Entity type of the token.
        record_id: Hex id of the referenced record.
        author_id: Hex id of the referenced (or authoring) identity.
        relay_hints: Relay URLs embedded in the entity.
    """

    type: ReferenceType
    record_id: str | None = None
    author_id: str | None = None
    relay_hints: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.record_id is None and self.author_id is None:
            raise ValueError("decoded reference carries neither a record nor an author id")
        if self.record_id is not None:
            validate_hex_id(self.record_id, "record_id")
        if self.author_id is not None:
            validate_hex_id(self.author_id, "author_id")
        object.__setattr__(self, "relay_hints", tuple(self.relay_hints))


def _reference_type(entity: str) -> ReferenceType:
    prefix = entity.lower().split("1", 1)[0]
    return ReferenceType(prefix)


def scan_references(content: str) -> list[ReferenceToken]:
    """Return every ``nostr:`` reference token in *content*, in order of appearance."""
    return [
        ReferenceToken(
            raw=match.group(0),
            entity=match.group(1),
            type=_reference_type(match.group(1)),
            start=match.start(),
            end=match.end(),
        )
        for match in _REFERENCE_PATTERN.finditer(content)
    ]
