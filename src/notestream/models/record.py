"""
Immutable feed record with NIP-01 JSON conversion.

A [Record][notestream.models.record.Record] is the unit the whole pipeline
moves around: one signed, content-addressed Nostr event. Records are
created once by the upstream adapter and never mutated afterwards.
Verification outcomes and author profiles live in side channels keyed by
``id`` and ``author_id``, never on the record itself.

See Also:
    [notestream.models.relations][]: Reply and repost relation extraction.
    [notestream.services.store.NoteStore][notestream.services.store.NoteStore]:
        Sorted, deduplicated container of records.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ._validation import (
    validate_hex_id,
    validate_instance,
    validate_optional_str,
    validate_str_no_null,
    validate_timestamp,
)
from .constants import EVENT_KIND_MAX, EventKind


Tags = tuple[tuple[str, ...], ...]


@dataclass(frozen=True, slots=True)
class Record:
    """Immutable Nostr event as seen by the feed pipeline.

    Attributes:
        id: 64-character lowercase hex event id (primary key).
        author_id: 64-character lowercase hex public key of the author.
        created_at: Unix timestamp in seconds.
        kind: Event kind (``1`` text note, ``6`` repost, ...).
        content: Raw event content.
        tags: Ordered tag arrays, each a tuple of strings.
        sig: Schnorr signature hex, carried through for verification.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If an id is malformed, the kind is out of range, or
            any string contains null bytes.

    Examples:
        ```python
        record = Record.from_dict({
            "id": "ab" * 32,
            "pubkey": "cd" * 32,
            "created_at": 1700000000,
            "kind": 1,
            "content": "hello",
            "tags": [["t", "nostr"]],
            "sig": "ef" * 64,
        })
        record.topics()   # frozenset({'nostr'})
        ```
    """

    id: str
    author_id: str
    created_at: int
    kind: int
    content: str
    tags: Tags = field(default=())
    sig: str | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_hex_id(self.id, "id")
        validate_hex_id(self.author_id, "author_id")
        validate_timestamp(self.created_at, "created_at")
        validate_timestamp(self.kind, "kind")
        if self.kind > EVENT_KIND_MAX:
            raise ValueError(f"kind must be <= {EVENT_KIND_MAX}, got {self.kind}")
        validate_str_no_null(self.content, "content")
        validate_optional_str(self.sig, "sig")

        # Normalize lists coming from JSON into nested tuples
        if not isinstance(self.tags, tuple) or any(not isinstance(t, tuple) for t in self.tags):
            object.__setattr__(self, "tags", _freeze_tags(self.tags))
        for tag in self.tags:
            for value in tag:
                validate_str_no_null(value, "tag value")

    # -------------------------------------------------------------------------
    # Tag helpers
    # -------------------------------------------------------------------------

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag named *name*, in tag order."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]  # noqa: PLR2004

    def topics(self) -> frozenset[str]:
        """Return lowercased ``t`` tag values with any leading ``#`` removed."""
        return frozenset(normalize_topic(value) for value in self.tag_values("t"))

    @property
    def is_text_note(self) -> bool:
        """Whether this record is a plain kind-1 note."""
        return self.kind == EventKind.TEXT_NOTE

    def embedded_repost(self) -> Record | None:
        """Return the reposted record carried in a kind-6 ``content``.

        Returns ``None`` for other kinds and for reposts whose content is
        empty or not a valid event object.
        """
        if self.kind != EventKind.REPOST or not self.content.strip():
            return None
        try:
            return Record.from_json(self.content)
        except (ValueError, TypeError):
            return None

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Record:
        """Build a record from a NIP-01 event object.

        Args:
            data: Mapping with ``id``, ``pubkey``, ``created_at``, ``kind``,
                ``content``, ``tags`` and optionally ``sig``.

        Raises:
            TypeError: If *data* is not a mapping or a field has the wrong type.
            ValueError: If a required key is missing or a value is invalid.
        """
        validate_instance(data, Mapping, "data")
        try:
            return cls(
                id=data["id"],
                author_id=data["pubkey"],
                created_at=data["created_at"],
                kind=data["kind"],
                content=data["content"],
                tags=_freeze_tags(data.get("tags") or []),
                sig=data.get("sig"),
            )
        except KeyError as e:
            raise ValueError(f"missing event field: {e.args[0]}") from None

    @classmethod
    def from_json(cls, raw: str) -> Record:
        """Parse a JSON-encoded NIP-01 event object.

        Raises:
            ValueError: If *raw* is not valid JSON or not a valid event.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid event json: {e}") from None
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 event object for this record."""
        data: dict[str, Any] = {
            "id": self.id,
            "pubkey": self.author_id,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
        }
        if self.sig is not None:
            data["sig"] = self.sig
        return data

    def to_json(self) -> str:
        """Return the compact JSON encoding of [to_dict()][notestream.models.record.Record.to_dict]."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


def normalize_topic(value: str) -> str:
    """Lowercase a topic and strip one leading ``#``."""
    value = value.lower()
    return value[1:] if value.startswith("#") else value


def _freeze_tags(tags: Any) -> Tags:
    if not isinstance(tags, list | tuple):
        raise TypeError(f"tags must be a list, got {type(tags).__name__}")
    frozen: list[tuple[str, ...]] = []
    for tag in tags:
        if not isinstance(tag, list | tuple):
            raise TypeError(f"tag must be a list, got {type(tag).__name__}")
        for value in tag:
            if not isinstance(value, str):
                raise TypeError(f"tag value must be a str, got {type(value).__name__}")
        frozen.append(tuple(tag))
    return tuple(frozen)
