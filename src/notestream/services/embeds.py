"""
Recursive resolution of ``nostr:`` references into render segments.

Content is split into segments: plain text, author mentions, embedded
record cards, and references left as plain text. Embedded cards are
resolved breadth-first, one depth level at a time, so every level costs a
single batched record fetch however many references it holds.

Depth counts from the record being displayed (depth 0). A reference found
at depth ``d`` becomes a card at level ``d + 1`` when ``d`` is below the
maximum depth; the card's own content is then processed at depth
``d + 1``. With the default maximum of 5, levels 1 to 5 are cards and a
reference inside a level-5 card stays plain text. The bound holds for
self-referencing content as well.

Results of decoding and fetching are memoized for the duration of one
resolution pass.

See Also:
    [scan_references()][notestream.models.reference.scan_references]:
        Token scanner used to split content.
    [ProfileCache][notestream.services.profiles.ProfileCache]: Hydrates
        the authors of mentions and cards.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from notestream.core.exceptions import NoteStreamError
from notestream.core.logger import Logger
from notestream.core.upstream import Upstream
from notestream.models.constants import EMBED_MAX_DEPTH
from notestream.models.record import Record
from notestream.models.reference import DecodedReference, ReferenceToken, scan_references
from notestream.models.relay import merge_sources

from .profiles import ProfileCache


class EmbedStatus(StrEnum):
    """Resolution state of an embedded card."""

    PENDING = "pending"
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class TextSegment:
    """Literal content between references."""

    text: str


@dataclass(slots=True)
class ProfileMention:
    """An ``npub``/``nprofile`` reference, rendered as a link to the author."""

    token: ReferenceToken
    author_id: str | None = None
    display_name: str | None = None


@dataclass(slots=True)
class RecordEmbed:
    """A ``note``/``nevent`` reference rendered as a nested card.

    Attributes:
        token: The reference as it appeared in content.
        level: Nesting level of the card, starting at 1.
        status: Resolution state.
        record: The referenced record once resolved.
        author_name: Cached display name of the record's author.
        segments: The record's own content, resolved one level deeper.
    """

    token: ReferenceToken
    level: int
    status: EmbedStatus = EmbedStatus.PENDING
    record: Record | None = None
    author_name: str | None = None
    segments: list[Segment] = field(default_factory=list)


@dataclass(slots=True)
class PlainReference:
    """A record reference past the depth bound, rendered as plain text."""

    token: ReferenceToken


Segment = TextSegment | ProfileMention | RecordEmbed | PlainReference


@dataclass(slots=True)
class _ResolutionCache:
    decoded: dict[str, DecodedReference | None] = field(default_factory=dict)
    records: dict[str, Record | None] = field(default_factory=dict)


class EmbedResolver:
    """Split content into segments and resolve embedded references.

    Args:
        upstream: Decodes tokens and fetches referenced records.
        profiles: Shared profile cache for mention and card authors.
        sources: Relays queried in addition to any relay hints.
        max_depth: Deepest card level that is still expanded.
    """

    def __init__(
        self,
        upstream: Upstream,
        profiles: ProfileCache,
        sources: Sequence[str],
        *,
        max_depth: int = EMBED_MAX_DEPTH,
    ) -> None:
        self._upstream = upstream
        self._profiles = profiles
        self._sources = list(sources)
        self._max_depth = max_depth
        self._logger = Logger("embeds")

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def segment(self, content: str, depth: int = 0) -> list[Segment]:
        """Split *content* found at *depth* into unresolved segments."""
        segments: list[Segment] = []
        cursor = 0
        for token in scan_references(content):
            if token.start > cursor:
                segments.append(TextSegment(content[cursor : token.start]))
            cursor = token.end

            if not token.type.targets_record:
                segments.append(ProfileMention(token))
            elif depth < self._max_depth:
                segments.append(RecordEmbed(token, level=depth + 1))
            else:
                segments.append(PlainReference(token))

        if cursor < len(content):
            segments.append(TextSegment(content[cursor:]))
        return segments

    async def resolve(self, record: Record, depth: int = 0) -> list[Segment]:
        """Return the fully resolved segments of *record*'s content."""
        resolved = await self.resolve_many([record], depth)
        return resolved[record.id]

    async def resolve_many(
        self, records: Sequence[Record], depth: int = 0
    ) -> dict[str, list[Segment]]:
        """Resolve the content of several records in one breadth-first pass.

        Returns:
            Segments keyed by record id.
        """
        cache = _ResolutionCache()
        result = {record.id: self.segment(record.content, depth) for record in records}
        frontier: list[Segment] = [s for segments in result.values() for s in segments]

        while frontier:
            frontier = await self._resolve_level(frontier, cache)

        return result

    async def _resolve_level(self, frontier: list[Segment], cache: _ResolutionCache) -> list[Segment]:
        mentions = [s for s in frontier if isinstance(s, ProfileMention)]
        embeds = [
            s for s in frontier if isinstance(s, RecordEmbed) and s.status == EmbedStatus.PENDING
        ]
        if not mentions and not embeds:
            return []

        await self._decode_all([s.token for s in (*mentions, *embeds)], cache)

        mention_authors: list[str] = []
        for mention in mentions:
            decoded = cache.decoded.get(mention.token.entity)
            if decoded is not None and decoded.author_id is not None:
                mention.author_id = decoded.author_id
                mention_authors.append(decoded.author_id)

        wanted: list[str] = []
        hints: list[str] = []
        for embed in embeds:
            decoded = cache.decoded.get(embed.token.entity)
            if decoded is None or decoded.record_id is None:
                embed.status = EmbedStatus.NOT_FOUND
                continue
            if decoded.record_id not in cache.records:
                wanted.append(decoded.record_id)
            hints.extend(decoded.relay_hints)

        await asyncio.gather(
            self._profiles.ensure(mention_authors),
            self._fetch_records(list(dict.fromkeys(wanted)), hints, cache),
        )

        next_frontier: list[Segment] = []
        card_authors: list[str] = []
        for embed in embeds:
            if embed.status != EmbedStatus.PENDING:
                continue
            decoded = cache.decoded[embed.token.entity]
            record = cache.records.get(decoded.record_id) if decoded else None
            if record is None:
                embed.status = EmbedStatus.NOT_FOUND
                continue
            embed.record = record
            embed.status = EmbedStatus.RESOLVED
            embed.segments = self.segment(record.content, embed.level)
            next_frontier.extend(embed.segments)
            card_authors.append(record.author_id)

        if card_authors:
            await self._profiles.ensure(card_authors)

        for mention in mentions:
            if mention.author_id is not None:
                mention.display_name = self._profiles.display_name(mention.author_id)
        for embed in embeds:
            if embed.record is not None:
                embed.author_name = self._profiles.display_name(embed.record.author_id)

        return next_frontier

    async def _decode_all(self, tokens: list[ReferenceToken], cache: _ResolutionCache) -> None:
        entities = list(dict.fromkeys(t.entity for t in tokens if t.entity not in cache.decoded))
        if not entities:
            return
        outcomes = await asyncio.gather(
            *(self._upstream.decode_reference(entity) for entity in entities),
            return_exceptions=True,
        )
        for entity, outcome in zip(entities, outcomes, strict=True):
            if isinstance(outcome, NoteStreamError | ValueError):
                self._logger.debug("reference_undecodable", entity=entity, error=str(outcome))
                cache.decoded[entity] = None
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                cache.decoded[entity] = outcome

    async def _fetch_records(
        self, ids: list[str], hints: list[str], cache: _ResolutionCache
    ) -> None:
        if not ids:
            return
        sources = merge_sources(self._sources, hints)
        try:
            fetched = await self._upstream.fetch_records_by_ids(sources, ids)
        except NoteStreamError as e:
            self._logger.warning("embed_fetch_failed", count=len(ids), error=str(e))
            fetched = []
        by_id = {record.id: record for record in fetched}
        for record_id in ids:
            cache.records[record_id] = by_id.get(record_id)


def to_text(segments: Sequence[Segment], indent: str = "  ") -> str:
    """Render segments as indented plain text, one line per card."""
    parts: list[str] = []
    for segment in segments:
        if isinstance(segment, TextSegment):
            parts.append(segment.text)
        elif isinstance(segment, ProfileMention):
            parts.append(f"@{segment.display_name or segment.token.entity[:16]}")
        elif isinstance(segment, PlainReference):
            parts.append(segment.token.raw)
        elif segment.status == EmbedStatus.RESOLVED and segment.record is not None:
            author = segment.author_name or segment.record.author_id[:8]
            body = to_text(segment.segments, indent).replace("\n", "\n" + indent * segment.level)
            parts.append(f"\n{indent * segment.level}> {author}: {body}")
        else:
            parts.append(f"\n{indent * segment.level}> Referenced note not found")
    return "".join(parts)
