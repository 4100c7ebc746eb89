"""
Unit tests for services.embeds module.

Tests:
- segment(): text, mentions, cards, and the depth bound
- resolve(): mentions, cards, not-found, self-reference, memoization
- Relay hints are merged into the sources of the batched fetch
- to_text() rendering
"""

from unittest.mock import AsyncMock

import pytest

from notestream.core.exceptions import TransportError
from notestream.models import DecodedReference, Profile, ReferenceType
from notestream.services.embeds import (
    EmbedResolver,
    EmbedStatus,
    PlainReference,
    ProfileMention,
    RecordEmbed,
    TextSegment,
    to_text,
)
from notestream.services.profiles import ProfileCache
from tests.conftest import AUTHOR, OTHER_AUTHOR, SOURCES, FakeUpstream, make_record


@pytest.fixture
def resolver(upstream: FakeUpstream, profile_cache: ProfileCache) -> EmbedResolver:
    return EmbedResolver(upstream, profile_cache, SOURCES)


def card_levels(segments) -> list[int]:
    """Follow the first card at every level and return the levels seen."""
    levels = []
    current = segments
    while True:
        card = next((s for s in current if isinstance(s, RecordEmbed)), None)
        if card is None:
            return levels
        levels.append(card.level)
        current = card.segments


class TestSegment:
    def test_plain_text(self, resolver: EmbedResolver):
        assert resolver.segment("just words") == [TextSegment("just words")]

    def test_splits_around_tokens(self, resolver: EmbedResolver):
        segments = resolver.segment("hi nostr:npub1alice look nostr:note1xyz end")
        assert [type(s) for s in segments] == [
            TextSegment,
            ProfileMention,
            TextSegment,
            RecordEmbed,
            TextSegment,
        ]
        assert segments[0].text == "hi "
        assert segments[3].level == 1
        assert segments[4].text == " end"

    def test_reference_at_max_depth_stays_plain(self, resolver: EmbedResolver):
        (segment,) = resolver.segment("nostr:note1xyz", depth=resolver.max_depth)
        assert isinstance(segment, PlainReference)

    def test_reference_below_max_depth_is_a_card(self, resolver: EmbedResolver):
        (segment,) = resolver.segment("nostr:nevent1xyz", depth=resolver.max_depth - 1)
        assert isinstance(segment, RecordEmbed)
        assert segment.level == resolver.max_depth

    def test_mentions_ignore_depth(self, resolver: EmbedResolver):
        (segment,) = resolver.segment("nostr:nprofile1bob", depth=resolver.max_depth)
        assert isinstance(segment, ProfileMention)


class TestResolve:
    async def test_card_resolved_with_author_name(
        self, upstream: FakeUpstream, resolver: EmbedResolver
    ):
        quoted = make_record(50, id="quoted", author=OTHER_AUTHOR, content="quoted text")
        upstream.records = [quoted]
        upstream.decoded["note1quoted"] = DecodedReference(ReferenceType.NOTE, record_id=quoted.id)
        upstream.profiles[OTHER_AUTHOR] = Profile(display_name="bob")

        segments = await resolver.resolve(make_record(100, content="look nostr:note1quoted"))

        card = segments[1]
        assert isinstance(card, RecordEmbed)
        assert card.status == EmbedStatus.RESOLVED
        assert card.record == quoted
        assert card.author_name == "bob"
        assert card.segments == [TextSegment("quoted text")]

    async def test_mention_gets_display_name(self, upstream: FakeUpstream, resolver: EmbedResolver):
        upstream.decoded["npub1alice"] = DecodedReference(ReferenceType.PUBKEY, author_id=AUTHOR)
        upstream.profiles[AUTHOR] = Profile(display_name="alice")

        (_, mention) = await resolver.resolve(make_record(100, content="cc nostr:npub1alice"))

        assert mention.author_id == AUTHOR
        assert mention.display_name == "alice"

    async def test_missing_record_is_not_found(self, upstream: FakeUpstream, resolver: EmbedResolver):
        upstream.decoded["note1gone"] = DecodedReference(
            ReferenceType.NOTE, record_id=make_record(1, id="gone").id
        )
        (card,) = await resolver.resolve(make_record(100, content="nostr:note1gone"))
        assert card.status == EmbedStatus.NOT_FOUND
        assert card.record is None

    async def test_undecodable_is_not_found(self, upstream: FakeUpstream, resolver: EmbedResolver):
        (card,) = await resolver.resolve(make_record(100, content="nostr:note1garbage"))
        assert card.status == EmbedStatus.NOT_FOUND
        assert upstream.id_calls == []

    async def test_fetch_failure_is_not_found(self, upstream: FakeUpstream, resolver: EmbedResolver):
        target = make_record(50, id="target")
        upstream.records = [target]
        upstream.decoded["note1target"] = DecodedReference(ReferenceType.NOTE, record_id=target.id)
        upstream.fail_ids = True
        (card,) = await resolver.resolve(make_record(100, content="nostr:note1target"))
        assert card.status == EmbedStatus.NOT_FOUND

    async def test_self_reference_stops_at_max_depth(
        self, upstream: FakeUpstream, resolver: EmbedResolver
    ):
        looping = make_record(100, id="loop", content="again nostr:note1loop")
        upstream.records = [looping]
        upstream.decoded["note1loop"] = DecodedReference(ReferenceType.NOTE, record_id=looping.id)

        segments = await resolver.resolve(looping)

        assert card_levels(segments) == [1, 2, 3, 4, 5]
        deepest = segments
        for _ in range(5):
            deepest = next(s for s in deepest if isinstance(s, RecordEmbed)).segments
        assert isinstance(deepest[-1], PlainReference)
        # Decoding and fetching are memoized across levels
        assert upstream.decode_calls == ["note1loop"]
        assert len(upstream.id_calls) == 1

    async def test_custom_max_depth(self, upstream: FakeUpstream, profile_cache: ProfileCache):
        looping = make_record(100, id="loop", content="nostr:note1loop")
        upstream.records = [looping]
        upstream.decoded["note1loop"] = DecodedReference(ReferenceType.NOTE, record_id=looping.id)
        resolver = EmbedResolver(upstream, profile_cache, SOURCES, max_depth=2)

        segments = await resolver.resolve(looping)

        assert card_levels(segments) == [1, 2]

    async def test_one_fetch_per_level(self, upstream: FakeUpstream, resolver: EmbedResolver):
        first = make_record(50, id="first")
        second = make_record(60, id="second")
        upstream.records = [first, second]
        upstream.decoded["note1first"] = DecodedReference(ReferenceType.NOTE, record_id=first.id)
        upstream.decoded["note1second"] = DecodedReference(ReferenceType.NOTE, record_id=second.id)

        result = await resolver.resolve_many(
            [
                make_record(100, content="nostr:note1first"),
                make_record(101, content="nostr:note1second and nostr:note1first"),
            ]
        )

        assert len(result) == 2
        assert len(upstream.id_calls) == 1
        assert sorted(upstream.id_calls[0]) == sorted([first.id, second.id])

    async def test_relay_hints_merged_into_sources(
        self, upstream: FakeUpstream, resolver: EmbedResolver
    ):
        target = make_record(50, id="hinted")
        upstream.records = [target]
        upstream.decoded["nevent1hinted"] = DecodedReference(
            ReferenceType.EVENT,
            record_id=target.id,
            relay_hints=("wss://hint.example/", SOURCES[0]),
        )
        spy = AsyncMock(wraps=upstream.fetch_records_by_ids)
        upstream.fetch_records_by_ids = spy

        (card,) = await resolver.resolve(make_record(100, content="nostr:nevent1hinted"))

        assert card.status == EmbedStatus.RESOLVED
        sources = spy.await_args.args[0]
        assert sources == [*SOURCES, "wss://hint.example"]

    async def test_unexpected_errors_propagate(self, profile_cache: ProfileCache):
        upstream = AsyncMock()
        upstream.decode_reference.side_effect = RuntimeError("bug")
        resolver = EmbedResolver(upstream, profile_cache, SOURCES)
        with pytest.raises(RuntimeError):
            await resolver.resolve(make_record(100, content="nostr:note1abc"))

    async def test_transport_error_while_decoding_is_not_found(self, profile_cache: ProfileCache):
        upstream = AsyncMock()
        upstream.decode_reference.side_effect = TransportError("offline")
        resolver = EmbedResolver(upstream, profile_cache, SOURCES)
        (card,) = await resolver.resolve(make_record(100, content="nostr:note1abc"))
        assert card.status == EmbedStatus.NOT_FOUND


class TestToText:
    async def test_renders_cards_and_mentions(self, upstream: FakeUpstream, resolver: EmbedResolver):
        quoted = make_record(50, id="quoted", author=OTHER_AUTHOR, content="inner")
        upstream.records = [quoted]
        upstream.decoded["note1quoted"] = DecodedReference(ReferenceType.NOTE, record_id=quoted.id)
        upstream.decoded["npub1alice"] = DecodedReference(ReferenceType.PUBKEY, author_id=AUTHOR)
        upstream.profiles[AUTHOR] = Profile(display_name="alice")
        upstream.profiles[OTHER_AUTHOR] = Profile(display_name="bob")

        segments = await resolver.resolve(
            make_record(100, content="hey nostr:npub1alice nostr:note1quoted")
        )
        text = to_text(segments)

        assert text.startswith("hey @alice ")
        assert "\n  > bob: inner" in text

    def test_not_found_and_plain(self, resolver: EmbedResolver):
        segments = resolver.segment("a nostr:note1xyz", depth=0)
        segments[1].status = EmbedStatus.NOT_FOUND
        assert to_text(segments) == "a \n  > Referenced note not found"
        plain = resolver.segment("nostr:note1xyz", depth=resolver.max_depth)
        assert to_text(plain) == "nostr:note1xyz"
