"""
Unit tests for models.record module.

Tests:
- Construction and field validation
- Tag normalization into nested tuples
- Tag helpers (tag_values, topics)
- Embedded repost extraction
- NIP-01 dict/JSON conversion
"""

import json

import pytest

from notestream.models import EventKind, Record
from notestream.models.record import normalize_topic
from tests.conftest import AUTHOR, make_id, make_record


def _event_dict(**overrides):
    data = {
        "id": make_id(1),
        "pubkey": AUTHOR,
        "created_at": 1700000000,
        "kind": 1,
        "content": "hello",
        "tags": [["t", "Nostr"], ["e", make_id(2)]],
        "sig": "ef" * 64,
    }
    data.update(overrides)
    return data


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Record field validation."""

    def test_valid_record(self):
        r = make_record(100)
        assert r.created_at == 100
        assert r.kind == EventKind.TEXT_NOTE
        assert r.is_text_note

    def test_uppercase_id_rejected(self):
        with pytest.raises(ValueError, match="64 lowercase hex"):
            make_record(100, id="AB" * 32)

    def test_short_author_rejected(self):
        with pytest.raises(ValueError):
            make_record(100, author="abc")

    def test_negative_timestamp_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            make_record(-1, id=1)

    def test_bool_timestamp_rejected(self):
        with pytest.raises(TypeError):
            Record(id=make_id(1), author_id=AUTHOR, created_at=True, kind=1, content="")

    def test_kind_out_of_range(self):
        with pytest.raises(ValueError, match="kind must be"):
            make_record(100, kind=70000)

    def test_null_byte_content_rejected(self):
        with pytest.raises(ValueError, match="null bytes"):
            make_record(100, content="bad\x00content")

    def test_tags_frozen_to_tuples(self):
        r = Record(
            id=make_id(1),
            author_id=AUTHOR,
            created_at=1,
            kind=1,
            content="",
            tags=[["t", "a"], ["p", AUTHOR]],  # type: ignore[arg-type]
        )
        assert r.tags == (("t", "a"), ("p", AUTHOR))

    def test_non_string_tag_value_rejected(self):
        with pytest.raises(TypeError):
            Record.from_dict(_event_dict(tags=[["t", 5]]))

    def test_frozen(self):
        r = make_record(100)
        with pytest.raises(AttributeError):
            r.content = "changed"  # type: ignore[misc]

    def test_sig_not_compared(self):
        a = make_record(100, sig="aa" * 64)
        b = make_record(100, sig="bb" * 64)
        assert a == b


# =============================================================================
# Tag helpers
# =============================================================================


class TestTags:
    """tag_values() and topics()."""

    def test_tag_values_in_order(self):
        r = make_record(1, tags=[["e", make_id(5)], ["p", AUTHOR], ["e", make_id(6)]])
        assert r.tag_values("e") == [make_id(5), make_id(6)]

    def test_tag_values_skips_short_tags(self):
        r = make_record(1, tags=[["e"], ["e", make_id(5)]])
        assert r.tag_values("e") == [make_id(5)]

    def test_topics_normalized(self):
        r = make_record(1, tags=[["t", "#Bitcoin"], ["t", "NOSTR"]])
        assert r.topics() == frozenset({"bitcoin", "nostr"})

    def test_normalize_topic_strips_single_hash(self):
        assert normalize_topic("##Tag") == "#tag"
        assert normalize_topic("#Tag") == "tag"


# =============================================================================
# Reposts
# =============================================================================


class TestEmbeddedRepost:
    """embedded_repost() for kind-6 records."""

    def test_repost_content_parsed(self):
        original = make_record(50, id=9, content="original")
        repost = make_record(60, kind=EventKind.REPOST, content=original.to_json())
        assert repost.embedded_repost() == original

    def test_empty_repost_content(self):
        repost = make_record(60, kind=EventKind.REPOST, content="")
        assert repost.embedded_repost() is None

    def test_invalid_repost_content(self):
        repost = make_record(60, kind=EventKind.REPOST, content="{not json")
        assert repost.embedded_repost() is None

    def test_text_note_has_no_repost(self):
        original = make_record(50, id=9)
        note = make_record(60, content=original.to_json())
        assert note.embedded_repost() is None


# =============================================================================
# Conversion
# =============================================================================


class TestConversion:
    """from_dict / from_json / to_dict / to_json."""

    def test_from_dict_maps_pubkey(self):
        r = Record.from_dict(_event_dict())
        assert r.author_id == AUTHOR
        assert r.sig == "ef" * 64
        assert r.tags[0] == ("t", "Nostr")

    def test_from_dict_missing_field(self):
        data = _event_dict()
        del data["content"]
        with pytest.raises(ValueError, match="missing event field: content"):
            Record.from_dict(data)

    def test_from_dict_rejects_non_mapping(self):
        with pytest.raises(TypeError):
            Record.from_dict(["not", "a", "mapping"])  # type: ignore[arg-type]

    def test_from_json_invalid(self):
        with pytest.raises(ValueError, match="invalid event json"):
            Record.from_json("{")

    def test_json_roundtrip(self):
        r = Record.from_dict(_event_dict())
        again = Record.from_json(r.to_json())
        assert again == r
        assert again.sig == r.sig

    def test_to_dict_omits_missing_sig(self):
        r = make_record(1, sig=None)
        assert "sig" not in r.to_dict()

    def test_to_json_is_compact(self):
        r = make_record(1)
        assert ", " not in r.to_json()
        assert json.loads(r.to_json())["pubkey"] == AUTHOR
