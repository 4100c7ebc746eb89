"""
Unit tests for models.reference module.
"""

import pytest

from notestream.models import DecodedReference, ReferenceType, scan_references
from tests.conftest import make_id


class TestScanReferences:
    """scan_references() token extraction."""

    def test_all_types_in_order(self):
        content = (
            "see nostr:note1abc and nostr:nevent1def, "
            "cc nostr:npub1ghi / nostr:nprofile1jkl"
        )
        tokens = scan_references(content)
        assert [t.type for t in tokens] == [
            ReferenceType.NOTE,
            ReferenceType.EVENT,
            ReferenceType.PUBKEY,
            ReferenceType.PROFILE,
        ]
        assert tokens[0].raw == "nostr:note1abc"
        assert tokens[0].entity == "note1abc"

    def test_offsets(self):
        content = "hi nostr:npub1xyz!"
        (token,) = scan_references(content)
        assert content[token.start : token.end] == "nostr:npub1xyz"

    def test_case_insensitive_prefix(self):
        (token,) = scan_references("NOSTR:note1abc")
        assert token.type == ReferenceType.NOTE

    def test_no_references(self):
        assert scan_references("plain text, note1abc without scheme") == []

    def test_targets_record(self):
        assert ReferenceType.NOTE.targets_record
        assert ReferenceType.EVENT.targets_record
        assert not ReferenceType.PUBKEY.targets_record
        assert not ReferenceType.PROFILE.targets_record


class TestDecodedReference:
    """DecodedReference validation."""

    def test_requires_an_id(self):
        with pytest.raises(ValueError, match="neither"):
            DecodedReference(ReferenceType.NOTE)

    def test_invalid_hex(self):
        with pytest.raises(ValueError):
            DecodedReference(ReferenceType.NOTE, record_id="xyz")

    def test_relay_hints_tuple(self):
        d = DecodedReference(
            ReferenceType.EVENT,
            record_id=make_id(1),
            relay_hints=["wss://a.example"],  # type: ignore[arg-type]
        )
        assert d.relay_hints == ("wss://a.example",)
