"""
Unit tests for utils.protocol module.

Tests:
- create_client() - Client factory with optional signing keys
- build_filter() - Filter construction from plain values
- fetch_relay_records() - One-relay fetch, parsing, and client shutdown
- verify_record() - Signature and id checks
- decode_entity() - bech32 entity decoding
"""

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from nostr_sdk import EventBuilder, EventId, Keys

from notestream.models import Record, ReferenceType
from notestream.utils.protocol import (
    build_filter,
    create_client,
    decode_entity,
    fetch_relay_records,
    verify_record,
)
from tests.conftest import make_id, make_record


@pytest.fixture
def keys() -> Keys:
    return Keys.generate()


@pytest.fixture
def signed(keys: Keys) -> Record:
    event = EventBuilder.text_note("signed hello").sign_with_keys(keys)
    return Record.from_json(event.as_json())


# =============================================================================
# create_client() Tests
# =============================================================================


class TestCreateClient:
    def test_without_keys(self) -> None:
        assert create_client() is not None

    def test_with_keys(self, keys: Keys) -> None:
        assert create_client(keys) is not None


# =============================================================================
# build_filter() Tests
# =============================================================================


class TestBuildFilter:
    def test_empty(self) -> None:
        assert json.loads(build_filter().as_json()) == {}

    def test_plain_fields(self) -> None:
        data = json.loads(build_filter(kinds=[1, 6], since=10, until=20, limit=5).as_json())
        assert sorted(data["kinds"]) == [1, 6]
        assert data["since"] == 10
        assert data["until"] == 20
        assert data["limit"] == 5

    def test_authors_and_ids(self, keys: Keys) -> None:
        author = keys.public_key().to_hex()
        record_id = make_id(7)
        data = json.loads(build_filter(authors=[author], ids=[record_id]).as_json())
        assert data["authors"] == [author]
        assert data["ids"] == [record_id]

    def test_referenced_id(self) -> None:
        record_id = make_id(9)
        data = json.loads(build_filter(referenced_id=record_id).as_json())
        assert data["#e"] == [record_id]


# =============================================================================
# fetch_relay_records() Tests
# =============================================================================


def _mock_client(payloads: list[str]) -> MagicMock:
    client = MagicMock()
    client.add_relay = AsyncMock()
    client.connect = AsyncMock()
    client.shutdown = AsyncMock()
    events = MagicMock()
    events.to_vec.return_value = [MagicMock(as_json=MagicMock(return_value=p)) for p in payloads]
    client.fetch_events = AsyncMock(return_value=events)
    return client


class TestFetchRelayRecords:
    async def test_returns_parsed_records(self) -> None:
        good = make_record(100)
        client = _mock_client([good.to_json(), "{broken"])
        with patch("notestream.utils.protocol.create_client", return_value=client):
            records = await fetch_relay_records("wss://relay.example.com", MagicMock(), timeout=1.0)

        assert records == [good]
        client.add_relay.assert_awaited_once()
        client.connect.assert_awaited_once()
        client.shutdown.assert_awaited_once()

    async def test_timeout_still_shuts_down(self) -> None:
        client = _mock_client([])

        async def hang(*_args):
            await asyncio.sleep(10)

        client.fetch_events = AsyncMock(side_effect=hang)
        with (
            patch("notestream.utils.protocol.create_client", return_value=client),
            pytest.raises(TimeoutError),
        ):
            await fetch_relay_records("wss://relay.example.com", MagicMock(), timeout=0.01)
        client.shutdown.assert_awaited_once()

    async def test_errors_propagate(self) -> None:
        client = _mock_client([])
        client.connect = AsyncMock(side_effect=OSError("refused"))
        with (
            patch("notestream.utils.protocol.create_client", return_value=client),
            pytest.raises(OSError),
        ):
            await fetch_relay_records("wss://relay.example.com", MagicMock(), timeout=1.0)
        client.shutdown.assert_awaited_once()

    async def test_shutdown_failure_is_ignored(self) -> None:
        client = _mock_client([])
        client.shutdown = AsyncMock(side_effect=RuntimeError("ffi"))
        with patch("notestream.utils.protocol.create_client", return_value=client):
            assert await fetch_relay_records("wss://relay.example.com", MagicMock()) == []


# =============================================================================
# verify_record() Tests
# =============================================================================


class TestVerifyRecord:
    def test_valid(self, signed: Record) -> None:
        assert verify_record(signed) == (True, None)

    def test_missing_signature(self, signed: Record) -> None:
        assert verify_record(replace(signed, sig=None)) == (False, "missing signature")

    def test_tampered_content(self, signed: Record) -> None:
        valid, reason = verify_record(replace(signed, content="edited"))
        assert not valid
        assert reason is not None

    def test_forged_record(self) -> None:
        valid, reason = verify_record(make_record(100))
        assert not valid
        assert reason is not None


# =============================================================================
# decode_entity() Tests
# =============================================================================


class TestDecodeEntity:
    def test_npub(self, keys: Keys) -> None:
        decoded = decode_entity(keys.public_key().to_bech32())
        assert decoded.type == ReferenceType.PUBKEY
        assert decoded.author_id == keys.public_key().to_hex()
        assert decoded.record_id is None

    def test_note(self, signed: Record) -> None:
        decoded = decode_entity(EventId.parse(signed.id).to_bech32())
        assert decoded.type == ReferenceType.NOTE
        assert decoded.record_id == signed.id

    def test_unknown_prefix(self) -> None:
        with pytest.raises(ValueError, match="unsupported entity"):
            decode_entity("nsec1qqqq")

    def test_garbage_payload(self) -> None:
        with pytest.raises(ValueError):
            decode_entity("npub1notreallybech32")
