"""Nostr protocol client operations for notestream.

Thin helpers over ``nostr_sdk``: client factory, filter construction,
one-relay record fetches, signature checks, and bech32 entity decoding.
Every helper speaks in [Record][notestream.models.record.Record] and
[DecodedReference][notestream.models.reference.DecodedReference] terms so
callers never handle ``nostr_sdk`` objects.

Attributes:
    create_client: Client factory with optional signing keys.
    build_filter: Build a ``nostr_sdk.Filter`` from plain Python values.
    fetch_relay_records: Connect to one relay and return the records it holds.
    verify_record: Check the id and signature of a record.
    decode_entity: Decode ``note1``/``nevent1``/``npub1``/``nprofile1`` entities.

Note:
    Failures surface as the errors ``nostr_sdk`` and ``asyncio`` raise
    (``NostrSdkError``, ``OSError``, ``TimeoutError``) except in
    [decode_entity][notestream.utils.protocol.decode_entity], which raises
    ``ValueError``. Mapping them onto the pipeline's error taxonomy is the
    job of [NostrUpstream][notestream.services.nostr.NostrUpstream].

See Also:
    [notestream.utils.parsing][notestream.utils.parsing]: Tolerant payload
        parsing used after every fetch.
    [notestream.models.reference.scan_references][notestream.models.reference.scan_references]:
        Finds the entities this module decodes.

Examples:
    ```python
    from notestream.utils.protocol import build_filter, fetch_relay_records

    f = build_filter(kinds=[1], limit=50)
    records = await fetch_relay_records("wss://relay.damus.io", f, timeout=10)
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from nostr_sdk import (
    Client,
    ClientBuilder,
    EventId,
    Filter,
    Kind,
    Nip19Event,
    Nip19Profile,
    NostrSdkError,
    NostrSigner,
    PublicKey,
    RelayUrl,
    Timestamp,
)
from nostr_sdk import Event as NostrEvent

from notestream.models.reference import DecodedReference, ReferenceType

from .parsing import records_from_json


if TYPE_CHECKING:
    from collections.abc import Sequence

    from nostr_sdk import Keys

    from notestream.models.record import Record


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: float = 10.0


def create_client(keys: Keys | None = None) -> Client:
    """Create a Nostr client, read-only unless *keys* are given.

    Returns:
        Configured ``Client`` instance (call ``add_relay()`` before use).
    """
    builder = ClientBuilder()
    if keys is not None:
        builder = builder.signer(NostrSigner.keys(keys))
    return builder.build()


def build_filter(
    *,
    kinds: Sequence[int] | None = None,
    authors: Sequence[str] | None = None,
    ids: Sequence[str] | None = None,
    referenced_id: str | None = None,
    since: int | None = None,
    until: int | None = None,
    limit: int | None = None,
) -> Filter:
    """Build a ``nostr_sdk.Filter`` from plain values.

    Args:
        kinds: Event kinds to match.
        authors: Hex public keys to match.
        ids: Hex event ids to match.
        referenced_id: Match events carrying an ``e`` tag with this id.
        since: Inclusive lower bound on ``created_at``.
        until: Inclusive upper bound on ``created_at``.
        limit: Maximum number of events per relay.

    Raises:
        NostrSdkError: If an id or key cannot be parsed.
    """
    f = Filter()
    if kinds:
        f = f.kinds([Kind(k) for k in kinds])
    if authors:
        f = f.authors([PublicKey.parse(a) for a in authors])
    if ids:
        f = f.ids([EventId.parse(i) for i in ids])
    if referenced_id is not None:
        f = f.event(EventId.parse(referenced_id))
    if since is not None:
        f = f.since(Timestamp.from_secs(since))
    if until is not None:
        f = f.until(Timestamp.from_secs(until))
    if limit is not None:
        f = f.limit(limit)
    return f


async def fetch_relay_records(
    url: str,
    event_filter: Filter,
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    keys: Keys | None = None,
) -> list[Record]:
    """Connect to one relay and return the records matching *event_filter*.

    The relay is asked for stored events and the call returns at
    end-of-stored-events or after *timeout*, whichever comes first.
    Records are returned unverified; malformed payloads are skipped.

    Raises:
        TimeoutError: If connecting and fetching together exceed twice *timeout*.
        NostrSdkError: If the relay URL is invalid or the request fails.
        OSError: On network errors.
    """
    client = create_client(keys)
    try:
        async with asyncio.timeout(timeout * 2):
            await client.add_relay(RelayUrl.parse(url))
            await client.connect()
            events = await client.fetch_events(event_filter, timedelta(seconds=timeout))
        records = records_from_json(evt.as_json() for evt in events.to_vec())
        logger.debug("relay_fetched relay=%s records=%s", url, len(records))
        return records
    finally:
        # nostr-sdk Rust FFI can raise arbitrary exception types during shutdown.
        with contextlib.suppress(Exception):
            await client.shutdown()


def verify_record(record: Record) -> tuple[bool, str | None]:
    """Check that *record*'s id and signature match its content.

    Returns:
        ``(True, None)`` when valid, otherwise ``(False, reason)``.
    """
    if record.sig is None:
        return False, "missing signature"
    try:
        event = NostrEvent.from_json(record.to_json())
    except NostrSdkError as e:
        return False, f"malformed event: {e}"
    if not event.verify():
        return False, "invalid signature"
    return True, None


def decode_entity(entity: str) -> DecodedReference:
    """Decode a bech32 ``nostr:`` entity into hex ids and relay hints.

    Raises:
        ValueError: If *entity* has an unknown prefix or does not decode.
    """
    try:
        kind = ReferenceType(entity.lower().split("1", 1)[0])
    except ValueError:
        raise ValueError(f"unsupported entity: {entity[:16]}") from None

    try:
        if kind == ReferenceType.NOTE:
            return DecodedReference(kind, record_id=EventId.parse(entity).to_hex())
        if kind == ReferenceType.EVENT:
            nevent = Nip19Event.from_bech32(entity)
            author = nevent.author()
            return DecodedReference(
                kind,
                record_id=nevent.event_id().to_hex(),
                author_id=author.to_hex() if author is not None else None,
                relay_hints=tuple(str(r) for r in nevent.relays()),
            )
        if kind == ReferenceType.PUBKEY:
            return DecodedReference(kind, author_id=PublicKey.parse(entity).to_hex())
        nprofile = Nip19Profile.from_bech32(entity)
        return DecodedReference(
            kind,
            author_id=nprofile.public_key().to_hex(),
            relay_hints=tuple(str(r) for r in nprofile.relays()),
        )
    except NostrSdkError as e:
        raise ValueError(f"undecodable {kind} entity: {e}") from None


__all__ = [
    "DEFAULT_TIMEOUT",
    "build_filter",
    "create_client",
    "decode_entity",
    "fetch_relay_records",
    "verify_record",
]
