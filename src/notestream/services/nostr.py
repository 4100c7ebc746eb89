"""
Nostr relay implementation of the [Upstream][notestream.core.upstream.Upstream] protocol.

Each request fans out to every source relay concurrently, one client per
relay. A relay that fails or times out is logged and skipped; only when
every relay fails does the request raise
[TransportError][notestream.core.exceptions.TransportError]. Batch results
are merged, deduplicated by id, sorted newest first, and cut to the
requested limit.

Streaming delivers each relay's records as soon as that relay answers and
signals the end once every relay has either answered or failed.

See Also:
    [notestream.utils.protocol][notestream.utils.protocol]: The
        ``nostr_sdk`` helpers used for every relay request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from nostr_sdk import Filter, NostrSdkError

from notestream.core.exceptions import DecodeError, TransportError
from notestream.core.logger import Logger
from notestream.core.upstream import (
    EndHandler,
    ErrorHandler,
    RecordHandler,
    VerificationResult,
)
from notestream.models.constants import EventKind
from notestream.models.profile import Profile
from notestream.utils.protocol import (
    DEFAULT_TIMEOUT,
    build_filter,
    decode_entity,
    fetch_relay_records,
    verify_record,
)


if TYPE_CHECKING:
    from nostr_sdk import Keys

    from notestream.models.record import Record
    from notestream.models.reference import DecodedReference


def _unreachable(count: int) -> TransportError:
    return TransportError(f"Could not reach any of the {count} configured relays", attempted=count)


def _newest_first(records: Sequence[Record], limit: int | None = None) -> list[Record]:
    unique = {record.id: record for record in records}
    ordered = sorted(unique.values(), key=lambda r: r.created_at, reverse=True)
    return ordered[:limit] if limit is not None else ordered


class NostrStreamSubscription:
    """Streaming fetch across several relays.

    Handlers fire on the event loop. ``on_end`` or ``on_error`` fires
    exactly once, after the last relay finished, unless
    [unsubscribe()][notestream.services.nostr.NostrStreamSubscription.unsubscribe]
    came first.
    """

    def __init__(
        self,
        upstream: NostrUpstream,
        sources: Sequence[str],
        event_filter: Filter,
        *,
        on_record: RecordHandler,
        on_end: EndHandler,
        on_error: ErrorHandler,
    ) -> None:
        self._upstream = upstream
        self._sources = list(sources)
        self._filter = event_filter
        self._on_record = on_record
        self._on_end = on_end
        self._on_error = on_error
        self._tasks: list[asyncio.Task[None]] = []
        self._remaining = 0
        self._failed = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> None:
        if self._active or self._tasks:
            return
        self._active = True
        if not self._sources:
            self._finish()
            return
        self._remaining = len(self._sources)
        self._tasks = [asyncio.create_task(self._consume(url)) for url in self._sources]

    async def unsubscribe(self) -> None:
        self._active = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _consume(self, url: str) -> None:
        try:
            records = await self._upstream.fetch_from_relay(url, self._filter)
        except (TimeoutError, OSError, NostrSdkError):
            self._failed += 1
        else:
            for record in records:
                if not self._active:
                    return
                self._on_record(record)

        self._remaining -= 1
        if self._remaining == 0:
            self._finish()

    def _finish(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._failed == len(self._sources):
            self._on_error(_unreachable(len(self._sources)))
        else:
            self._on_end()


class NostrUpstream:
    """[Upstream][notestream.core.upstream.Upstream] backed by ``nostr_sdk`` relay clients.

    Args:
        timeout: Per-relay request timeout in seconds.
        keys: Optional signing keys, for relays that require authentication.

    Examples:
        ```python
        upstream = NostrUpstream(timeout=10.0)
        records = await upstream.fetch_records(
            ["wss://relay.damus.io"], limit=50, kinds=[1]
        )
        ```
    """

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT, keys: Keys | None = None) -> None:
        self._timeout = timeout
        self._keys = keys
        self._logger = Logger("upstream")

    @property
    def timeout(self) -> float:
        return self._timeout

    async def fetch_from_relay(self, url: str, event_filter: Filter) -> list[Record]:
        """Fetch from a single relay, logging any failure before re-raising it."""
        try:
            return await fetch_relay_records(
                url, event_filter, timeout=self._timeout, keys=self._keys
            )
        except (TimeoutError, OSError, NostrSdkError) as e:
            self._logger.warning(
                "relay_failed", relay=url, error=str(e) or type(e).__name__
            )
            raise

    async def _fan_out(self, sources: Sequence[str], event_filter: Filter) -> list[Record]:
        if not sources:
            raise _unreachable(0)

        outcomes: list[Any] = await asyncio.gather(
            *(self.fetch_from_relay(url, event_filter) for url in sources),
            return_exceptions=True,
        )

        records: list[Record] = []
        reached = 0
        for outcome in outcomes:
            if isinstance(outcome, (TimeoutError, OSError, NostrSdkError)):
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            reached += 1
            records.extend(outcome)

        if reached == 0:
            raise _unreachable(len(sources))
        return records

    # -------------------------------------------------------------------------
    # Upstream protocol
    # -------------------------------------------------------------------------

    async def fetch_records(
        self,
        sources: Sequence[str],
        *,
        authors: Sequence[str] | None = None,
        since: int | None = None,
        until: int | None = None,
        limit: int,
        kinds: Sequence[int],
    ) -> list[Record]:
        event_filter = build_filter(
            kinds=kinds, authors=authors, since=since, until=until, limit=limit
        )
        records = await self._fan_out(sources, event_filter)
        result = _newest_first(records, limit)
        self._logger.debug("records_fetched", sources=len(sources), received=len(records), kept=len(result))
        return result

    async def subscribe_stream(
        self,
        sources: Sequence[str],
        *,
        authors: Sequence[str] | None = None,
        since: int | None = None,
        limit: int,
        kinds: Sequence[int],
        on_record: RecordHandler,
        on_end: EndHandler,
        on_error: ErrorHandler,
    ) -> NostrStreamSubscription:
        event_filter = build_filter(kinds=kinds, authors=authors, since=since, limit=limit)
        return NostrStreamSubscription(
            self,
            sources,
            event_filter,
            on_record=on_record,
            on_end=on_end,
            on_error=on_error,
        )

    async def fetch_records_by_ids(self, sources: Sequence[str], ids: Sequence[str]) -> list[Record]:
        if not ids:
            return []
        wanted = set(ids)
        event_filter = build_filter(ids=list(wanted), limit=len(wanted))
        records = await self._fan_out(sources, event_filter)
        return [r for r in _newest_first(records) if r.id in wanted]

    async def fetch_replies(
        self, sources: Sequence[str], record_id: str, *, limit: int
    ) -> list[Record]:
        event_filter = build_filter(
            kinds=[EventKind.TEXT_NOTE], referenced_id=record_id, limit=limit
        )
        records = await self._fan_out(sources, event_filter)
        return _newest_first(records, limit)

    async def fetch_profile(self, author_id: str, sources: Sequence[str]) -> Profile | None:
        event_filter = build_filter(kinds=[EventKind.SET_METADATA], authors=[author_id], limit=1)
        records = await self._fan_out(sources, event_filter)
        for record in _newest_first(records):
            if record.author_id != author_id:
                continue
            profile = Profile.from_metadata_json(record.content)
            if profile is not None:
                return profile
        return None

    async def verify(self, record: Record) -> VerificationResult:
        valid, reason = verify_record(record)
        return VerificationResult(valid, reason)

    async def decode_reference(self, entity: str) -> DecodedReference:
        try:
            return decode_entity(entity)
        except ValueError as e:
            raise DecodeError(str(e)) from e
