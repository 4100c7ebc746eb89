"""
Pytest configuration and shared fixtures for notestream tests.

Provides:
- ``make_id`` / ``make_record`` helpers for valid hex ids and records
- ``FakeUpstream``: an in-memory Upstream double with scripted failures
- Controller and component fixtures wired to the fake
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

import pytest

from notestream.core.events import EventEmitter, PipelineEvent
from notestream.core.exceptions import DecodeError, TransportError
from notestream.core.upstream import (
    EndHandler,
    ErrorHandler,
    RecordHandler,
    VerificationResult,
)
from notestream.models import DecodedReference, Profile, Record
from notestream.services.ingestion import (
    FeedTarget,
    IngestionConfig,
    IngestionController,
)
from notestream.services.profiles import ProfileCache


SOURCES = ["wss://relay.one.example", "wss://relay.two.example"]


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Record Helpers
# ============================================================================


def make_id(n: int | str) -> str:
    """Return a valid 64-char hex id derived from *n*."""
    if isinstance(n, str):
        n = sum(ord(c) * (i + 1) for i, c in enumerate(n)) + 1_000_000
    return f"{n:064x}"


AUTHOR = make_id("author")
OTHER_AUTHOR = make_id("other-author")


def make_record(
    created_at: int,
    *,
    id: str | int | None = None,  # noqa: A002
    author: str = AUTHOR,
    kind: int = 1,
    content: str = "hello nostr",
    tags: Sequence[Sequence[str]] = (),
    sig: str | None = "ab" * 64,
) -> Record:
    """Build a valid record; the id defaults to one derived from *created_at*."""
    if id is None:
        record_id = make_id(created_at)
    elif isinstance(id, int):
        record_id = make_id(id)
    else:
        record_id = id if len(id) == 64 else make_id(id)
    return Record(
        id=record_id,
        author_id=author,
        created_at=created_at,
        kind=kind,
        content=content,
        tags=tuple(tuple(t) for t in tags),
        sig=sig,
    )


# ============================================================================
# Fake Upstream
# ============================================================================


class FakeSubscription:
    """Stream double that delivers matching records after ``start()``."""

    def __init__(
        self,
        upstream: FakeUpstream,
        records: list[Record],
        on_record: RecordHandler,
        on_end: EndHandler,
        on_error: ErrorHandler,
    ) -> None:
        self._upstream = upstream
        self._records = records
        self._on_record = on_record
        self._on_end = on_end
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None
        self.started = False
        self.unsubscribed = False

    async def start(self) -> None:
        self.started = True
        self._task = asyncio.create_task(self._deliver())

    async def unsubscribe(self) -> None:
        self.unsubscribed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _deliver(self) -> None:
        if self._upstream.stream_gate is not None:
            await self._upstream.stream_gate.wait()
        if self._upstream.fail_fetch:
            self._on_error(TransportError("stream failed", attempted=2))
            return
        for record in self._records:
            await asyncio.sleep(0)
            if self.unsubscribed:
                return
            self._on_record(record)
        if not self._upstream.stream_never_ends:
            self._on_end()


class FakeUpstream:
    """In-memory [Upstream][notestream.core.upstream.Upstream] double.

    ``records`` is the whole network. Fetches honour kinds, authors,
    since/until (inclusive) and limit, newest first.
    """

    def __init__(self, records: Sequence[Record] = ()) -> None:
        self.records: list[Record] = list(records)
        self.profiles: dict[str, Profile] = {}
        self.decoded: dict[str, DecodedReference] = {}
        self.invalid: dict[str, str | None] = {}
        self.fail_fetch = False
        self.fail_ids = False
        self.fetch_gate: asyncio.Event | None = None
        self.stream_gate: asyncio.Event | None = None
        self.stream_never_ends = False

        self.fetch_calls: list[dict[str, Any]] = []
        self.id_calls: list[list[str]] = []
        self.profile_calls: list[str] = []
        self.verify_calls: list[str] = []
        self.decode_calls: list[str] = []
        self.subscriptions: list[FakeSubscription] = []

    def _select(
        self,
        *,
        authors: Sequence[str] | None,
        since: int | None,
        until: int | None,
        kinds: Sequence[int],
    ) -> list[Record]:
        selected = [
            r
            for r in self.records
            if r.kind in kinds
            and (authors is None or r.author_id in authors)
            and (since is None or r.created_at >= since)
            and (until is None or r.created_at <= until)
        ]
        unique = {r.id: r for r in selected}
        return sorted(unique.values(), key=lambda r: r.created_at, reverse=True)

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
        self.fetch_calls.append(
            {"authors": authors, "since": since, "until": until, "limit": limit, "kinds": kinds}
        )
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch:
            raise TransportError(
                f"Could not reach any of the {len(sources)} configured relays",
                attempted=len(sources),
            )
        return self._select(authors=authors, since=since, until=until, kinds=kinds)[:limit]

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
    ) -> FakeSubscription:
        selected = self._select(authors=authors, since=since, until=None, kinds=kinds)[:limit]
        # Relays answer in arbitrary order
        delivered = list(reversed(selected))
        subscription = FakeSubscription(self, delivered, on_record, on_end, on_error)
        self.subscriptions.append(subscription)
        return subscription

    async def fetch_records_by_ids(self, sources: Sequence[str], ids: Sequence[str]) -> list[Record]:
        self.id_calls.append(list(ids))
        if self.fail_ids:
            raise TransportError("ids unreachable", attempted=len(sources))
        wanted = set(ids)
        return [r for r in self.records if r.id in wanted]

    async def fetch_replies(
        self, sources: Sequence[str], record_id: str, *, limit: int
    ) -> list[Record]:
        replies = [r for r in self.records if record_id in r.tag_values("e")]
        return replies[:limit]

    async def fetch_profile(self, author_id: str, sources: Sequence[str]) -> Profile | None:
        self.profile_calls.append(author_id)
        return self.profiles.get(author_id)

    async def verify(self, record: Record) -> VerificationResult:
        self.verify_calls.append(record.id)
        if record.id in self.invalid:
            return VerificationResult(False, self.invalid[record.id])
        return VerificationResult(True)

    async def decode_reference(self, entity: str) -> DecodedReference:
        self.decode_calls.append(entity)
        try:
            return self.decoded[entity]
        except KeyError:
            raise DecodeError(f"undecodable: {entity}") from None


class EventLog:
    """Listener collecting every emitted event."""

    def __init__(self) -> None:
        self.events: list[PipelineEvent] = []

    def __call__(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def of(self, event_type: type[PipelineEvent]) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def record_factory() -> Callable[..., Record]:
    return make_record


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def event_log(emitter: EventEmitter) -> EventLog:
    log = EventLog()
    emitter.subscribe(log)
    return log


@pytest.fixture
def profile_cache(upstream: FakeUpstream) -> ProfileCache:
    return ProfileCache(upstream, SOURCES)


@pytest.fixture
def batch_config() -> IngestionConfig:
    """Batch loading, no signature pacing, metrics off."""
    return IngestionConfig(
        sources={"relays": SOURCES},
        streaming={"enabled": False},
        verification={"delay": 0.0},
    )


@pytest.fixture
def stream_config() -> IngestionConfig:
    return IngestionConfig(
        sources={"relays": SOURCES},
        streaming={"enabled": True, "timeout": 1.0},
        verification={"delay": 0.0},
    )


@pytest.fixture
async def make_controller(
    upstream: FakeUpstream, emitter: EventEmitter
) -> AsyncIterator[Callable[..., IngestionController]]:
    """Factory fixture; every controller it builds is closed at teardown."""
    created: list[IngestionController] = []

    def factory(
        config: IngestionConfig | None = None,
        *,
        target: FeedTarget | None = None,
    ) -> IngestionController:
        controller = IngestionController(
            upstream,
            config or IngestionConfig(sources={"relays": SOURCES}),
            target=target,
            emitter=emitter,
        )
        created.append(controller)
        return controller

    yield factory

    for controller in created:
        await controller.close()
