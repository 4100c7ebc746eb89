"""Ingestion controller for one feed view.

Drives a feed through its lifecycle and owns the view's
[NoteStore][notestream.services.store.NoteStore]:

```text
IDLE -> LOADING -> STREAMING | BATCH_FETCHING -> LOADED <-> POLLING
```

1. ``LOADING``: a load was requested; stale work is invalidated.
2. ``STREAMING``: handlers are registered first, then the stream is
   started. Each pushed record is kind-checked, filtered, merged with
   ``APPEND`` and announced with ``RecordAdmitted``. The single
   end-of-stream signal moves the feed to ``LOADED``.
3. ``BATCH_FETCHING``: one fetch populates the store with ``REPLACE`` and
   the whole view is announced with ``ViewRendered``.
4. ``LOADED``: the poll timer
   ([run_forever()][notestream.core.base_service.BaseService.run_forever])
   is running. Follow and profile feeds always poll; the global feed only
   polls while its view is not focused and refreshes on focus instead. A
   follow feed with no follows loads unfiltered and never polls.
5. ``POLLING``: an incremental fetch since the newest stored timestamp is
   in flight; only newly appended records are announced.

Every admitted record feeds two side channels: the
[VerificationWorker][notestream.services.verification.VerificationWorker]
and the [EmbedResolver][notestream.services.embeds.EmbedResolver]. Author
profiles are hydrated through the shared
[ProfileCache][notestream.services.profiles.ProfileCache].

Note:
    Cancellation is cooperative. Every operation captures an
    [OperationToken][notestream.services.ingestion.utils.OperationToken]
    and checks it before mutating the store or emitting; after a target
    switch or teardown, late completions are dropped.

See Also:
    [IngestionConfig][notestream.services.ingestion.IngestionConfig]:
        Configuration model for this controller.
    [Upstream][notestream.core.upstream.Upstream]: The network boundary.

Examples:
    ```python
    from notestream.services.ingestion import FeedTarget, IngestionController
    from notestream.services.nostr import NostrUpstream

    controller = IngestionController.from_yaml(
        "config/feed.yaml", upstream=NostrUpstream(), target=FeedTarget()
    )
    controller.events.subscribe(print)

    async with controller:
        await controller.activate()
        await controller.run_forever()
    ```
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine, Iterable, Sequence
from types import TracebackType
from typing import Any, ClassVar

from notestream.core.base_service import BaseService
from notestream.core.events import (
    EmbedsResolved,
    EventEmitter,
    FailureReported,
    FeedEmpty,
    ProfilePatched,
    RecordAdmitted,
    StateChanged,
    ViewRendered,
)
from notestream.core.exceptions import DecodeError, NoteStreamError, UpstreamError
from notestream.core.logger import Logger
from notestream.core.upstream import StreamSubscription, Upstream
from notestream.models.constants import FailureKind, IngestionState, MergeMode
from notestream.models.mute import MuteRules
from notestream.models.profile import Profile
from notestream.models.record import Record
from notestream.models.reference import scan_references
from notestream.models.relations import reply_target_author
from notestream.services.embeds import EmbedResolver
from notestream.services.filters import admits, filter_visible
from notestream.services.profiles import ProfileCache
from notestream.services.store import NoteStore
from notestream.services.threads import Thread, ThreadResolver
from notestream.services.verification import VerificationWorker

from .configs import IngestionConfig, MuteConfig
from .utils import FeedTarget, OperationToken


class IngestionController(BaseService[IngestionConfig]):
    """State machine that loads, streams, polls, and filters one feed view.

    Args:
        upstream: The network boundary.
        config: Controller configuration; defaults to ``IngestionConfig()``.
        target: What the view shows; defaults to the global feed.
        profiles: Shared profile cache. A private one is created if omitted.
        emitter: Event emitter renderers subscribe to. Created if omitted.

    See Also:
        [IngestionConfig][notestream.services.ingestion.IngestionConfig]:
            Configuration model for this controller.
        [FeedTarget][notestream.services.ingestion.FeedTarget]: Feed mode
            and authors.
    """

    SERVICE_NAME: ClassVar[str] = "ingestion"
    CONFIG_CLASS: ClassVar[type[IngestionConfig]] = IngestionConfig

    def __init__(
        self,
        upstream: Upstream,
        config: IngestionConfig | None = None,
        *,
        target: FeedTarget | None = None,
        profiles: ProfileCache | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        super().__init__(config=config or IngestionConfig())
        self._config: IngestionConfig
        self._upstream = upstream
        self._target = target or FeedTarget()
        self._sources = list(self._config.sources.relays)
        self._profiles = profiles or ProfileCache(upstream, self._sources)
        self._events = emitter or EventEmitter()
        self._rules = self._config.mute.to_rules()

        self._store = NoteStore()
        self._slots: dict[str, int] = {}
        self._next_slot = 0

        self._state = IngestionState.IDLE
        self._generation = 0
        self._loaded = False
        self._focused = True

        self._subscription: StreamSubscription | None = None
        self._stream_done: asyncio.Event | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        self._verifier = VerificationWorker(
            upstream, self._events, delay=self._config.verification.delay
        )
        self._embeds = EmbedResolver(upstream, self._profiles, self._sources)
        self._threads = ThreadResolver(upstream, self._sources, policy=self._config.reply_policy)
        self._logger = Logger(self.SERVICE_NAME).bind(mode=self._target.mode)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> IngestionState:
        """Current lifecycle state."""
        return self._state

    @property
    def store(self) -> NoteStore:
        """The view's record store (read it, do not merge into it)."""
        return self._store

    @property
    def events(self) -> EventEmitter:
        """Emitter renderers subscribe to."""
        return self._events

    @property
    def profiles(self) -> ProfileCache:
        return self._profiles

    @property
    def target(self) -> FeedTarget:
        return self._target

    @property
    def rules(self) -> MuteRules:
        return self._rules

    @property
    def is_loaded(self) -> bool:
        """Whether the initial load of the current target has finished."""
        return self._loaded

    @property
    def is_polling(self) -> bool:
        """Whether the poll timer is running."""
        return self._poll_task is not None and not self._poll_task.done()

    def slot_of(self, record_id: str) -> int | None:
        """Render slot assigned to *record_id*, if it was ever shown."""
        return self._slots.get(record_id)

    def visible_records(self) -> list[Record]:
        """Stored records the current rules admit, newest first."""
        return filter_visible(self._store.records, self._rules)

    # -------------------------------------------------------------------------
    # View lifecycle
    # -------------------------------------------------------------------------

    async def activate(self, *, focused: bool = True) -> None:
        """Show the view.

        A view whose target is already loaded re-renders from the store at
        once and refreshes in the background; otherwise the initial load runs.
        """
        self._focused = focused
        if self._loaded:
            self._render_all()
            self._spawn(self.refresh())
            self._ensure_polling()
            return
        await self.load()

    def focus(self) -> None:
        """Mark the view focused. A loaded global feed refreshes immediately."""
        self._focused = True
        if self._loaded and not self._target.polls_while_focused:
            self._spawn(self.refresh())

    def blur(self) -> None:
        """Mark the view as not focused; the global feed starts polling."""
        self._focused = False

    async def load(self) -> None:
        """Run the initial load of the current target.

        Streams when ``config.streaming.enabled``, batches otherwise. On a
        transport failure a ``FailureReported`` is emitted, the store is left
        as it was, and the controller returns to ``IDLE``.
        """
        self._invalidate()
        token = self._token()
        self._stop_polling()
        await self._teardown_stream()

        self._set_state(IngestionState.LOADING)
        self._logger.info(
            "load_started",
            sources=len(self._sources),
            authors=len(self._target.authors),
            streaming=self._config.streaming.enabled,
        )

        if self._config.streaming.enabled:
            await self._load_streaming(token)
        else:
            await self._load_batch(token)

    async def switch_target(self, target: FeedTarget) -> None:
        """Change feed mode or identity and reload from scratch.

        In-flight work for the previous target is invalidated, the store is
        cleared and an empty view is rendered before the new load starts.
        """
        self._invalidate()
        self._stop_polling()
        await self._teardown_stream()

        previous = self._target
        self._target = target
        self._store.clear()
        self._slots.clear()
        self._loaded = False
        self._logger = Logger(self.SERVICE_NAME).bind(mode=target.mode)
        self._logger.info("target_switched", previous=previous.mode, authors=len(target.authors))

        self._set_state(IngestionState.IDLE)
        self._render_all()
        await self.load()

    def apply_rules(self, rules: MuteRules) -> None:
        """Replace the mute rules and re-render; never touches the network."""
        self._rules = rules
        self._logger.info(
            "rules_applied",
            muted_authors=len(rules.muted_authors),
            muted_words=len(rules.muted_words),
            muted_topics=len(rules.muted_topics),
        )
        self._render_all()

    def update_mute(self, mute: MuteConfig) -> None:
        """Convenience wrapper around [apply_rules()][notestream.services.ingestion.IngestionController.apply_rules]."""
        self.apply_rules(mute.to_rules())

    async def open_thread(self, subject: Record | str) -> Thread:
        """Build the thread of *subject* with the current mute rules applied to replies."""
        return await self._threads.open(subject, self._rules)

    # -------------------------------------------------------------------------
    # Polling and pagination
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """One poll cycle, skipped while the view does not need polling."""
        if not self._loaded or not self._should_poll():
            return
        await self.poll(raise_on_failure=True)

    async def refresh(self) -> int:
        """Fetch records newer than the newest stored one, regardless of focus."""
        return await self.poll()

    async def poll(self, *, raise_on_failure: bool = False) -> int:
        """Incremental fetch since the newest stored timestamp.

        Args:
            raise_on_failure: Re-raise a transport failure after reporting it
                (used by the poll timer to count consecutive failures).

        Returns:
            Number of records appended.
        """
        if self._state != IngestionState.LOADED:
            return 0

        token = self._token()
        since = self._store.newest_created_at()
        self._set_state(IngestionState.POLLING)

        try:
            records = await self._fetch(since=since)
        except NoteStreamError as e:
            if self._is_current(token):
                self._report_failure(e)
                self._set_state(IngestionState.LOADED)
            if raise_on_failure:
                raise
            return 0

        if not self._is_current(token):
            return 0

        admitted = self._admit_incremental(records, token)
        self._set_state(IngestionState.LOADED)
        self.inc_counter("polls_completed")
        self._logger.info(
            "poll_completed", since=since, fetched=len(records), admitted=len(admitted)
        )
        return len(admitted)

    async def load_older(self) -> int:
        """Fetch records older than the oldest stored one and append them below.

        Returns:
            Number of records appended.
        """
        until = self._store.oldest_created_at()
        if self._state != IngestionState.LOADED or until is None:
            return 0

        token = self._token()
        try:
            records = await self._fetch(until=until)
        except NoteStreamError as e:
            if self._is_current(token):
                self._report_failure(e)
            return 0

        if not self._is_current(token):
            return 0
        admitted = self._admit_incremental(records, token)
        self._logger.info("older_loaded", until=until, admitted=len(admitted))
        return len(admitted)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for every background task (refreshes, enrichment, checks) to finish."""
        while self._tasks or self._verifier.pending:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self._verifier.drain()

    async def close(self) -> None:
        """Stop polling and streaming, cancel side work, and clear the store."""
        self._invalidate()
        self._stop_polling()
        await self._teardown_stream()
        await self._verifier.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._store.clear()
        self._slots.clear()
        self._loaded = False
        self._set_state(IngestionState.IDLE)
        self.request_shutdown()

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    # -------------------------------------------------------------------------
    # Loading internals
    # -------------------------------------------------------------------------

    async def _load_batch(self, token: OperationToken) -> None:
        self._set_state(IngestionState.BATCH_FETCHING)
        try:
            records = await self._fetch()
        except NoteStreamError as e:
            if self._is_current(token):
                self._report_failure(e)
                self._set_state(IngestionState.IDLE)
            return

        if not self._is_current(token):
            return

        kinds = self._target.kinds
        self._store.merge(
            (r for r in records if r.kind in kinds), MergeMode.REPLACE, admit=self._admit
        )
        self._render_all()
        self._enrich(self._store.records, token)
        self._finish_initial_load(token)

    async def _load_streaming(self, token: OperationToken) -> None:
        self._set_state(IngestionState.STREAMING)
        done = asyncio.Event()
        self._stream_done = done
        failures: list[UpstreamError] = []

        def on_record(record: Record) -> None:
            if done.is_set() or not self._is_current(token):
                return
            self._admit_incremental([record], token)

        def on_end() -> None:
            done.set()

        def on_error(error: UpstreamError) -> None:
            failures.append(error)
            done.set()

        try:
            # Handlers are attached before start() so no early push is lost
            self._subscription = await self._upstream.subscribe_stream(
                self._sources,
                authors=self._target.author_filter,
                limit=self._config.limit,
                kinds=list(self._target.kinds),
                on_record=on_record,
                on_end=on_end,
                on_error=on_error,
            )
            await self._subscription.start()
        except UpstreamError as e:
            failures.append(e)
            done.set()

        if not done.is_set():
            try:
                async with asyncio.timeout(self._config.streaming.timeout):
                    await done.wait()
            except TimeoutError:
                self._logger.warning("stream_timeout", timeout=self._config.streaming.timeout)

        if not self._is_current(token):
            return

        await self._teardown_stream()

        if failures:
            self._report_failure(failures[0])
            self._set_state(IngestionState.IDLE)
            return

        self._logger.info("stream_end", records=len(self._store))
        self._finish_initial_load(token)

    def _finish_initial_load(self, token: OperationToken) -> None:
        if not self._is_current(token):
            return
        self._loaded = True
        self._set_state(IngestionState.LOADED)
        self.set_gauge("store_size", len(self._store))
        self._logger.info("load_completed", records=len(self._store))
        if not self.visible_records():
            self._events.emit(FeedEmpty())
        self._ensure_polling()

    async def _teardown_stream(self) -> None:
        subscription, self._subscription = self._subscription, None
        if self._stream_done is not None:
            self._stream_done.set()
            self._stream_done = None
        if subscription is not None:
            try:
                await subscription.unsubscribe()
            except UpstreamError as e:
                self._logger.debug("unsubscribe_failed", error=str(e))

    async def _fetch(self, *, since: int | None = None, until: int | None = None) -> list[Record]:
        start = time.monotonic()
        try:
            return await self._upstream.fetch_records(
                self._sources,
                authors=self._target.author_filter,
                since=since,
                until=until,
                limit=self._config.limit,
                kinds=list(self._target.kinds),
            )
        finally:
            self.observe_fetch("fetch_records", time.monotonic() - start)

    # -------------------------------------------------------------------------
    # Admission and side channels
    # -------------------------------------------------------------------------

    def _admit(self, record: Record) -> bool:
        if admits(record, self._rules):
            return True
        self.inc_counter("records_rejected")
        return False

    def _admit_incremental(self, records: Iterable[Record], token: OperationToken) -> list[Record]:
        kinds = self._target.kinds
        candidates = {r.id: r for r in records if r.kind in kinds}
        inserted = self._store.merge(candidates.values(), MergeMode.APPEND, admit=self._admit)

        positions = {r.id: i for i, r in enumerate(self.visible_records())}
        admitted: list[Record] = []
        for record_id in inserted:
            record = candidates[record_id]
            self._events.emit(
                RecordAdmitted(
                    record=record, index=positions[record_id], slot=self._slot_for(record_id)
                )
            )
            admitted.append(record)

        if admitted:
            self.inc_counter("records_admitted", len(admitted))
            self.set_gauge("store_size", len(self._store))
            self._enrich(admitted, token)
        return admitted

    def _enrich(self, records: Sequence[Record], token: OperationToken) -> None:
        if not records:
            return
        items = [(r, self._slot_for(r.id)) for r in records]

        if self._config.verification.enabled:
            self._verifier.schedule(items, guard=lambda: self._is_current(token))
        self._spawn(self._hydrate_profiles(records, token))
        if self._config.embeds.enabled:
            with_refs = [(r, slot) for r, slot in items if scan_references(r.content)]
            if with_refs:
                self._spawn(self._resolve_embeds(with_refs, token))

    async def _hydrate_profiles(self, records: Sequence[Record], token: OperationToken) -> None:
        authors: list[str] = []
        for record in records:
            authors.append(record.author_id)
            target_author = reply_target_author(record)
            if target_author:
                authors.append(target_author)
            original = record.embedded_repost()
            if original is not None:
                authors.append(original.author_id)

        def on_patched(author_id: str, profile: Profile) -> None:
            if self._is_current(token):
                self._events.emit(ProfilePatched(author_id=author_id, profile=profile))

        await self._profiles.ensure(authors, on_patched)

    async def _resolve_embeds(self, items: list[tuple[Record, int]], token: OperationToken) -> None:
        resolved = await self._embeds.resolve_many([record for record, _ in items])
        if not self._is_current(token):
            return
        for record, slot in items:
            self._events.emit(
                EmbedsResolved(record_id=record.id, slot=slot, segments=tuple(resolved[record.id]))
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _token(self) -> OperationToken:
        return OperationToken(self._generation, self._target)

    def _is_current(self, token: OperationToken) -> bool:
        return token.generation == self._generation and token.target == self._target

    def _invalidate(self) -> None:
        self._generation += 1

    def _set_state(self, state: IngestionState) -> None:
        previous, self._state = self._state, state
        if previous != state:
            self._logger.debug("state_changed", previous=previous, current=state)
            self._events.emit(StateChanged(previous=previous, current=state))

    def _slot_for(self, record_id: str) -> int:
        slot = self._slots.get(record_id)
        if slot is None:
            slot = self._next_slot
            self._next_slot += 1
            self._slots[record_id] = slot
        return slot

    def _render_all(self) -> None:
        visible = self.visible_records()
        self._events.emit(
            ViewRendered(
                records=tuple(visible),
                slots=tuple(self._slot_for(r.id) for r in visible),
            )
        )

    def _report_failure(self, error: NoteStreamError) -> None:
        kind = FailureKind.DECODE if isinstance(error, DecodeError) else FailureKind.TRANSPORT
        self.inc_counter("transport_failures")
        self._logger.warning("fetch_failed", kind=kind, error=str(error))
        self._events.emit(FailureReported(kind=kind, message=str(error)))

    def _should_poll(self) -> bool:
        if not self._target.polls:
            return False
        return self._target.polls_while_focused or not self._focused

    def _ensure_polling(self) -> None:
        if self.is_polling or not self.is_running or not self._target.polls:
            return
        self._poll_task = asyncio.create_task(self.run_forever())

    def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error(
                "background_task_failed", error=str(error), error_type=type(error).__name__
            )
