"""
Typed pipeline events and a synchronous emitter.

The pipeline never renders anything itself. Every observable change is
published as a frozen event dataclass through an
[EventEmitter][notestream.core.events.EventEmitter]; a renderer (a UI, the
CLI log printer, a test) subscribes and reacts.

Events:

* [RecordAdmitted][notestream.core.events.RecordAdmitted]: one record was
  inserted by an incremental merge at ``index``.
* [ViewRendered][notestream.core.events.ViewRendered]: the full visible list
  should be (re)drawn.
* [BadgeUpdated][notestream.core.events.BadgeUpdated]: a verification
  outcome for a rendered record.
* [ProfilePatched][notestream.core.events.ProfilePatched]: author display
  fields became available.
* [EmbedsResolved][notestream.core.events.EmbedsResolved]: the content of a
  rendered record was resolved into segments.
* [StateChanged][notestream.core.events.StateChanged],
  [FeedEmpty][notestream.core.events.FeedEmpty],
  [FailureReported][notestream.core.events.FailureReported].
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from notestream.models.constants import BadgeState, BadgeSubject, FailureKind, IngestionState

from .logger import Logger


if TYPE_CHECKING:
    from notestream.models.profile import Profile
    from notestream.models.record import Record


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    """Base class of every emitted event."""


@dataclass(frozen=True, slots=True)
class RecordAdmitted(PipelineEvent):
    """A record entered the store through an incremental merge.

    Attributes:
        record: The admitted record.
        index: Its position in the visible list (store order under the
            current mute rules) right after insertion.
        slot: Stable render slot assigned to the record.
    """

    record: Record
    index: int
    slot: int


@dataclass(frozen=True, slots=True)
class ViewRendered(PipelineEvent):
    """The complete visible list, newest first, with the render slot of each record."""

    records: tuple[Record, ...]
    slots: tuple[int, ...]


@dataclass(frozen=True, slots=True)
class BadgeUpdated(PipelineEvent):
    """Verification outcome for the record rendered in ``slot``."""

    record_id: str
    slot: int
    state: BadgeState
    reason: str | None = None
    subject: BadgeSubject = BadgeSubject.RECORD


@dataclass(frozen=True, slots=True)
class ProfilePatched(PipelineEvent):
    """Display fields for ``author_id`` are now cached."""

    author_id: str
    profile: Profile


@dataclass(frozen=True, slots=True)
class EmbedsResolved(PipelineEvent):
    """The content of the record in ``slot`` split into render segments."""

    record_id: str
    slot: int
    segments: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class StateChanged(PipelineEvent):
    """The ingestion controller moved from ``previous`` to ``current``."""

    previous: IngestionState
    current: IngestionState


@dataclass(frozen=True, slots=True)
class FeedEmpty(PipelineEvent):
    """The first load finished without a single visible record."""


@dataclass(frozen=True, slots=True)
class FailureReported(PipelineEvent):
    """A dismissible failure for the presentation layer.

    Attributes:
        kind: Failure category.
        message: Human-readable description.
    """

    kind: FailureKind
    message: str


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------


Listener = Callable[[PipelineEvent], None]


class EventEmitter:
    """Synchronous fan-out of pipeline events to subscribed listeners.

    Listeners run in subscription order on the emitting task. A listener
    that raises is logged with its traceback and the remaining listeners
    still receive the event.

    Examples:
        ```python
        emitter = EventEmitter()
        unsubscribe = emitter.subscribe(print, RecordAdmitted)
        emitter.emit(FeedEmpty())   # not delivered, filtered by type
        unsubscribe()
        ```
    """

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, tuple[type[PipelineEvent], ...]]] = []
        self._logger = Logger("events")

    def subscribe(self, listener: Listener, *event_types: type[PipelineEvent]) -> Callable[[], None]:
        """Register *listener*, optionally restricted to *event_types*.

        Returns:
            A callable that removes the registration. Calling it twice is harmless.
        """
        entry = (listener, event_types)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def emit(self, event: PipelineEvent) -> None:
        """Deliver *event* to every matching listener."""
        for listener, event_types in list(self._listeners):
            if event_types and not isinstance(event, event_types):
                continue
            try:
                listener(event)
            except Exception:  # Intentionally broad: a faulty renderer must not stall the pipeline
                self._logger.exception("listener_failed", event=type(event).__name__)

    def __len__(self) -> int:
        return len(self._listeners)
