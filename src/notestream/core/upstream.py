"""
The narrow boundary between the pipeline and the network.

Everything the pipeline needs from the outside world is expressed by the
[Upstream][notestream.core.upstream.Upstream] protocol: batch fetches,
push streams with an end-of-stream signal, id lookups, profile lookups,
signature checks, and reference decoding. The default implementation is
[NostrUpstream][notestream.services.nostr.NostrUpstream]; tests use an
in-memory double.

Every method may suspend. A fetch raises
[TransportError][notestream.core.exceptions.TransportError] only when no
source could be reached at all.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, NamedTuple, Protocol, runtime_checkable


if TYPE_CHECKING:
    from notestream.core.exceptions import UpstreamError
    from notestream.models.profile import Profile
    from notestream.models.record import Record
    from notestream.models.reference import DecodedReference


class VerificationResult(NamedTuple):
    """Outcome of a signature check.

    Attributes:
        valid: Whether the id and signature match the content.
        reason: Why the check failed; ``None`` when valid.
    """

    valid: bool
    reason: str | None = None


RecordHandler = Callable[["Record"], None]
EndHandler = Callable[[], None]
ErrorHandler = Callable[["UpstreamError"], None]


@runtime_checkable
class StreamSubscription(Protocol):
    """Handle returned by [Upstream.subscribe_stream()][notestream.core.upstream.Upstream.subscribe_stream].

    Handlers are attached at subscription time; nothing is delivered until
    [start()][notestream.core.upstream.StreamSubscription.start] is awaited.
    """

    async def start(self) -> None:
        """Begin delivery. Returns once the request is underway."""
        ...

    async def unsubscribe(self) -> None:
        """Stop delivery. Idempotent; no handler is invoked afterwards."""
        ...


@runtime_checkable
class Upstream(Protocol):
    """Source of records, profiles, signature checks, and reference decoding."""

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
        """Fetch up to *limit* records, newest first, deduplicated by id.

        Raises:
            TransportError: If none of *sources* could be reached.
        """
        ...

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
    ) -> StreamSubscription:
        """Register push handlers for a streaming fetch.

        ``on_record`` fires once per delivered record (duplicates across
        sources are possible). ``on_end`` fires once, after every source
        signalled end-of-stored-events. ``on_error`` replaces ``on_end``
        when no source could be reached.
        """
        ...

    async def fetch_records_by_ids(self, sources: Sequence[str], ids: Sequence[str]) -> list[Record]:
        """Fetch the records with the given ids; missing ids are simply absent."""
        ...

    async def fetch_replies(
        self, sources: Sequence[str], record_id: str, *, limit: int
    ) -> list[Record]:
        """Fetch records that reference *record_id* through an ``e`` tag."""
        ...

    async def fetch_profile(self, author_id: str, sources: Sequence[str]) -> Profile | None:
        """Fetch the latest display fields of *author_id*, or ``None`` if none are published."""
        ...

    async def verify(self, record: Record) -> VerificationResult:
        """Check the id and signature of *record*."""
        ...

    async def decode_reference(self, entity: str) -> DecodedReference:
        """Decode a bech32 entity (``note1``, ``nevent1``, ``npub1``, ``nprofile1``).

        Raises:
            DecodeError: If *entity* is not a valid reference.
        """
        ...
