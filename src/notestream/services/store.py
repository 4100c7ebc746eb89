"""
Sorted, deduplicated record container for one feed view.

[NoteStore][notestream.services.store.NoteStore] keeps records unique by
``id`` and ordered newest first. Two merge modes exist:

* ``REPLACE`` swaps the whole content for the incoming set (initial batch
  load).
* ``APPEND`` inserts only unseen ids at their sorted position (streaming
  pushes, polling, pagination). Re-merging the same batch is a no-op.

Ties on ``created_at`` keep arrival order: a newly merged record goes after
records already stored with the same timestamp.

Note:
    A merge runs to completion without suspending, so no caller can ever
    observe a partially merged store.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Callable, Iterable, Iterator

from notestream.models.constants import MergeMode
from notestream.models.record import Record


Admit = Callable[[Record], bool]


class NoteStore:
    """Newest-first, id-unique list of records.

    Examples:
        ```python
        store = NoteStore()
        store.merge([r100, r300], MergeMode.APPEND)
        store.merge([r200, r300], MergeMode.APPEND)   # returns [r200.id]
        [r.created_at for r in store]                  # [300, 200, 100]
        ```
    """

    def __init__(self) -> None:
        self._records: list[Record] = []
        # Negated timestamps, ascending, parallel to _records, for bisect
        self._keys: list[int] = []
        self._ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(tuple(self._records))

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    @property
    def records(self) -> tuple[Record, ...]:
        """Snapshot of the stored records, newest first."""
        return tuple(self._records)

    def get(self, record_id: str) -> Record | None:
        """Return the stored record with *record_id*, if any."""
        if record_id not in self._ids:
            return None
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def index_of(self, record_id: str) -> int | None:
        """Return the current position of *record_id*, or ``None`` if absent."""
        if record_id not in self._ids:
            return None
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None

    def newest_created_at(self) -> int | None:
        """Timestamp of the newest stored record; ``None`` when empty."""
        return self._records[0].created_at if self._records else None

    def oldest_created_at(self) -> int | None:
        """Timestamp of the oldest stored record; ``None`` when empty."""
        return self._records[-1].created_at if self._records else None

    def clear(self) -> None:
        """Drop every record."""
        self._records.clear()
        self._keys.clear()
        self._ids.clear()

    def merge(
        self,
        incoming: Iterable[Record],
        mode: MergeMode,
        *,
        admit: Admit | None = None,
    ) -> list[str]:
        """Merge *incoming* and return the ids that were inserted, in admission order.

        Args:
            incoming: Records to merge. May contain duplicates and be in any order.
            mode: ``REPLACE`` to become exactly the incoming set, ``APPEND``
                to add only unseen ids.
            admit: Optional predicate; records it rejects are never stored.

        Returns:
            Ids of the records now stored because of this call. For
            ``REPLACE`` that is every stored id, newest first.
        """
        if mode == MergeMode.REPLACE:
            return self._replace(incoming, admit)
        return self._append(incoming, admit)

    def _replace(self, incoming: Iterable[Record], admit: Admit | None) -> list[str]:
        seen: set[str] = set()
        kept: list[Record] = []
        for record in incoming:
            if record.id in seen:
                continue
            seen.add(record.id)
            if admit is None or admit(record):
                kept.append(record)

        # sorted() is stable, so equal timestamps keep input order
        kept = sorted(kept, key=lambda r: -r.created_at)
        self._records = kept
        self._keys = [-r.created_at for r in kept]
        self._ids = {r.id for r in kept}
        return [r.id for r in kept]

    def _append(self, incoming: Iterable[Record], admit: Admit | None) -> list[str]:
        inserted: list[str] = []
        for record in incoming:
            if record.id in self._ids:
                continue
            if admit is not None and not admit(record):
                continue
            key = -record.created_at
            position = bisect_right(self._keys, key)
            self._keys.insert(position, key)
            self._records.insert(position, record)
            self._ids.add(record.id)
            inserted.append(record.id)
        return inserted
