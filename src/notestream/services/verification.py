"""
Background signature checks for rendered records.

Records are displayed before their signatures are checked. The
[VerificationWorker][notestream.services.verification.VerificationWorker]
launches one check per record, pausing a few milliseconds between
launches so a large batch does not saturate the event loop, and reports
each outcome as a [BadgeUpdated][notestream.core.events.BadgeUpdated]
event. A check is never retried.

Reposts carry a copy of the original record; its signature is checked
too and reported with ``subject=REPOST_ORIGINAL``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from notestream.core.events import BadgeUpdated, EventEmitter
from notestream.core.exceptions import NoteStreamError
from notestream.core.logger import Logger
from notestream.core.upstream import Upstream
from notestream.models.constants import BadgeState, BadgeSubject
from notestream.models.record import Record


Guard = Callable[[], bool]


def _always() -> bool:
    return True


class VerificationWorker:
    """Launch signature checks and publish badge updates.

    Args:
        upstream: Performs the actual check.
        emitter: Receives ``BadgeUpdated`` events.
        delay: Seconds between two check launches.
    """

    def __init__(self, upstream: Upstream, emitter: EventEmitter, *, delay: float = 0.01) -> None:
        self._upstream = upstream
        self._emitter = emitter
        self._delay = delay
        self._tasks: set[asyncio.Task[None]] = set()
        self._logger = Logger("verification")

    @property
    def pending(self) -> int:
        """Number of launch loops and checks still running."""
        return len(self._tasks)

    def schedule(self, items: Iterable[tuple[Record, int]], guard: Guard | None = None) -> None:
        """Start checking each ``(record, slot)`` pair in the background.

        Args:
            items: Records with the render slot their badge belongs to.
            guard: Called before every emission; results are dropped once
                it returns ``False`` (the view moved on).
        """
        batch = list(items)
        if not batch:
            return
        self._track(self._launch(batch, guard or _always))

    async def drain(self) -> None:
        """Wait until every scheduled check has reported."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding checks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _launch(self, batch: list[tuple[Record, int]], guard: Guard) -> None:
        for position, (record, slot) in enumerate(batch):
            if not guard():
                return
            if position:
                await asyncio.sleep(self._delay)
            self._track(self._check(record, slot, BadgeSubject.RECORD, guard))
            original = record.embedded_repost()
            if original is not None:
                self._track(self._check(original, slot, BadgeSubject.REPOST_ORIGINAL, guard))

    async def _check(self, record: Record, slot: int, subject: BadgeSubject, guard: Guard) -> None:
        try:
            result = await self._upstream.verify(record)
        except (NoteStreamError, ValueError, OSError) as e:
            state, reason = BadgeState.FAILED, str(e) or type(e).__name__
        else:
            if result.valid:
                state, reason = BadgeState.VERIFIED, None
            else:
                state, reason = BadgeState.FAILED, result.reason or "invalid signature"

        if state == BadgeState.FAILED:
            self._logger.warning("verification_failed", id=record.id, subject=subject, reason=reason)

        if not guard():
            return
        self._emitter.emit(
            BadgeUpdated(record_id=record.id, slot=slot, state=state, reason=reason, subject=subject)
        )
