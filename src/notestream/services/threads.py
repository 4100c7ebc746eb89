"""
Thread reconstruction for a record detail view.

Given a subject record,
[ThreadResolver][notestream.services.threads.ThreadResolver] walks its
reply chain upward to collect the ancestors, fetches the records that
reply to it, and arranges those replies as an indented tree.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from notestream.core.exceptions import NoteStreamError, ResolutionError
from notestream.core.logger import Logger
from notestream.core.upstream import Upstream
from notestream.models.constants import DEFAULT_REPLY_LIMIT, ReplyTargetPolicy
from notestream.models.mute import MuteRules
from notestream.models.record import Record
from notestream.models.relations import parent_id

from .filters import admits


@dataclass(frozen=True, slots=True)
class ThreadEntry:
    """One reply in display order with its nesting depth (0 = direct reply)."""

    record: Record
    indent: int


@dataclass(frozen=True, slots=True)
class Thread:
    """A subject record with its context.

    Attributes:
        subject: The record the view is about.
        ancestors: Records above the subject, root first.
        replies: Replies below the subject in depth-first display order.
    """

    subject: Record
    ancestors: tuple[Record, ...]
    replies: tuple[ThreadEntry, ...]


def build_reply_thread(
    replies: Sequence[Record],
    subject_id: str,
    policy: ReplyTargetPolicy = ReplyTargetPolicy.LAST_E_TAG,
) -> list[ThreadEntry]:
    """Arrange *replies* as a depth-first list of entries.

    Replies are grouped by parent; a reply whose parent is not among
    *replies* hangs off the subject. Siblings are ordered oldest first.
    """
    known = {r.id for r in replies if r.id != subject_id}
    children: dict[str, list[Record]] = defaultdict(list)
    for reply in replies:
        if reply.id == subject_id:
            continue
        parent = parent_id(reply, policy)
        if parent not in known or parent == reply.id:
            parent = subject_id
        children[parent].append(reply)

    for siblings in children.values():
        siblings.sort(key=lambda r: r.created_at)

    ordered: list[ThreadEntry] = []
    visited: set[str] = set()

    def walk(node_id: str, indent: int) -> None:
        for child in children.get(node_id, ()):
            if child.id in visited:
                continue
            visited.add(child.id)
            ordered.append(ThreadEntry(child, indent))
            walk(child.id, indent + 1)

    walk(subject_id, 0)
    return ordered


class ThreadResolver:
    """Fetch and arrange the context of a record.

    Args:
        upstream: Record source.
        sources: Relays to query.
        policy: Reply target policy used to find parents.
        max_ancestors: Upper bound on the upward walk.
    """

    def __init__(
        self,
        upstream: Upstream,
        sources: Sequence[str],
        *,
        policy: ReplyTargetPolicy = ReplyTargetPolicy.LAST_E_TAG,
        max_ancestors: int = 50,
        reply_limit: int = DEFAULT_REPLY_LIMIT,
    ) -> None:
        self._upstream = upstream
        self._sources = list(sources)
        self._policy = policy
        self._max_ancestors = max_ancestors
        self._reply_limit = reply_limit
        self._logger = Logger("threads")

    async def ancestors(self, record: Record) -> list[Record]:
        """Return the ancestors of *record*, root first.

        The walk fetches one parent per step and stops at a missing parent,
        a repeated id, a fetch failure, or ``max_ancestors`` steps.
        """
        chain: list[Record] = []
        seen = {record.id}
        current = record
        while len(chain) < self._max_ancestors:
            parent = parent_id(current, self._policy)
            if parent is None or parent in seen:
                break
            seen.add(parent)
            try:
                found = await self._upstream.fetch_records_by_ids(self._sources, [parent])
            except NoteStreamError as e:
                self._logger.warning("ancestor_fetch_failed", id=parent, error=str(e))
                break
            match = next((r for r in found if r.id == parent), None)
            if match is None:
                break
            chain.append(match)
            current = match
        chain.reverse()
        return chain

    async def replies(self, record: Record, rules: MuteRules | None = None) -> list[ThreadEntry]:
        """Return the reply tree under *record*, muted replies removed."""
        try:
            fetched = await self._upstream.fetch_replies(
                self._sources, record.id, limit=self._reply_limit
            )
        except NoteStreamError as e:
            self._logger.warning("replies_fetch_failed", id=record.id, error=str(e))
            return []
        if rules is not None:
            fetched = [r for r in fetched if admits(r, rules)]
        return build_reply_thread(fetched, record.id, self._policy)

    async def open(self, subject: Record | str, rules: MuteRules | None = None) -> Thread:
        """Build the [Thread][notestream.services.threads.Thread] of *subject*.

        Args:
            subject: The record, or its id to fetch first.
            rules: Mute rules applied to replies.

        Raises:
            ResolutionError: If *subject* is an id that cannot be found.
        """
        if isinstance(subject, str):
            found = await self._upstream.fetch_records_by_ids(self._sources, [subject])
            record = next((r for r in found if r.id == subject), None)
            if record is None:
                raise ResolutionError(f"record not found: {subject}")
            subject = record

        ancestors = await self.ancestors(subject)
        replies = await self.replies(subject, rules)
        self._logger.info(
            "thread_opened", id=subject.id, ancestors=len(ancestors), replies=len(replies)
        )
        return Thread(subject=subject, ancestors=tuple(ancestors), replies=tuple(replies))
