"""Reply and repost relation extraction.

Pure functions over a [Record][notestream.models.record.Record]'s tags.
NIP-10 marks the direct parent with a ``reply`` marker in the fourth
element of an ``e`` tag; older clients rely on tag position instead. The
positional fallback is an explicit
[ReplyTargetPolicy][notestream.models.constants.ReplyTargetPolicy] rather
than a hidden rule.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .constants import EventKind, ReplyTargetPolicy


if TYPE_CHECKING:
    from .record import Record


_MARKER_INDEX = 3


def _e_tags(record: Record) -> list[tuple[str, ...]]:
    return [tag for tag in record.tags if len(tag) >= 2 and tag[0] == "e"]  # noqa: PLR2004


def _marked(e_tags: list[tuple[str, ...]], marker: str) -> str | None:
    for tag in e_tags:
        if len(tag) > _MARKER_INDEX and tag[_MARKER_INDEX] == marker:
            return tag[1]
    return None


def parent_id(
    record: Record,
    policy: ReplyTargetPolicy = ReplyTargetPolicy.LAST_E_TAG,
) -> str | None:
    """Return the id of the record *record* replies to.

    The ``e`` tag marked ``reply`` wins. Without one, *policy* decides:
    the last ``e`` tag, the first ``e`` tag, or no parent at all.

    Args:
        record: The record to inspect.
        policy: Fallback used when no ``e`` tag carries the ``reply`` marker.

    Returns:
        The parent id, or ``None`` when the record is not a reply.
    """
    e_tags = _e_tags(record)
    if not e_tags:
        return None

    marked = _marked(e_tags, "reply")
    if marked is not None:
        return marked

    if policy == ReplyTargetPolicy.LAST_E_TAG:
        return e_tags[-1][1]
    if policy == ReplyTargetPolicy.FIRST_E_TAG:
        return e_tags[0][1]
    return None


def root_id(record: Record) -> str | None:
    """Return the thread root id: the ``root``-marked ``e`` tag, else the first ``e`` tag."""
    e_tags = _e_tags(record)
    if not e_tags:
        return None
    marked = _marked(e_tags, "root")
    return marked if marked is not None else e_tags[0][1]


def reply_target_author(record: Record) -> str | None:
    """Return the first ``p`` tag value, but only when the record has an ``e`` tag.

    A ``p`` tag without any ``e`` tag is a mention, not a reply.
    """
    if not _e_tags(record):
        return None
    mentioned = record.tag_values("p")
    return mentioned[0] if mentioned else None


def repost_target_id(record: Record) -> str | None:
    """Return the id a kind-6 repost points at, taken from its first ``e`` tag."""
    if record.kind != EventKind.REPOST:
        return None
    e_tags = _e_tags(record)
    return e_tags[0][1] if e_tags else None
