"""Filter engine: pure visibility predicates over records.

Every function here is deterministic and free of side effects; the same
record and [MuteRules][notestream.models.mute.MuteRules] always give the
same answer. Changing the rules therefore only requires re-running the
predicates over the store, never refetching.

Examples:
    ```python
    rules = MuteRules.build(muted_words=["airdrop"])
    admits(record, rules)
    filter_visible(store.records, rules)
    ```
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable

from notestream.models.constants import UNREADABLE_MIN_LENGTH, EventKind
from notestream.models.mute import MuteRules
from notestream.models.record import Record


_BASE64 = re.compile(r"^[A-Za-z0-9+/]+=*$")
_TAGGED_JSON = re.compile(r"^\[[\w:.#\[\]-]+\]\s*(\{[\s\S]*\})$", re.ASCII)


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def is_visible(record: Record, rules: MuteRules) -> bool:
    """Return ``False`` when *rules* mute *record*.

    The author check applies to every kind. Word and topic checks apply
    only to plain text notes; words match as case-insensitive substrings
    and topics match the record's ``t`` tags.
    """
    if record.author_id.lower() in rules.muted_authors:
        return False

    if record.kind != EventKind.TEXT_NOTE:
        return True

    if rules.muted_words:
        content = record.content.casefold()
        if any(word in content for word in rules.muted_words):
            return False

    return not (rules.muted_topics and record.topics() & rules.muted_topics)


def is_unreadable_payload(content: str) -> bool:
    """Return ``True`` when *content* looks like an encoded blob rather than prose.

    Content shorter than 20 characters is always readable. Longer content
    is flagged when, once stripped, it is pure base64, a JSON object or
    array, or a bracketed tag followed by a JSON object
    (``[proto:v1] {...}``).
    """
    if len(content) < UNREADABLE_MIN_LENGTH:
        return False

    text = content.strip()

    if _BASE64.match(text):
        return True

    if (text.startswith("{") and text.endswith("}")) or (
        text.startswith("[") and text.endswith("]")
    ):
        if _is_json(text):
            return True

    match = _TAGGED_JSON.match(text)
    return bool(match and _is_json(match.group(1)))


def admits(record: Record, rules: MuteRules) -> bool:
    """Return whether *record* may enter the visible feed under *rules*.

    Combines [is_visible()][notestream.services.filters.is_visible] with the
    unreadable-payload check, which only applies to text notes and only
    when ``rules.hide_unreadable`` is set.
    """
    if not is_visible(record, rules):
        return False
    return not (
        rules.hide_unreadable
        and record.kind == EventKind.TEXT_NOTE
        and is_unreadable_payload(record.content)
    )


def filter_visible(records: Iterable[Record], rules: MuteRules) -> list[Record]:
    """Return the records *rules* admit, preserving input order."""
    return [record for record in records if admits(record, rules)]
