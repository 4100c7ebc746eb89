"""Tolerant parsing of raw relay payloads into records.

Relays return whatever they store; a single malformed event must not sink
a whole fetch. The converters below call a factory for each element and
keep only the ones that parse. Invalid entries are logged at WARNING level
and skipped.

The module depends only on :mod:`notestream.models` and the standard
library, keeping it safe to import from any layer above ``models``.

Examples:
    ```python
    from notestream.utils.parsing import records_from_json

    records = records_from_json(evt.as_json() for evt in events.to_vec())
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from notestream.models.record import Record


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

_P = TypeVar("_P")
_M = TypeVar("_M")


def models_from_raw(items: Iterable[_P], factory: Callable[[_P], _M]) -> list[_M]:
    """Parse raw items into model instances, skipping invalid entries.

    Calls ``factory(item)`` for each element. Items that raise
    ``ValueError`` or ``TypeError`` are logged and discarded.
    """
    results: list[_M] = []
    for item in items:
        try:
            results.append(factory(item))
        except (ValueError, TypeError) as e:
            logger.warning("parse_failed error=%s", e)
    return results


def records_from_json(payloads: Iterable[str]) -> list[Record]:
    """Parse NIP-01 JSON event payloads into [Record][notestream.models.record.Record]s."""
    return models_from_raw(payloads, Record.from_json)


__all__ = [
    "models_from_raw",
    "records_from_json",
]
