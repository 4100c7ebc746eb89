"""Filter configuration snapshot.

[MuteRules][notestream.models.mute.MuteRules] is the immutable input of the
filter engine. Entries are normalized once at construction so that every
visibility check compares already-lowercased values.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from ._validation import validate_instance
from .record import normalize_topic


@dataclass(frozen=True, slots=True)
class MuteRules:
    """Muted authors, words, and topics plus the unreadable-payload switch.

    Attributes:
        muted_authors: Author ids, lowercased.
        muted_words: Words or phrases, case-folded; matched as substrings.
        muted_topics: Topic tags, lowercased with a leading ``#`` removed.
        hide_unreadable: Hide kind-1 records whose content looks encoded.

    Examples:
        ```python
        rules = MuteRules.build(muted_words=["Spam"], muted_topics=["#Ads"])
        rules.muted_words   # frozenset({'spam'})
        rules.muted_topics  # frozenset({'ads'})
        ```
    """

    muted_authors: frozenset[str] = field(default_factory=frozenset)
    muted_words: frozenset[str] = field(default_factory=frozenset)
    muted_topics: frozenset[str] = field(default_factory=frozenset)
    hide_unreadable: bool = True

    def __post_init__(self) -> None:
        validate_instance(self.hide_unreadable, bool, "hide_unreadable")
        object.__setattr__(
            self, "muted_authors", frozenset(a.strip().lower() for a in self.muted_authors if a)
        )
        object.__setattr__(
            self, "muted_words", frozenset(w.casefold() for w in self.muted_words if w.strip())
        )
        object.__setattr__(
            self,
            "muted_topics",
            frozenset(normalize_topic(t.strip()) for t in self.muted_topics if t.strip("# ")),
        )

    @classmethod
    def build(
        cls,
        *,
        muted_authors: Iterable[str] = (),
        muted_words: Iterable[str] = (),
        muted_topics: Iterable[str] = (),
        hide_unreadable: bool = True,
    ) -> MuteRules:
        """Build rules from arbitrary iterables of raw entries."""
        return cls(
            muted_authors=frozenset(muted_authors),
            muted_words=frozenset(muted_words),
            muted_topics=frozenset(muted_topics),
            hide_unreadable=hide_unreadable,
        )
