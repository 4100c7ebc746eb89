"""Feed targets and stale-operation tokens for the ingestion controller.

See Also:
    [IngestionController][notestream.services.ingestion.IngestionController]:
        Consumes these types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

from notestream.models._validation import validate_hex_id
from notestream.models.constants import EventKind, FeedMode


@dataclass(frozen=True, slots=True)
class FeedTarget:
    """What a feed view shows.

    Attributes:
        mode: [FeedMode][notestream.models.constants.FeedMode] of the view.
        authors: Follow list (``FOLLOWS``) or the single author (``PROFILE``).
        identity: Id of the signed-in user, if any. Changing it is an
            identity switch even when the authors stay the same.

    Raises:
        ValueError: If ``PROFILE`` is not given exactly one author, or
            ``GLOBAL`` is given authors.

    Examples:
        ```python
        FeedTarget()                                     # global firehose
        FeedTarget(FeedMode.FOLLOWS, authors=("ab" * 32,))
        FeedTarget.profile("cd" * 32).kinds              # (1, 6)
        ```
    """

    mode: FeedMode = FeedMode.GLOBAL
    authors: tuple[str, ...] = field(default=())
    identity: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", FeedMode(self.mode))
        authors = tuple(dict.fromkeys(a.lower() for a in self.authors))
        for author in authors:
            validate_hex_id(author, "author")
        object.__setattr__(self, "authors", authors)

        if self.mode == FeedMode.PROFILE and len(authors) != 1:
            raise ValueError("a profile feed needs exactly one author")
        if self.mode == FeedMode.GLOBAL and authors:
            raise ValueError("a global feed cannot restrict authors")

    @classmethod
    def profile(cls, author_id: str, identity: str | None = None) -> FeedTarget:
        """Target the records of a single author."""
        return cls(FeedMode.PROFILE, authors=(author_id,), identity=identity)

    @property
    def kinds(self) -> tuple[int, ...]:
        """Record kinds shown: text notes, plus reposts on profile feeds."""
        if self.mode == FeedMode.PROFILE:
            return (EventKind.TEXT_NOTE, EventKind.REPOST)
        return (EventKind.TEXT_NOTE,)

    @property
    def author_filter(self) -> list[str] | None:
        """Authors to pass upstream; ``None`` means no author restriction.

        A follow feed with no follows is unrestricted.
        """
        return list(self.authors) or None

    @property
    def polls(self) -> bool:
        """Whether the feed polls for new records once loaded.

        A follow feed with no follows loads unrestricted once and never polls.
        """
        return not (self.mode == FeedMode.FOLLOWS and not self.authors)

    @property
    def polls_while_focused(self) -> bool:
        """Global feeds refresh on focus instead of polling while visible."""
        return self.mode != FeedMode.GLOBAL


class OperationToken(NamedTuple):
    """Captured identity of an in-flight operation.

    An operation may mutate the store or emit events only while the
    controller's generation and target still match.
    """

    generation: int
    target: FeedTarget
