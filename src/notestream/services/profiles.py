"""
Session-wide author profile cache with lazy, concurrent hydration.

[ProfileCache][notestream.services.profiles.ProfileCache] maps an author id
to its [Profile][notestream.models.profile.Profile]. Entries are created
on demand by [ensure()][notestream.services.profiles.ProfileCache.ensure],
merged field-by-field so a non-null value is never replaced by a null one,
and kept for the whole session.

One cache instance is meant to be shared, by injection, between every
controller of a session; the same author shows the same name everywhere.

Note:
    Hydration issues one upstream request per uncached author and runs
    them all concurrently. Two overlapping ``ensure`` calls may fetch the
    same author twice; the merge rule makes that harmless.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence

from notestream.core.exceptions import NoteStreamError
from notestream.core.logger import Logger
from notestream.core.upstream import Upstream
from notestream.models.profile import Profile


PatchHandler = Callable[[str, Profile], None]


class ProfileCache:
    """Lazily populated ``author_id -> Profile`` map.

    Args:
        upstream: Where profiles are fetched from.
        sources: Relay URLs passed to every profile fetch.
    """

    def __init__(self, upstream: Upstream, sources: Sequence[str]) -> None:
        self._upstream = upstream
        self._sources = list(sources)
        self._profiles: dict[str, Profile] = {}
        self._logger = Logger("profiles")

    def __contains__(self, author_id: object) -> bool:
        return author_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def get(self, author_id: str) -> Profile | None:
        """Return the cached profile of *author_id*, if hydrated."""
        return self._profiles.get(author_id)

    def display_name(self, author_id: str) -> str | None:
        """Return the cached display name of *author_id*, if any."""
        profile = self._profiles.get(author_id)
        return profile.display_name if profile else None

    def merge(self, author_id: str, profile: Profile) -> Profile:
        """Merge *profile* into the entry of *author_id* and return the result."""
        current = self._profiles.get(author_id)
        merged = current.merged(profile) if current is not None else profile
        self._profiles[author_id] = merged
        return merged

    async def ensure(
        self,
        author_ids: Iterable[str],
        on_patched: PatchHandler | None = None,
    ) -> None:
        """Hydrate every uncached author in *author_ids*, then notify.

        Fetches run concurrently. A failed or empty fetch leaves the author
        uncached so a later call retries it. Once all fetches settled,
        *on_patched* is called for each requested author that is cached,
        including authors that already were.
        """
        requested = list(dict.fromkeys(a for a in author_ids if a))
        missing = [a for a in requested if a not in self._profiles]

        if missing:
            self._logger.debug("profiles_fetching", count=len(missing))
            await asyncio.gather(*(self._hydrate(author_id) for author_id in missing))

        if on_patched is None:
            return
        for author_id in requested:
            profile = self._profiles.get(author_id)
            if profile is not None:
                on_patched(author_id, profile)

    async def _hydrate(self, author_id: str) -> None:
        try:
            profile = await self._upstream.fetch_profile(author_id, self._sources)
        except (NoteStreamError, OSError, TimeoutError) as e:
            self._logger.debug("profile_fetch_failed", author=author_id, error=str(e))
            return
        if profile is not None:
            self.merge(author_id, profile)
