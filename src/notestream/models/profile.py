"""
Author profile fields with a never-downgrade merge rule.

A [Profile][notestream.models.profile.Profile] holds the four display
fields the feed needs from a kind-0 metadata event. Profiles arriving from
different sources are combined with
[merged()][notestream.models.profile.Profile.merged]: a field is only
overwritten by a non-null value, so a partial answer from one relay never
erases what another relay already supplied.

See Also:
    [ProfileCache][notestream.services.profiles.ProfileCache]: Session-wide
        store that applies the merge rule.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from ._validation import validate_optional_str


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Profile:
    """Display fields of an author.

    Attributes:
        display_name: Human-readable name (``name``, else ``display_name``).
        verified_identifier: NIP-05 internet identifier.
        avatar_url: Picture URL.
        payment_address: Lightning address (``lud16``).
    """

    display_name: str | None = None
    verified_identifier: str | None = None
    avatar_url: str | None = None
    payment_address: str | None = None

    def __post_init__(self) -> None:
        for f in fields(self):
            validate_optional_str(getattr(self, f.name), f.name)

    @property
    def is_empty(self) -> bool:
        """Whether every field is ``None``."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def merged(self, newer: Profile) -> Profile:
        """Return a profile where each non-null field of *newer* overrides this one.

        Null fields in *newer* never replace a value already present.
        """
        values = {}
        for f in fields(self):
            incoming = getattr(newer, f.name)
            values[f.name] = incoming if incoming is not None else getattr(self, f.name)
        return Profile(**values)

    @classmethod
    def from_metadata(cls, data: Mapping[str, Any]) -> Profile:
        """Map a kind-0 metadata object onto profile fields.

        Non-string and empty values are treated as absent.
        """

        def pick(*keys: str) -> str | None:
            for key in keys:
                value = data.get(key)
                if isinstance(value, str) and value.strip() and "\x00" not in value:
                    return value
            return None

        return cls(
            display_name=pick("name", "display_name"),
            verified_identifier=pick("nip05"),
            avatar_url=pick("picture"),
            payment_address=pick("lud16"),
        )

    @classmethod
    def from_metadata_json(cls, raw: str) -> Profile | None:
        """Parse kind-0 ``content``; returns ``None`` when it is not a JSON object."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug("profile_metadata_invalid_json")
            return None
        if not isinstance(data, dict):
            return None
        return cls.from_metadata(data)
