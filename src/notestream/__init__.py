r"""notestream -- Nostr feed ingestion pipeline.

Fetches short text records from a set of relays, filters them against the
user's mute rules, keeps them newest first and free of duplicates, and
enriches them in the background with signature badges, author profiles,
and recursively resolved embedded references.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Controller, store, caches, resolvers
             /        \
          core        utils    Base service, events, logging | nostr-sdk helpers
             \        /
              models           Pure frozen dataclasses (zero I/O)
```

Attributes:
    models: Records, relations, profiles, mute rules, relays, references.
    core: Base service, event emitter, upstream protocol, exceptions,
        logging, metrics, YAML loading.
    utils: ``nostr_sdk`` client helpers and tolerant payload parsing.
    services: Ingestion controller, note store, profile cache,
        verification worker, embed and thread resolvers, relay upstream.

Note:
    Top-level imports (``from notestream import Record``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("notestream")

__all__ = [
    "BaseService",
    "EventEmitter",
    "FeedMode",
    "FeedTarget",
    "IngestionConfig",
    "IngestionController",
    "Logger",
    "MuteRules",
    "NostrUpstream",
    "NoteStore",
    "Profile",
    "ProfileCache",
    "Record",
    "Relay",
    "Upstream",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("notestream.core", "BaseService"),
    "EventEmitter": ("notestream.core", "EventEmitter"),
    "Logger": ("notestream.core", "Logger"),
    "Upstream": ("notestream.core", "Upstream"),
    "FeedMode": ("notestream.models", "FeedMode"),
    "MuteRules": ("notestream.models", "MuteRules"),
    "Profile": ("notestream.models", "Profile"),
    "Record": ("notestream.models", "Record"),
    "Relay": ("notestream.models", "Relay"),
    "FeedTarget": ("notestream.services", "FeedTarget"),
    "IngestionConfig": ("notestream.services", "IngestionConfig"),
    "IngestionController": ("notestream.services", "IngestionController"),
    "NostrUpstream": ("notestream.services", "NostrUpstream"),
    "NoteStore": ("notestream.services", "NoteStore"),
    "ProfileCache": ("notestream.services", "ProfileCache"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'notestream' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
