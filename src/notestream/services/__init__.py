"""Feed pipeline components built on the core layer.

Services are the top layer of the diamond DAG, depending on
[notestream.core][notestream.core], [notestream.utils][notestream.utils],
and [notestream.models][notestream.models].

```text
Upstream -> filters -> NoteStore -> renderer events
                  |
                  +-> VerificationWorker, ProfileCache, EmbedResolver
```

Attributes:
    IngestionController: Per-view state machine (load, stream, poll, filter).
    NoteStore: Sorted, deduplicated record container with REPLACE/APPEND merges.
    ProfileCache: Process-wide author display fields, fetched on demand.
    VerificationWorker: Background signature checks emitting badge updates.
    EmbedResolver: Breadth-first expansion of ``nostr:`` references.
    ThreadResolver: Ancestors and reply tree of a single record.
    NostrUpstream: The relay-backed [Upstream][notestream.core.upstream.Upstream].

Note:
    The filter engine ([notestream.services.filters][notestream.services.filters])
    is a set of pure functions; re-filtering never touches the network.

Examples:
    ```python
    from notestream.services import IngestionController, NostrUpstream

    controller = IngestionController(NostrUpstream())
    await controller.activate()
    ```
"""

from .embeds import EmbedResolver
from .ingestion import (
    FeedTarget,
    IngestionConfig,
    IngestionController,
)
from .nostr import NostrStreamSubscription, NostrUpstream
from .profiles import ProfileCache
from .store import NoteStore
from .threads import Thread, ThreadEntry, ThreadResolver
from .verification import VerificationWorker


__all__ = [
    "EmbedResolver",
    "FeedTarget",
    "IngestionConfig",
    "IngestionController",
    "NostrStreamSubscription",
    "NostrUpstream",
    "NoteStore",
    "ProfileCache",
    "Thread",
    "ThreadEntry",
    "ThreadResolver",
    "VerificationWorker",
]
