"""notestream exception hierarchy.

Typed exceptions for every error category of the feed pipeline, so that
callers catch specific failures and ``CancelledError`` propagates untouched.

Exception hierarchy:

```text
NoteStreamError (base -- never raised directly)
├── ConfigurationError      -- config validation, bad YAML
├── UpstreamError            -- anything raised at the upstream boundary
│   ├── TransportError       -- no configured source could be reached
│   └── DecodeError          -- malformed payload or reference token
├── VerificationError        -- signature check could not be performed
└── ResolutionError          -- embedded reference could not be resolved
```

Failure taxonomy, and where each category stops:

* transport failures surface as a dismissible failure event; the store is
  left untouched and nothing is retried;
* partial-source failures are not errors at all, the fetch just returns
  fewer records;
* decode failures drop the offending item;
* verification failures only change a badge;
* resolution failures render a not-found placeholder.

See Also:
    [IngestionController][notestream.services.ingestion.IngestionController]:
        Converts [TransportError][notestream.core.exceptions.TransportError]
        into a ``FailureReported`` event.
    [BaseService][notestream.core.base_service.BaseService]: Counts
        failures in the
        [run_forever()][notestream.core.base_service.BaseService.run_forever]
        loop.
"""

from __future__ import annotations


class NoteStreamError(Exception):
    """Base exception for all notestream errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(NoteStreamError):
    """Invalid or missing configuration (YAML, CLI flags).

    See Also:
        [load_yaml()][notestream.core.yaml.load_yaml]: YAML loading function
            that may trigger configuration errors.
    """


# ---------------------------------------------------------------------------
# Upstream
# ---------------------------------------------------------------------------


class UpstreamError(NoteStreamError):
    """Base for failures raised by an [Upstream][notestream.core.upstream.Upstream]."""


class TransportError(UpstreamError):
    """No configured source answered.

    Raised only when every source failed; a fetch where at least one source
    answered succeeds with whatever that source returned.

    Attributes:
        attempted: Number of sources that were tried.
    """

    def __init__(self, message: str, *, attempted: int = 0) -> None:
        super().__init__(message)
        self.attempted = attempted


class DecodeError(UpstreamError):
    """A payload or reference token could not be decoded."""


# ---------------------------------------------------------------------------
# Side channels
# ---------------------------------------------------------------------------


class VerificationError(NoteStreamError):
    """A signature check could not be carried out (as opposed to failing)."""


class ResolutionError(NoteStreamError):
    """An embedded reference could not be resolved to a record or profile."""
