"""Nostr client helpers and tolerant payload parsing.

The utils layer sits in the middle of the diamond DAG, depending only on
[notestream.models][notestream.models]. It wraps ``nostr_sdk`` so the
layers above never touch its objects directly.

Attributes:
    protocol: Client factory, filter construction, one-relay fetches,
        signature checks, and bech32 entity decoding.
    parsing: Skip-and-log conversion of raw relay payloads into records.

Note:
    The utils layer has **zero** imports from ``notestream.core`` or
    ``notestream.services``. Mapping low-level failures onto
    [UpstreamError][notestream.core.exceptions.UpstreamError] happens in
    [NostrUpstream][notestream.services.nostr.NostrUpstream].

Examples:
    ```python
    from notestream.utils.protocol import build_filter, fetch_relay_records
    from notestream.utils.parsing import records_from_json
    ```
"""
