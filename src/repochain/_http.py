"""Small HTTP-related constants shared across repochain.

Kept tiny so the client, error mapping, and stop predicates can share it
without circular imports.
"""

from __future__ import annotations

# Status codes worth another attempt: timeouts, conflicts, throttling, 5xx.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})
