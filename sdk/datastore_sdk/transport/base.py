"""
Transport protocol for the Datastore SDK.

A transport sends one encoded request for a named method and returns the
encoded response. It owns connection setup, authentication and any retry
policy; the SDK itself never retries.

Invariants:
    - invoke() is safe to call concurrently from independent transactions
    - Failures surface as TransportError or RemoteRejectedError
    - Payload bytes are passed through unchanged

How to change safely:
    - Protocol changes require updating all implementations
    - Keep method names in the REST spelling (lookup, runQuery, ...)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

METHODS = (
    "lookup",
    "runQuery",
    "beginTransaction",
    "commit",
    "rollback",
    "allocateIds",
)


@runtime_checkable
class Transport(Protocol):
    """Send-request capability used by the SDK."""

    async def invoke(self, method: str, payload: bytes) -> bytes:
        """Send ``payload`` to ``method`` and return the response bytes.

        Raises:
            TransportError: Network or authentication failure
            RemoteRejectedError: Server returned a structured failure
        """
        ...

    async def close(self) -> None:
        """Release any connection held by the transport."""
        ...
