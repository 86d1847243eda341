"""
Error types for the Datastore SDK.

This module defines all exception types raised by the SDK:
- DatastoreError: Base exception
- InvalidArgumentError: Local precondition violated before any remote call
- TransactionStateError: Transaction used outside its lifecycle
- TransportError: Network or authentication failure
- ProtocolError: Malformed wire response or undecodable key
- RemoteRejectedError: Server returned a structured failure

Invariants:
    - All errors inherit from DatastoreError
    - Local errors are raised before anything is sent
    - Remote errors are never retried by the SDK
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DatastoreError(Exception):
    """Base exception for all Datastore SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATASTORE_ERROR"
        self.details = details or {}


class InvalidArgumentError(DatastoreError):
    """A caller-supplied argument is not acceptable.

    Raised when:
    - A complete key is passed to allocate_ids
    - Lookup is asked for zero keys
    - A key or property value cannot be represented on the wire
    """

    def __init__(
        self,
        message: str,
        argument: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"argument": argument}
        merged.update(details or {})
        super().__init__(message, code=code or "INVALID_ARGUMENT", details=merged)
        self.argument = argument


class TransactionStateError(InvalidArgumentError):
    """Transaction operation is not valid in its current state.

    Raised when:
    - begin() is called twice
    - commit() is called before begin() or after the transaction finished
    - Mutations are staged on a committed or rolled back transaction
    """

    def __init__(self, message: str, state: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="TRANSACTION_STATE",
            details={"state": state},
        )
        self.state = state


class TransportError(DatastoreError):
    """Failed to reach the datastore.

    Raised when:
    - Server is unreachable
    - Connection times out
    - Authentication fails
    """

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSPORT_ERROR",
            details={"method": method, "status": status},
        )
        self.method = method
        self.status = status


class ProtocolError(DatastoreError):
    """Response could not be decoded.

    Raised when:
    - Response bytes are not a valid message
    - A key on the wire is malformed
    - The response does not match what was requested
    """

    def __init__(self, message: str, method: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="PROTOCOL_ERROR",
            details={"method": method},
        )
        self.method = method


class RemoteRejectedError(DatastoreError):
    """Server rejected the request.

    Raised when:
    - A concurrent transaction conflicts with this one (status ABORTED)
    - The transaction handle is unknown or expired
    - The request is invalid from the server's point of view
    """

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="REMOTE_REJECTED",
            details={"method": method, "status": status},
        )
        self.method = method
        self.status = status
