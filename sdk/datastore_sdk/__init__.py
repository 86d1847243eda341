"""
Datastore Python SDK - async client for a remote key/value datastore.

This SDK provides:
- Keys and entities (Key, PathElement, Entity)
- Dataset for direct, immediately applied operations
- Transaction for atomic groups of writes
- Query descriptors with cursor-based paging
- gRPC, HTTP and in-memory transports

Example:
    >>> from datastore_sdk import Dataset, Entity, GrpcTransport
    >>>
    >>> async with Dataset("my-project", GrpcTransport("my-project")) as ds:
    ...     [key] = await ds.save(Entity(ds.key("Company"), {"name": "Acme"}))
    ...     async with ds.transaction() as txn:
    ...         [company] = await txn.get(key)
    ...         company["rating"] = 10
    ...         await txn.save(company)

Invariants:
    - Only the last element of a key may be incomplete
    - Writes inside a transaction are sent together on commit
    - Errors are typed; nothing fails silently

Version: 0.3.0
"""

__version__ = "0.3.0"

from .config import Settings
from .dataset import Dataset
from .entity import Entity
from .errors import (
    DatastoreError,
    InvalidArgumentError,
    ProtocolError,
    RemoteRejectedError,
    TransactionStateError,
    TransportError,
)
from .key import Key, PathElement, is_key_complete
from .builders import Mutation, MutationOp
from .query import Query, QueryResult
from .transaction import ImplicitExecutor, Transaction, TransactionState
from .transport import GrpcTransport, HttpTransport, InMemoryTransport, Transport

__all__ = [
    # Version
    "__version__",
    # Model
    "Key",
    "PathElement",
    "Entity",
    "is_key_complete",
    "Mutation",
    "MutationOp",
    "Query",
    "QueryResult",
    # Client
    "Dataset",
    "Settings",
    "ImplicitExecutor",
    "Transaction",
    "TransactionState",
    # Transports
    "Transport",
    "GrpcTransport",
    "HttpTransport",
    "InMemoryTransport",
    # Errors
    "DatastoreError",
    "InvalidArgumentError",
    "TransactionStateError",
    "TransportError",
    "ProtocolError",
    "RemoteRejectedError",
]
