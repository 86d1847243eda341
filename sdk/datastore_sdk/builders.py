"""
Request builders for every remote operation.

Each builder is a pure function from domain arguments to a wire request
dict. Preconditions are checked here so invalid requests fail before
anything is sent.

Invariants:
    - Builders never perform I/O
    - Mutations keep their append order within each wire group
    - Incomplete upsert/insert keys go to the insertAutoId group
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from .entity import Entity, entity_to_wire
from .errors import InvalidArgumentError
from .key import Key, key_to_wire
from .query import Query


class MutationOp(Enum):
    """Kinds of staged write."""

    UPSERT = "upsert"
    UPDATE = "update"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class Mutation:
    """A staged write.

    Attributes:
        op: Kind of write
        key: Target key as given by the caller
        entity: Entity to write (None for deletes)
    """

    op: MutationOp
    key: Key
    entity: Entity | None = None

    @property
    def needs_id(self) -> bool:
        """Whether the server must assign an id for this mutation."""
        return self.op in (MutationOp.UPSERT, MutationOp.INSERT) and not self.key.is_complete


def build_lookup(keys: Sequence[Key], transaction: str | None = None) -> dict[str, Any]:
    """Build a batched lookup request.

    Raises:
        InvalidArgumentError: If no keys are given or a key is incomplete
    """
    if not keys:
        raise InvalidArgumentError("Lookup requires at least one key", argument="keys")
    for key in keys:
        if not key.is_complete:
            raise InvalidArgumentError(f"Cannot look up incomplete key {key}", argument="keys")

    request: dict[str, Any] = {"key": [key_to_wire(k) for k in keys]}
    if transaction:
        request["readOptions"] = {"transaction": transaction}
    return request


def build_mutation(mutations: Sequence[Mutation]) -> dict[str, Any]:
    """Group mutations by kind of write into the wire mutation shape.

    Raises:
        InvalidArgumentError: If no mutations are given, or an update or
            delete targets an incomplete key
    """
    if not mutations:
        raise InvalidArgumentError("At least one mutation is required", argument="mutations")

    groups: dict[str, list[Any]] = {}
    for mutation in mutations:
        if mutation.op is MutationOp.DELETE:
            if not mutation.key.is_complete:
                raise InvalidArgumentError(
                    f"Cannot delete incomplete key {mutation.key}", argument="keys"
                )
            groups.setdefault("delete", []).append(key_to_wire(mutation.key))
            continue

        if mutation.entity is None:
            raise InvalidArgumentError(
                f"{mutation.op.value} mutation requires an entity", argument="entity"
            )
        if mutation.op is MutationOp.UPDATE and not mutation.key.is_complete:
            raise InvalidArgumentError(
                f"Cannot update incomplete key {mutation.key}", argument="entities"
            )

        wire_entity = entity_to_wire(Entity(mutation.key, mutation.entity.properties))
        group = "insertAutoId" if mutation.needs_id else mutation.op.value
        groups.setdefault(group, []).append(wire_entity)

    return groups


def build_commit(
    mutations: Sequence[Mutation],
    transaction: str | None = None,
) -> dict[str, Any]:
    """Build a commit request.

    Without a transaction the commit is non-transactional. An empty
    mutation list is allowed and sends a commit with no mutation body.
    """
    request: dict[str, Any] = {}
    if transaction:
        request["mode"] = "TRANSACTIONAL"
        request["transaction"] = transaction
    else:
        request["mode"] = "NON_TRANSACTIONAL"
    if mutations:
        request["mutation"] = build_mutation(mutations)
    return request


def build_allocate_ids(incomplete_keys: Sequence[Key], count: int = 1) -> dict[str, Any]:
    """Build an allocateIds request.

    Each given key is repeated ``count`` times; the server treats every
    occurrence as an independent allocation.

    Raises:
        InvalidArgumentError: If a key is complete or count is below 1
    """
    if not incomplete_keys:
        raise InvalidArgumentError("At least one key is required", argument="keys")
    if count < 1:
        raise InvalidArgumentError(f"Count must be at least 1, got {count}", argument="count")
    for key in incomplete_keys:
        if key.is_complete:
            raise InvalidArgumentError(
                f"An incomplete key should be provided, got {key}", argument="keys"
            )

    wire_keys = []
    for key in incomplete_keys:
        wire_key = key_to_wire(key)
        wire_keys.extend(wire_key for _ in range(count))
    return {"key": wire_keys}


def build_run_query(
    query: Query,
    cursor: str | None = None,
    transaction: str | None = None,
) -> dict[str, Any]:
    """Build a runQuery request; ``cursor`` overrides the query's start."""
    body = query.to_wire()
    if cursor:
        body["startCursor"] = cursor

    request: dict[str, Any] = {"query": body}
    if query.namespace:
        request["partitionId"] = {"namespace": query.namespace}
    if transaction:
        request["readOptions"] = {"transaction": transaction}
    return request


def build_begin_transaction(isolation_level: str | None = None) -> dict[str, Any]:
    """Build a beginTransaction request."""
    if isolation_level:
        return {"isolationLevel": isolation_level}
    return {}


def build_rollback(transaction: str) -> dict[str, Any]:
    """Build a rollback request.

    Raises:
        InvalidArgumentError: If no transaction handle is given
    """
    if not transaction:
        raise InvalidArgumentError("Rollback requires a transaction", argument="transaction")
    return {"transaction": transaction}
