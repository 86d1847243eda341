"""
Executors that turn dataset operations into remote calls.

Two executors share one read/write surface:
- ImplicitExecutor: every operation round-trips on its own, writes are
  applied immediately and non-transactionally
- Transaction: an explicit remote transaction; reads run inside its
  snapshot, writes are staged and sent together on commit()

Example:
    >>> txn = Transaction(transport, "my-project")
    >>> await txn.begin()
    >>> company = Entity(Key.from_path("Company"), {"name": "Acme"})
    >>> await txn.save(company)
    >>> await txn.commit()
    >>> company.key.is_complete
    True

Invariants:
    - Reads are never staged, only writes are deferred
    - A transaction is begun at most once and finished at most once
    - A failed commit leaves the transaction open with its staged writes
    - Server-assigned ids are bound back in the order writes were staged
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence, Union

from .builders import (
    Mutation,
    MutationOp,
    build_allocate_ids,
    build_begin_transaction,
    build_commit,
    build_lookup,
    build_mutation,
    build_rollback,
    build_run_query,
)
from .codec import decode_message, encode_message
from .entity import Entity, entity_from_wire
from .errors import InvalidArgumentError, ProtocolError, TransactionStateError
from .key import Key, key_from_wire
from .query import NO_MORE_RESULTS, Query, QueryResult

if TYPE_CHECKING:
    from .transport.base import Transport

logger = logging.getLogger(__name__)

KeysArg = Union[Key, Sequence[Key]]
EntitiesArg = Union[Entity, Sequence[Entity]]


def _as_list(items: Any, kind: type) -> list[Any]:
    if isinstance(items, kind):
        return [items]
    return list(items)


def _mutations_for(op: MutationOp, entities: EntitiesArg) -> list[Mutation]:
    mutations = []
    for entity in _as_list(entities, Entity):
        if not isinstance(entity, Entity) or entity.key is None:
            raise InvalidArgumentError("Every entity needs a key", argument="entities")
        mutations.append(Mutation(op, entity.key, entity))
    return mutations


def _bind_assigned_keys(mutations: Sequence[Mutation], response: dict[str, Any]) -> None:
    """Replace incomplete entity keys with the keys the server assigned."""
    result = response.get("mutationResult") or {}
    assigned = result.get("insertAutoIdKeys") or []
    needing = [m for m in mutations if m.needs_id and m.entity is not None]

    if len(assigned) != len(needing):
        raise ProtocolError(
            f"Expected {len(needing)} assigned keys, got {len(assigned)}",
            method="commit",
        )

    for mutation, wire_key in zip(needing, assigned):
        key = key_from_wire(wire_key)
        template = mutation.key
        if (
            not key.is_complete
            or key.kind != template.kind
            or key.path[:-1] != template.path[:-1]
            or key.namespace != template.namespace
        ):
            raise ProtocolError(
                f"Assigned key {key} does not complete {template}",
                method="commit",
            )
        mutation.entity.key = key


class _Executor:
    """Read operations and remote call plumbing shared by both executors."""

    def __init__(self, transport: Transport, dataset_id: str) -> None:
        self._transport = transport
        self._dataset_id = dataset_id

    @property
    def dataset_id(self) -> str:
        return self._dataset_id

    @property
    def _read_transaction(self) -> str | None:
        """Transaction handle attached to reads, if any."""
        return None

    def _check_usable(self, operation: str) -> None:
        """Raise if ``operation`` is not allowed right now."""

    async def _call(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        logger.debug(f"Calling {method} on dataset {self._dataset_id}")
        response = await self._transport.invoke(method, encode_message(request))
        return decode_message(response, method=method)

    async def _apply(self, mutations: list[Mutation]) -> list[Key]:
        raise NotImplementedError

    async def get(self, keys: KeysArg) -> list[Entity]:
        """Look up entities by key.

        Keys the server defers are requested again until all are
        resolved. Found entities come back in request order; missing
        ones are omitted.

        Args:
            keys: Key or keys to look up

        Returns:
            Found entities

        Raises:
            InvalidArgumentError: If no keys or an incomplete key is given
        """
        requested = _as_list(keys, Key)
        self._check_usable("get")
        build_lookup(requested)

        found: dict[Key, Entity] = {}
        remaining = requested
        while remaining:
            response = await self._call("lookup", build_lookup(remaining, self._read_transaction))

            for result in response.get("found") or []:
                entity = entity_from_wire(result.get("entity") if isinstance(result, dict) else None)
                if entity.key is None:
                    raise ProtocolError("Found entity has no key", method="lookup")
                found[entity.key] = entity

            progressed = bool(response.get("found") or response.get("missing"))
            deferred = [key_from_wire(k) for k in response.get("deferred") or []]
            if deferred and not progressed and len(deferred) >= len(remaining):
                raise ProtocolError("Server deferred every key without progress", method="lookup")
            if deferred:
                logger.debug(f"Lookup deferred {len(deferred)} keys, retrying them")
            remaining = deferred

        return [found[k] for k in requested if k in found]

    async def run_query(self, query: Query, cursor: str | None = None) -> QueryResult:
        """Run a query and return one batch of results.

        Args:
            query: Query to run
            cursor: Optional cursor to resume from

        Returns:
            QueryResult; its cursor is None when no results remain
        """
        self._check_usable("run_query")
        response = await self._call(
            "runQuery",
            build_run_query(query, cursor, self._read_transaction),
        )

        batch = response.get("batch")
        if not isinstance(batch, dict):
            raise ProtocolError("Query response has no batch", method="runQuery")

        entities = []
        for result in batch.get("entityResults") or []:
            if not isinstance(result, dict):
                raise ProtocolError("Query result must be an object", method="runQuery")
            entities.append(entity_from_wire(result.get("entity")))

        more_results = batch.get("moreResults", NO_MORE_RESULTS)
        end_cursor = batch.get("endCursor")
        next_cursor = None
        if end_cursor and entities and more_results != NO_MORE_RESULTS:
            next_cursor = end_cursor

        return QueryResult(entities=entities, cursor=next_cursor, more_results=more_results)

    async def save(self, entities: EntitiesArg) -> list[Key]:
        """Insert or replace entities.

        Entities with incomplete keys get a server-assigned id.

        Returns:
            Keys of the saved entities
        """
        return await self._apply(_mutations_for(MutationOp.UPSERT, entities))

    async def insert(self, entities: EntitiesArg) -> list[Key]:
        """Insert entities that must not exist yet."""
        return await self._apply(_mutations_for(MutationOp.INSERT, entities))

    async def update(self, entities: EntitiesArg) -> list[Key]:
        """Replace entities that must already exist."""
        return await self._apply(_mutations_for(MutationOp.UPDATE, entities))

    async def delete(self, keys: KeysArg) -> None:
        """Delete entities by key."""
        mutations = [Mutation(MutationOp.DELETE, key) for key in _as_list(keys, Key)]
        await self._apply(mutations)


class ImplicitExecutor(_Executor):
    """Runs every operation as its own remote call.

    Writes are committed non-transactionally as soon as they are issued,
    and incomplete keys are completed before the call returns.
    """

    async def _apply(self, mutations: list[Mutation]) -> list[Key]:
        build_mutation(mutations)
        response = await self._call("commit", build_commit(mutations))
        _bind_assigned_keys(mutations, response)
        return [m.entity.key if m.entity is not None else m.key for m in mutations]

    async def allocate_ids(self, incomplete_key: Key, n: int) -> list[Key]:
        """Reserve ``n`` ids without creating entities.

        Args:
            incomplete_key: Template key whose last element has no id
            n: Number of ids to allocate

        Returns:
            ``n`` distinct complete keys sharing the template's path

        Raises:
            InvalidArgumentError: If the template is complete or n < 1
            ProtocolError: If the server returns the wrong keys
        """
        request = build_allocate_ids([incomplete_key], n)
        response = await self._call("allocateIds", request)

        keys = [key_from_wire(k) for k in response.get("key") or []]
        if len(keys) != n:
            raise ProtocolError(f"Requested {n} ids, got {len(keys)}", method="allocateIds")
        for key in keys:
            if (
                not key.is_complete
                or key.kind != incomplete_key.kind
                or key.path[:-1] != incomplete_key.path[:-1]
                or key.namespace != incomplete_key.namespace
            ):
                raise ProtocolError(
                    f"Allocated key {key} does not complete {incomplete_key}",
                    method="allocateIds",
                )
        if len(set(keys)) != len(keys):
            raise ProtocolError("Allocated keys are not distinct", method="allocateIds")
        return keys


class TransactionState(Enum):
    """Lifecycle of an explicit transaction."""

    PENDING = "pending"
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction(_Executor):
    """Explicit remote transaction.

    Created PENDING, opened by begin(), and finished exactly once by
    commit() or rollback(). While open, reads see the transaction's
    snapshot and writes are staged locally.

    A single transaction must be driven by one caller at a time.
    """

    def __init__(
        self,
        transport: Transport,
        dataset_id: str,
        *,
        isolation_level: str | None = None,
    ) -> None:
        """Initialize a transaction.

        Args:
            transport: Transport used for remote calls
            dataset_id: Dataset the transaction runs against
            isolation_level: Optional isolation level sent on begin
        """
        super().__init__(transport, dataset_id)
        self._isolation_level = isolation_level
        self._state = TransactionState.PENDING
        self._id: str | None = None
        self._pending: list[Mutation] = []

    @property
    def id(self) -> str | None:
        """Server-assigned transaction handle (None before begin)."""
        return self._id

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is TransactionState.OPEN

    @property
    def pending(self) -> list[Mutation]:
        """Staged mutations in append order."""
        return list(self._pending)

    @property
    def _read_transaction(self) -> str | None:
        return self._id

    def _check_usable(self, operation: str) -> None:
        if self._state is not TransactionState.OPEN:
            raise TransactionStateError(
                f"Cannot {operation} on a {self._state.value} transaction",
                state=self._state.value,
            )

    async def begin(self) -> Transaction:
        """Open the transaction on the server.

        Raises:
            TransactionStateError: If begin() was already called
            ProtocolError: If the server returns no transaction handle
        """
        if self._state is not TransactionState.PENDING:
            raise TransactionStateError(
                "Transaction has already begun",
                state=self._state.value,
            )

        response = await self._call(
            "beginTransaction",
            build_begin_transaction(self._isolation_level),
        )
        token = response.get("transaction")
        if not isinstance(token, str) or not token:
            raise ProtocolError("Begin response has no transaction", method="beginTransaction")

        self._id = token
        self._state = TransactionState.OPEN
        logger.debug(f"Transaction {token} begun on dataset {self._dataset_id}")
        return self

    async def _apply(self, mutations: list[Mutation]) -> list[Key]:
        self._check_usable("stage writes")
        # Validate now so a bad mutation never reaches commit()
        build_mutation(mutations)
        self._pending.extend(mutations)
        return [m.key for m in mutations]

    async def commit(self) -> None:
        """Send all staged mutations atomically.

        On success, entities saved with incomplete keys get their
        assigned keys. On failure the transaction stays open with its
        staged mutations, so the caller may retry or roll back.

        Raises:
            TransactionStateError: If the transaction is not open
            RemoteRejectedError: If the server rejects the commit
        """
        self._check_usable("commit")
        mutations = list(self._pending)

        response = await self._call("commit", build_commit(mutations, self._id))

        self._state = TransactionState.COMMITTED
        self._pending.clear()
        logger.debug(f"Transaction {self._id} committed with {len(mutations)} mutations")
        _bind_assigned_keys(mutations, response)

    async def rollback(self) -> None:
        """Abandon the transaction and its staged mutations.

        Rolling back a finished transaction is a no-op. Callers must not
        rely on that; it is logged as a warning.

        Raises:
            TransactionStateError: If the transaction was never begun
        """
        if self._state in (TransactionState.COMMITTED, TransactionState.ROLLED_BACK):
            logger.warning(f"Ignoring rollback of {self._state.value} transaction {self._id}")
            return
        if self._state is TransactionState.PENDING:
            raise TransactionStateError(
                "Cannot roll back a transaction that was never begun",
                state=self._state.value,
            )

        if self._id is None:
            raise TransactionStateError("Open transaction has no handle", state=self._state.value)
        await self._call("rollback", build_rollback(self._id))

        self._pending.clear()
        self._state = TransactionState.ROLLED_BACK
        logger.debug(f"Transaction {self._id} rolled back")

    async def finalize(self) -> None:
        """Commit if the transaction is still open."""
        if self._state is TransactionState.OPEN:
            await self.commit()
