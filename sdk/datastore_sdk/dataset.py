"""
Dataset facade for the Datastore SDK.

This module provides the main client interface:
- Dataset: operations against one dataset
- Dataset.transaction(): scoped explicit transaction

Example:
    >>> async with Dataset("my-project", GrpcTransport("my-project")) as ds:
    ...     key = (await ds.save(Entity(ds.key("Company"), {"rating": 10})))[0]
    ...     async with ds.transaction() as txn:
    ...         [company] = await txn.get(key)
    ...         company["rating"] += 1
    ...         await txn.save(company)

Invariants:
    - Each Dataset owns exactly one implicit executor
    - Direct operations on the Dataset are applied immediately
    - Every transaction opened by transaction() ends in exactly one
      commit or rollback, except when the caller is cancelled
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from .config import Settings
from .entity import Entity
from .errors import DatastoreError, InvalidArgumentError
from .key import Key
from .query import MORE_RESULTS_AFTER_LIMIT, Query, QueryResult
from .transaction import EntitiesArg, ImplicitExecutor, KeysArg, Transaction
from .transport.base import Transport
from .transport.grpc_transport import GrpcTransport
from .transport.http_transport import HttpTransport
from .transport.memory import InMemoryTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Dataset:
    """Client for one dataset.

    Direct calls (get, save, delete, ...) go through the dataset's
    implicit executor and are applied immediately. Use transaction() or
    run_in_transaction() to group operations atomically.
    """

    def __init__(
        self,
        dataset_id: str,
        transport: Transport,
        *,
        namespace: str | None = None,
    ) -> None:
        """Initialize a dataset client.

        Args:
            dataset_id: Dataset (project) ID
            transport: Transport used for every remote call
            namespace: Default namespace for key() and create_query()
        """
        if not dataset_id:
            raise InvalidArgumentError("Dataset ID is required", argument="dataset_id")
        self.id = dataset_id
        self.namespace = namespace or None
        self._transport = transport
        self._executor = ImplicitExecutor(transport, dataset_id)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Dataset:
        """Build a dataset and its transport from settings.

        Args:
            settings: Settings to use (loaded from environment if None)
        """
        settings = settings or Settings()
        transport: Transport
        if settings.transport == "http":
            transport = HttpTransport(
                settings.dataset_id,
                settings.api_endpoint,
                access_token=settings.access_token,
                timeout=settings.timeout,
            )
        elif settings.transport == "memory":
            transport = InMemoryTransport()
        else:
            transport = GrpcTransport(
                settings.dataset_id,
                settings.host,
                settings.port,
                secure=settings.secure,
                access_token=settings.access_token,
                timeout=settings.timeout,
                max_message_size=settings.max_message_size,
            )
        logger.debug(f"Dataset {settings.dataset_id} configured with {settings.transport} transport")
        return cls(settings.dataset_id, transport, namespace=settings.namespace)

    @property
    def transport(self) -> Transport:
        return self._transport

    async def close(self) -> None:
        """Close the transport."""
        await self._transport.close()

    async def __aenter__(self) -> Dataset:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def key(self, *path: Any, namespace: str | None = None) -> Key:
        """Build a key in this dataset's default namespace.

        Example:
            >>> ds.key("Company", "acme", "Employee")  # incomplete child key
        """
        return Key.from_path(*path, namespace=namespace or self.namespace)

    def create_query(self, *kinds: str, namespace: str | None = None) -> Query:
        """Create a query over ``kinds``."""
        return Query(kinds, namespace=namespace or self.namespace)

    async def get(self, keys: KeysArg) -> list[Entity]:
        """Look up entities; see ImplicitExecutor.get."""
        return await self._executor.get(keys)

    async def save(self, entities: EntitiesArg) -> list[Key]:
        """Upsert entities; incomplete keys are completed before returning."""
        return await self._executor.save(entities)

    async def insert(self, entities: EntitiesArg) -> list[Key]:
        return await self._executor.insert(entities)

    async def update(self, entities: EntitiesArg) -> list[Key]:
        return await self._executor.update(entities)

    async def delete(self, keys: KeysArg) -> None:
        await self._executor.delete(keys)

    async def run_query(self, query: Query, cursor: str | None = None) -> QueryResult:
        """Run one batch of ``query``; unpacks as ``entities, cursor``."""
        return await self._executor.run_query(query, cursor)

    async def iter_query(self, query: Query) -> AsyncIterator[Entity]:
        """Yield every result of ``query``, following cursors across batches.

        A limit on the query caps the total number of results yielded,
        not the size of each batch.
        """
        remaining = query.limit_value
        result = await self._executor.run_query(query)
        # The offset applies to the first batch only
        query = query.offset(0)
        while True:
            for entity in result.entities:
                if remaining is not None:
                    if remaining <= 0:
                        return
                    remaining -= 1
                yield entity
            if result.cursor is None or result.more_results == MORE_RESULTS_AFTER_LIMIT:
                return
            if remaining is not None:
                if remaining <= 0:
                    return
                query = query.limit(remaining)
            result = await self._executor.run_query(query, result.cursor)

    async def allocate_ids(self, incomplete_key: Key, n: int) -> list[Key]:
        """Reserve ``n`` ids for ``incomplete_key`` without creating entities.

        Raises:
            InvalidArgumentError: If the key is already complete
        """
        return await self._executor.allocate_ids(incomplete_key, n)

    def create_transaction(self, *, isolation_level: str | None = None) -> Transaction:
        """Create a new, not yet begun, transaction on this dataset."""
        return Transaction(self._transport, self.id, isolation_level=isolation_level)

    @asynccontextmanager
    async def transaction(
        self,
        *,
        isolation_level: str | None = None,
    ) -> AsyncIterator[Transaction]:
        """Open a transaction for the duration of a block.

        The transaction commits when the block exits normally and rolls
        back when it raises. If the block already committed or rolled
        back, nothing more is sent. Cancellation leaves the transaction
        open on the server until it expires.

        Raises:
            DatastoreError: If begin or commit fails
        """
        txn = self.create_transaction(isolation_level=isolation_level)
        await txn.begin()

        try:
            yield txn
        except Exception:
            await self._rollback_quietly(txn)
            raise

        if txn.is_open:
            try:
                await txn.commit()
            except DatastoreError:
                await self._rollback_quietly(txn)
                raise

    async def _rollback_quietly(self, txn: Transaction) -> None:
        """Roll back while another error is propagating."""
        if not txn.is_open:
            return
        try:
            await txn.rollback()
        except DatastoreError as e:
            logger.warning(f"Rollback of transaction {txn.id} failed: {e}")

    async def run_in_transaction(self, work: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``work`` inside a new transaction and return its result.

        ``work`` may call ``commit()``, ``rollback()`` or ``finalize()``
        itself; otherwise the transaction commits when ``work`` returns
        and rolls back if it raises. If begin fails, ``work`` is never
        called.

        Example:
            >>> async def transfer(txn):
            ...     [a, b] = await txn.get([key_a, key_b])
            ...     a["balance"] -= 10
            ...     b["balance"] += 10
            ...     await txn.save([a, b])
            >>> await ds.run_in_transaction(transfer)
        """
        async with self.transaction() as txn:
            return await work(txn)
