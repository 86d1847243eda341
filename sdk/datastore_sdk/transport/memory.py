"""
In-memory datastore transport for testing.

This module provides a functional in-process datastore behind the
Transport protocol for:
- Unit tests
- Integration tests
- Local development without a datastore service

Invariants:
    - All data is lost when the transport is discarded
    - Commits are all-or-nothing
    - A transaction aborts if an entity it read or wrote was changed by
      someone else after it began

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep request/response shapes identical to the remote service
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..codec import decode_message, encode_message
from ..entity import Entity, entity_from_wire, entity_to_wire, from_wire_value
from ..errors import DatastoreError, ProtocolError, RemoteRejectedError, TransportError
from ..key import Key, key_from_wire, key_to_wire

logger = logging.getLogger(__name__)


@dataclass
class InMemoryTransaction:
    """Server-side state of one open transaction."""
    begin_version: int
    touched: Dict[Key, int] = field(default_factory=dict)


def _type_rank(value: Any) -> Tuple[Any, ...]:
    """Total ordering across property value types."""
    if value is None:
        return (0,)
    if isinstance(value, (bool, int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, bytes):
        return (3, value)
    if isinstance(value, datetime):
        return (4, value.timestamp())
    if isinstance(value, Key):
        return (5, _key_order(value))
    return (6, repr(value))


def _key_order(key: Key) -> Tuple[Any, ...]:
    order: List[Any] = [key.namespace or ""]
    for element in key.path:
        if element.id is not None:
            order.append((element.kind, 0, element.id, ""))
        else:
            order.append((element.kind, 1, 0, element.name or ""))
    return tuple(order)


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "EQUAL": lambda a, b: a == b,
    "LESS_THAN": lambda a, b: a < b,
    "LESS_THAN_OR_EQUAL": lambda a, b: a <= b,
    "GREATER_THAN": lambda a, b: a > b,
    "GREATER_THAN_OR_EQUAL": lambda a, b: a >= b,
}


def _encode_cursor(position: int) -> str:
    raw = json.dumps({"position": position}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _decode_cursor(cursor: str) -> int:
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return int(data["position"])
    except (ValueError, KeyError, TypeError) as e:
        raise RemoteRejectedError(
            f"Invalid cursor: {cursor!r}", method="runQuery", status="INVALID_ARGUMENT"
        ) from e


class InMemoryTransport:
    """In-memory implementation of Transport for testing.

    Stores entities in process memory and answers every datastore
    method with the same message shapes as the remote service.

    Attributes:
        calls: (method, decoded request) for every invoke, in order

    Thread safety:
        Uses an asyncio lock; safe to use from multiple coroutines.

    Example:
        >>> transport = InMemoryTransport()
        >>> dataset = Dataset("test-project", transport)
        >>> await dataset.save(Entity(Key.from_path("Company"), {"name": "Acme"}))
        >>> transport.entity_count()
        1
    """

    def __init__(
        self,
        *,
        batch_size: Optional[int] = None,
        max_lookup_batch: Optional[int] = None,
    ) -> None:
        """Initialize an empty datastore.

        Args:
            batch_size: Maximum query results per batch (unlimited if None)
            max_lookup_batch: Keys answered per lookup; the rest are deferred
        """
        self.batch_size = batch_size
        self.max_lookup_batch = max_lookup_batch
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._entities: Dict[Key, Dict[str, Any]] = {}
        self._versions: Dict[Key, int] = {}
        self._version = 0
        self._next_id = 1
        self._transactions: Dict[str, InMemoryTransaction] = {}
        self._failures: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._closed = False

    async def close(self) -> None:
        """Mark the transport closed (data is kept for inspection)."""
        self._closed = True
        logger.debug("InMemoryTransport closed")

    async def invoke(self, method: str, payload: bytes) -> bytes:
        """Handle one request."""
        if self._closed:
            raise TransportError("Transport is closed", method=method)

        request = decode_message(payload, method=method)
        self.calls.append((method, request))

        if self._failures[method]:
            raise self._failures[method].popleft()

        handler = self._handlers().get(method)
        if handler is None:
            raise RemoteRejectedError(
                f"Unknown method: {method}", method=method, status="NOT_FOUND"
            )

        async with self._lock:
            response = handler(request)

        logger.debug(f"In-memory datastore handled {method}")
        return encode_message(response)

    def _handlers(self) -> Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]]:
        return {
            "lookup": self._lookup,
            "runQuery": self._run_query,
            "beginTransaction": self._begin_transaction,
            "commit": self._commit,
            "rollback": self._rollback,
            "allocateIds": self._allocate_ids,
        }

    # Testing helpers

    def fail_next(self, method: str, error: Exception) -> None:
        """Raise ``error`` on the next call to ``method``."""
        self._failures[method].append(error)

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        """Decoded requests sent to ``method``, in order."""
        return [request for name, request in self.calls if name == method]

    def get_entity(self, key: Key) -> Optional[Entity]:
        """Stored entity for ``key``, bypassing the protocol."""
        wire = self._entities.get(key)
        return entity_from_wire(wire) if wire is not None else None

    def put_entity(self, entity: Entity) -> None:
        """Store ``entity`` directly, as a concurrent writer would."""
        if entity.key is None or not entity.key.is_complete:
            raise ValueError("put_entity requires a complete key")
        self._write(entity.key, entity_to_wire(entity))

    def entity_count(self) -> int:
        return len(self._entities)

    @property
    def active_transactions(self) -> List[str]:
        return list(self._transactions)

    # Internals

    def _reject(self, method: str, message: str, status: str) -> RemoteRejectedError:
        return RemoteRejectedError(message, method=method, status=status)

    def _decode_key(self, method: str, wire: Any) -> Key:
        try:
            return key_from_wire(wire)
        except ProtocolError as e:
            raise self._reject(method, e.message, "INVALID_ARGUMENT") from e

    def _transaction_for(self, method: str, handle: Optional[str]) -> Optional[InMemoryTransaction]:
        if not handle:
            return None
        txn = self._transactions.get(handle)
        if txn is None:
            raise self._reject(method, f"Unknown transaction: {handle}", "INVALID_ARGUMENT")
        return txn

    def _read_transaction(self, method: str, request: Dict[str, Any]) -> Optional[InMemoryTransaction]:
        read_options = request.get("readOptions") or {}
        return self._transaction_for(method, read_options.get("transaction"))

    def _write(self, key: Key, wire_entity: Optional[Dict[str, Any]]) -> None:
        self._version += 1
        self._versions[key] = self._version
        if wire_entity is None:
            self._entities.pop(key, None)
        else:
            self._entities[key] = wire_entity

    def _assign_id(self, key: Key) -> Key:
        assigned = key.complete_with(self._next_id)
        self._next_id += 1
        return assigned

    def _lookup(self, request: Dict[str, Any]) -> Dict[str, Any]:
        txn = self._read_transaction("lookup", request)
        keys = [self._decode_key("lookup", k) for k in request.get("key") or []]
        if not keys:
            raise self._reject("lookup", "No keys given", "INVALID_ARGUMENT")

        answered = keys
        deferred: List[Key] = []
        if self.max_lookup_batch is not None:
            answered = keys[: self.max_lookup_batch]
            deferred = keys[self.max_lookup_batch :]

        found = []
        missing = []
        for key in answered:
            if not key.is_complete:
                raise self._reject("lookup", f"Incomplete key {key}", "INVALID_ARGUMENT")
            if txn is not None:
                txn.touched.setdefault(key, self._versions.get(key, 0))
            wire = self._entities.get(key)
            if wire is None:
                missing.append({"entity": {"key": key_to_wire(key)}})
            else:
                found.append({"entity": wire})

        response: Dict[str, Any] = {"found": found, "missing": missing}
        if deferred:
            response["deferred"] = [key_to_wire(k) for k in deferred]
        return response

    def _begin_transaction(self, request: Dict[str, Any]) -> Dict[str, Any]:
        handle = uuid.uuid4().hex
        self._transactions[handle] = InMemoryTransaction(begin_version=self._version)
        return {"transaction": handle}

    def _rollback(self, request: Dict[str, Any]) -> Dict[str, Any]:
        handle = request.get("transaction")
        if self._transaction_for("rollback", handle) is None:
            raise self._reject("rollback", "No transaction given", "INVALID_ARGUMENT")
        del self._transactions[handle]
        return {}

    def _commit(self, request: Dict[str, Any]) -> Dict[str, Any]:
        txn = None
        handle = request.get("transaction")
        if request.get("mode") == "TRANSACTIONAL":
            txn = self._transaction_for("commit", handle)
            if txn is None:
                raise self._reject("commit", "Transactional commit without transaction", "INVALID_ARGUMENT")

        mutation = request.get("mutation") or {}
        planned: List[Tuple[Key, Optional[Dict[str, Any]]]] = []
        auto_keys: List[Dict[str, Any]] = []
        pending_ids = self._next_id

        def entity_key(wire: Dict[str, Any]) -> Key:
            return self._decode_key("commit", wire.get("key"))

        for wire in mutation.get("insert") or []:
            key = entity_key(wire)
            if key in self._entities or any(k == key for k, _ in planned):
                raise self._reject("commit", f"Entity already exists: {key}", "ALREADY_EXISTS")
            planned.append((key, wire))
        for wire in mutation.get("insertAutoId") or []:
            template = entity_key(wire)
            if template.is_complete:
                raise self._reject("commit", f"insertAutoId key is complete: {template}", "INVALID_ARGUMENT")
            key = template.complete_with(pending_ids)
            pending_ids += 1
            planned.append((key, dict(wire, key=key_to_wire(key))))
            auto_keys.append(key_to_wire(key))
        for wire in mutation.get("update") or []:
            key = entity_key(wire)
            if key not in self._entities:
                raise self._reject("commit", f"Entity not found: {key}", "NOT_FOUND")
            planned.append((key, wire))
        for wire in mutation.get("upsert") or []:
            planned.append((entity_key(wire), wire))
        for wire_key in mutation.get("delete") or []:
            planned.append((self._decode_key("commit", wire_key), None))

        for key, _ in planned:
            if not key.is_complete:
                raise self._reject("commit", f"Incomplete key {key}", "INVALID_ARGUMENT")

        if txn is not None:
            conflicts = [
                key for key, version in txn.touched.items() if self._versions.get(key, 0) != version
            ]
            conflicts += [
                key for key, _ in planned if self._versions.get(key, 0) > txn.begin_version
            ]
            if conflicts:
                raise self._reject(
                    "commit",
                    f"Transaction {handle} conflicts on {conflicts[0]}",
                    "ABORTED",
                )
            del self._transactions[handle]

        self._next_id = pending_ids
        for key, wire in planned:
            self._write(key, wire)

        return {
            "mutationResult": {
                "indexUpdates": len(planned),
                "insertAutoIdKeys": auto_keys,
            }
        }

    def _allocate_ids(self, request: Dict[str, Any]) -> Dict[str, Any]:
        keys = []
        for wire in request.get("key") or []:
            key = self._decode_key("allocateIds", wire)
            if key.is_complete:
                raise self._reject("allocateIds", f"Key is complete: {key}", "INVALID_ARGUMENT")
            keys.append(key_to_wire(self._assign_id(key)))
        return {"key": keys}

    def _matches(self, key: Key, entity: Dict[str, Any], prop_filter: Dict[str, Any]) -> bool:
        name = (prop_filter.get("property") or {}).get("name")
        op = prop_filter.get("operator")
        try:
            expected = from_wire_value(prop_filter.get("value") or {})
        except DatastoreError as e:
            raise self._reject("runQuery", f"Invalid filter value: {e.message}", "INVALID_ARGUMENT") from e

        if op == "HAS_ANCESTOR":
            if not isinstance(expected, Key):
                raise self._reject("runQuery", "HAS_ANCESTOR needs a key", "INVALID_ARGUMENT")
            return (
                key.namespace == expected.namespace
                and key.path[: len(expected.path)] == expected.path
            )

        compare = _COMPARATORS.get(op or "")
        if compare is None:
            raise self._reject("runQuery", f"Unsupported operator: {op}", "INVALID_ARGUMENT")

        properties = entity.get("properties") or {}
        if name == "__key__":
            actual: Any = key
        elif name in properties:
            actual = from_wire_value(properties[name])
        else:
            return False

        values = actual if isinstance(actual, list) else [actual]
        expected_rank = _type_rank(expected)
        return any(
            _type_rank(v)[0] == expected_rank[0] and compare(_type_rank(v), expected_rank)
            for v in values
        )

    def _run_query(self, request: Dict[str, Any]) -> Dict[str, Any]:
        txn = self._read_transaction("runQuery", request)
        query = request.get("query") or {}
        namespace = (request.get("partitionId") or {}).get("namespace") or None

        kinds = [k.get("name") for k in query.get("kinds") or []]
        if len(kinds) != 1:
            raise self._reject("runQuery", "Exactly one kind is supported", "INVALID_ARGUMENT")
        kind = kinds[0]

        query_filter = query.get("filter") or {}
        if "compositeFilter" in query_filter:
            filters = [
                f.get("propertyFilter") or {}
                for f in query_filter["compositeFilter"].get("filters") or []
            ]
        elif "propertyFilter" in query_filter:
            filters = [query_filter["propertyFilter"]]
        else:
            filters = []

        results = [
            (key, wire)
            for key, wire in self._entities.items()
            if key.kind == kind
            and key.namespace == namespace
            and all(self._matches(key, wire, f) for f in filters)
        ]

        results.sort(key=lambda item: _key_order(item[0]))
        for order in reversed(query.get("order") or []):
            name = (order.get("property") or {}).get("name")
            descending = order.get("direction") == "DESCENDING"

            def sort_value(item: Tuple[Key, Dict[str, Any]], name: str = name) -> Tuple[Any, ...]:
                if name == "__key__":
                    return (5, _key_order(item[0]))
                prop = (item[1].get("properties") or {}).get(name)
                return _type_rank(from_wire_value(prop) if prop is not None else None)

            results.sort(key=sort_value, reverse=descending)

        start = query.get("offset", 0)
        if query.get("startCursor"):
            start += _decode_cursor(query["startCursor"])
        stop = len(results)
        if query.get("endCursor"):
            stop = min(stop, _decode_cursor(query["endCursor"]))

        limit = query.get("limit")
        page_end = stop if limit is None else min(stop, start + limit)
        if self.batch_size is not None:
            page_end = min(page_end, start + self.batch_size)
        page = results[start:page_end]

        if page_end >= stop:
            more_results = "NO_MORE_RESULTS"
        elif limit is not None and page_end == start + limit:
            more_results = "MORE_RESULTS_AFTER_LIMIT"
        else:
            more_results = "NOT_FINISHED"

        projection = [
            (p.get("property") or {}).get("name") for p in query.get("projection") or []
        ]
        entity_results = []
        for key, wire in page:
            if txn is not None:
                txn.touched.setdefault(key, self._versions.get(key, 0))
            if projection:
                props = wire.get("properties") or {}
                wire = dict(wire, properties={n: props[n] for n in projection if n in props})
            entity_results.append({"entity": wire})

        return {
            "batch": {
                "entityResults": entity_results,
                "endCursor": _encode_cursor(page_end),
                "moreResults": more_results,
            }
        }
