"""
Query descriptors and results.

A Query names the kinds to scan plus optional filters, ordering and
paging. Builders return modified copies so a query can be reused as a
template.

Example:
    >>> q = Query(("Company",)).filter("rating >", 5).order("-rating").limit(10)
    >>> entities, cursor = await dataset.run_query(q)
    >>> if cursor:
    ...     entities, cursor = await dataset.run_query(q.start(cursor))
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator

from .entity import Entity, to_wire_value
from .errors import InvalidArgumentError
from .key import Key, key_to_wire

FILTER_OPERATORS = {
    "=": "EQUAL",
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    ">": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
}

NO_MORE_RESULTS = "NO_MORE_RESULTS"
MORE_RESULTS_AFTER_LIMIT = "MORE_RESULTS_AFTER_LIMIT"


@dataclass(frozen=True)
class Query:
    """Query over one or more kinds.

    Attributes:
        kinds: Kinds to query
        namespace: Namespace to query in
        filters: (property, operator, value) triples
        ancestor: Restrict results to descendants of this key
        orders: (property, descending) pairs
        projection: Properties to return (all when empty)
        limit_value: Maximum results per batch
        offset_value: Results to skip
        start_cursor: Resume after this cursor
        end_cursor: Stop at this cursor
    """

    kinds: tuple[str, ...]
    namespace: str | None = None
    filters: tuple[tuple[str, str, Any], ...] = ()
    ancestor: Key | None = None
    orders: tuple[tuple[str, bool], ...] = ()
    projection: tuple[str, ...] = ()
    limit_value: int | None = None
    offset_value: int = 0
    start_cursor: str | None = None
    end_cursor: str | None = None

    def __post_init__(self) -> None:
        """Validate query."""
        if isinstance(self.kinds, str):
            object.__setattr__(self, "kinds", (self.kinds,))
        else:
            object.__setattr__(self, "kinds", tuple(self.kinds))
        if not self.kinds:
            raise InvalidArgumentError("Query requires at least one kind", argument="kinds")

    def filter(self, expression: str, value: Any) -> Query:
        """Add a property filter such as ``filter("rating >=", 5)``."""
        parts = expression.strip().split()
        if len(parts) != 2 or parts[1] not in FILTER_OPERATORS:
            raise InvalidArgumentError(
                f"Invalid filter expression: {expression!r}",
                argument="expression",
            )
        name, op = parts
        return replace(self, filters=self.filters + ((name, FILTER_OPERATORS[op], value),))

    def has_ancestor(self, key: Key) -> Query:
        """Restrict results to the entity group rooted at ``key``."""
        return replace(self, ancestor=key)

    def order(self, prop: str) -> Query:
        """Sort by ``prop``; prefix with ``-`` for descending."""
        descending = prop.startswith("-")
        name = prop[1:] if descending else prop
        if not name:
            raise InvalidArgumentError("Order property cannot be empty", argument="prop")
        return replace(self, orders=self.orders + ((name, descending),))

    def select(self, *props: str) -> Query:
        """Project the listed properties only."""
        return replace(self, projection=tuple(props))

    def limit(self, n: int) -> Query:
        if n < 0:
            raise InvalidArgumentError("Limit cannot be negative", argument="limit")
        return replace(self, limit_value=n)

    def offset(self, n: int) -> Query:
        if n < 0:
            raise InvalidArgumentError("Offset cannot be negative", argument="offset")
        return replace(self, offset_value=n)

    def start(self, cursor: str | None) -> Query:
        return replace(self, start_cursor=cursor)

    def end(self, cursor: str | None) -> Query:
        return replace(self, end_cursor=cursor)

    def to_wire(self) -> dict[str, Any]:
        """Encode the query body (without partition) for runQuery."""
        wire: dict[str, Any] = {"kinds": [{"name": kind} for kind in self.kinds]}

        filters = [
            {
                "propertyFilter": {
                    "property": {"name": name},
                    "operator": op,
                    "value": to_wire_value(value),
                }
            }
            for name, op, value in self.filters
        ]
        if self.ancestor is not None:
            filters.append(
                {
                    "propertyFilter": {
                        "property": {"name": "__key__"},
                        "operator": "HAS_ANCESTOR",
                        "value": {"keyValue": key_to_wire(self.ancestor)},
                    }
                }
            )
        if len(filters) == 1:
            wire["filter"] = filters[0]
        elif filters:
            wire["filter"] = {"compositeFilter": {"operator": "AND", "filters": filters}}

        if self.orders:
            wire["order"] = [
                {
                    "property": {"name": name},
                    "direction": "DESCENDING" if descending else "ASCENDING",
                }
                for name, descending in self.orders
            ]
        if self.projection:
            wire["projection"] = [{"property": {"name": name}} for name in self.projection]
        if self.limit_value is not None:
            wire["limit"] = self.limit_value
        if self.offset_value:
            wire["offset"] = self.offset_value
        if self.start_cursor:
            wire["startCursor"] = self.start_cursor
        if self.end_cursor:
            wire["endCursor"] = self.end_cursor
        return wire


@dataclass
class QueryResult:
    """One batch of query results.

    Unpacks as ``entities, cursor``.

    Attributes:
        entities: Entities in this batch
        cursor: Cursor to resume after this batch, None when exhausted
        more_results: Server-reported continuation state
    """

    entities: list[Entity] = field(default_factory=list)
    cursor: str | None = None
    more_results: str = NO_MORE_RESULTS

    def __iter__(self) -> Iterator[Any]:
        return iter((self.entities, self.cursor))
