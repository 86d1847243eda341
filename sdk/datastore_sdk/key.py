"""
Keys for the Datastore SDK.

A key names an entity by an ordered path of (kind, identifier) elements,
optionally scoped to a namespace. The identifier of each element is a
caller-chosen name, a server-assigned numeric id, or absent.

Invariants:
    - Only the last path element may lack an identifier
    - A key is complete iff every element has an identifier
    - Keys are immutable; completing a key returns a new Key

Example:
    >>> key = Key.from_path("Company", "acme", "Employee", None)
    >>> key.is_complete
    False
    >>> key.complete_with(42).id
    42
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import InvalidArgumentError, ProtocolError


@dataclass(frozen=True)
class PathElement:
    """One (kind, identifier) step of a key path.

    Attributes:
        kind: Entity kind
        id: Server-assigned numeric identifier
        name: Caller-assigned string identifier
    """

    kind: str
    id: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate path element."""
        if not isinstance(self.kind, str) or not self.kind:
            raise InvalidArgumentError("Kind must be a non-empty string", argument="kind")
        if self.id is not None and self.name is not None:
            raise InvalidArgumentError(
                f"Path element '{self.kind}' cannot have both an id and a name",
                argument="id_or_name",
            )
        if self.id is not None:
            if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
                raise InvalidArgumentError(
                    f"Id of '{self.kind}' must be a positive integer, got {self.id!r}",
                    argument="id",
                )
        if self.name is not None and (not isinstance(self.name, str) or not self.name):
            raise InvalidArgumentError(
                f"Name of '{self.kind}' must be a non-empty string",
                argument="name",
            )

    @property
    def id_or_name(self) -> int | str | None:
        return self.id if self.id is not None else self.name

    @property
    def is_complete(self) -> bool:
        return self.id is not None or self.name is not None


def _element(kind: str, id_or_name: int | str | None) -> PathElement:
    if id_or_name is None:
        return PathElement(kind)
    if isinstance(id_or_name, str):
        return PathElement(kind, name=id_or_name)
    return PathElement(kind, id=id_or_name)


@dataclass(frozen=True)
class Key:
    """Hierarchical entity key.

    Attributes:
        path: Ordered path elements, root first
        namespace: Optional namespace the key belongs to
    """

    path: tuple[PathElement, ...]
    namespace: str | None = None

    def __post_init__(self) -> None:
        """Validate key path."""
        if not isinstance(self.path, tuple):
            object.__setattr__(self, "path", tuple(self.path))
        if not self.path:
            raise InvalidArgumentError("Key path cannot be empty", argument="path")
        for element in self.path[:-1]:
            if not element.is_complete:
                raise InvalidArgumentError(
                    f"Only the last path element may be incomplete, '{element.kind}' is not",
                    argument="path",
                )
        if self.namespace == "":
            object.__setattr__(self, "namespace", None)

    @classmethod
    def from_path(cls, *path: Any, namespace: str | None = None) -> Key:
        """Build a key from alternating kinds and identifiers.

        A trailing kind without an identifier yields an incomplete key.

        Args:
            *path: kind, id_or_name, kind, id_or_name, ...
            namespace: Optional namespace

        Returns:
            New Key
        """
        items = list(path)
        if len(items) % 2:
            items.append(None)
        elements = tuple(
            _element(items[i], items[i + 1]) for i in range(0, len(items), 2)
        )
        return cls(elements, namespace=namespace)

    @property
    def kind(self) -> str:
        return self.path[-1].kind

    @property
    def id(self) -> int | None:
        return self.path[-1].id

    @property
    def name(self) -> str | None:
        return self.path[-1].name

    @property
    def id_or_name(self) -> int | str | None:
        return self.path[-1].id_or_name

    @property
    def is_complete(self) -> bool:
        return self.path[-1].is_complete

    @property
    def parent(self) -> Key | None:
        """Key of the parent entity, or None for a root key."""
        if len(self.path) == 1:
            return None
        return Key(self.path[:-1], namespace=self.namespace)

    @property
    def flat_path(self) -> tuple[Any, ...]:
        """Path as (kind, id_or_name, kind, id_or_name, ...)."""
        flat: list[Any] = []
        for element in self.path:
            flat.extend((element.kind, element.id_or_name))
        return tuple(flat)

    def child(self, kind: str, id_or_name: int | str | None = None) -> Key:
        """Key of a child entity beneath this one."""
        return Key(self.path + (_element(kind, id_or_name),), namespace=self.namespace)

    def complete_with(self, id_or_name: int | str) -> Key:
        """Return a new key whose last element carries ``id_or_name``.

        Raises:
            InvalidArgumentError: If the key is already complete
        """
        if self.is_complete:
            raise InvalidArgumentError("Key is already complete", argument="key")
        return Key(
            self.path[:-1] + (_element(self.kind, id_or_name),),
            namespace=self.namespace,
        )

    def __str__(self) -> str:
        parts = "/".join(f"{e.kind}:{e.id_or_name if e.is_complete else '?'}" for e in self.path)
        if self.namespace:
            return f"{self.namespace}:{parts}"
        return parts


def is_key_complete(key: Key) -> bool:
    """Whether every element of the key carries an identifier."""
    return key.is_complete


def key_to_wire(key: Key) -> dict[str, Any]:
    """Encode a key into its wire representation."""
    elements = []
    for element in key.path:
        wire: dict[str, Any] = {"kind": element.kind}
        if element.id is not None:
            wire["id"] = str(element.id)
        elif element.name is not None:
            wire["name"] = element.name
        elements.append(wire)

    result: dict[str, Any] = {"pathElement": elements}
    if key.namespace:
        result["partitionId"] = {"namespace": key.namespace}
    return result


def key_from_wire(wire: Any) -> Key:
    """Decode a key from its wire representation.

    Raises:
        ProtocolError: If the wire key is malformed
    """
    if not isinstance(wire, dict):
        raise ProtocolError(f"Key must be an object, got {type(wire).__name__}")

    elements = wire.get("pathElement")
    if not isinstance(elements, list) or not elements:
        raise ProtocolError("Key has no path elements")

    namespace = None
    partition = wire.get("partitionId")
    if partition is not None:
        if not isinstance(partition, dict):
            raise ProtocolError("Key partitionId must be an object")
        namespace = partition.get("namespace") or None

    path = []
    for element in elements:
        if not isinstance(element, dict):
            raise ProtocolError("Key path element must be an object")
        kind = element.get("kind")
        raw_id = element.get("id")
        try:
            id_ = int(raw_id) if raw_id is not None else None
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid id in key path: {raw_id!r}") from e
        try:
            path.append(PathElement(kind, id=id_, name=element.get("name")))
        except InvalidArgumentError as e:
            raise ProtocolError(f"Malformed key path element: {e.message}") from e

    try:
        return Key(tuple(path), namespace=namespace)
    except InvalidArgumentError as e:
        raise ProtocolError(f"Malformed key: {e.message}") from e
