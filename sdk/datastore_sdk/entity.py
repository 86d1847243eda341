"""
Entities and property value conversion.

An entity is a key plus a mapping of property names to values. Values are
primitives, byte blobs, timestamps, keys, lists, or nested entities.

Invariants:
    - Property order is irrelevant
    - The key of an entity is replaced, never mutated, when the server
      assigns an identifier
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidArgumentError, ProtocolError
from .key import Key, key_from_wire, key_to_wire


@dataclass
class Entity:
    """An entity stored in the datastore.

    Attributes:
        key: Entity key (may be incomplete before the first save)
        properties: Property values by name
    """

    key: Key | None
    properties: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.properties[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.properties[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self.properties

    def get(self, name: str, default: Any = None) -> Any:
        """Get a property value."""
        return self.properties.get(name, default)


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)


def to_wire_value(value: Any) -> dict[str, Any]:
    """Convert a Python value to its wire form.

    Raises:
        InvalidArgumentError: If the value type is not supported
    """
    if value is None:
        return {}
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, (bytes, bytearray)):
        return {"blobValue": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, datetime):
        return {"dateTimeValue": _format_datetime(value)}
    if isinstance(value, Key):
        return {"keyValue": key_to_wire(value)}
    if isinstance(value, Entity):
        return {"entityValue": entity_to_wire(value)}
    if isinstance(value, dict):
        return {"entityValue": {"properties": _properties_to_wire(value)}}
    if isinstance(value, (list, tuple)):
        return {"listValue": [to_wire_value(v) for v in value]}

    raise InvalidArgumentError(
        f"Unsupported property value type: {type(value).__name__}",
        argument="value",
    )


def from_wire_value(wire: Any) -> Any:
    """Convert a wire value back to a Python value.

    Nested entities without a key decode to plain dicts.

    Raises:
        ProtocolError: If the wire value is not understood
    """
    if not isinstance(wire, dict):
        raise ProtocolError(f"Property value must be an object, got {type(wire).__name__}")
    if not wire:
        return None

    if "booleanValue" in wire:
        return bool(wire["booleanValue"])
    if "integerValue" in wire:
        try:
            return int(wire["integerValue"])
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid integerValue: {wire['integerValue']!r}") from e
    if "doubleValue" in wire:
        try:
            return float(wire["doubleValue"])
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid doubleValue: {wire['doubleValue']!r}") from e
    if "stringValue" in wire:
        return wire["stringValue"]
    if "blobValue" in wire:
        try:
            return base64.b64decode(wire["blobValue"], validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise ProtocolError("Invalid blobValue encoding") from e
    if "dateTimeValue" in wire:
        try:
            return _parse_datetime(wire["dateTimeValue"])
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid dateTimeValue: {wire['dateTimeValue']!r}") from e
    if "keyValue" in wire:
        return key_from_wire(wire["keyValue"])
    if "entityValue" in wire:
        nested = wire["entityValue"]
        if isinstance(nested, dict) and "key" in nested:
            return entity_from_wire(nested)
        return _properties_from_wire(nested.get("properties") if isinstance(nested, dict) else None)
    if "listValue" in wire:
        values = wire["listValue"]
        if not isinstance(values, list):
            raise ProtocolError("listValue must be a list")
        return [from_wire_value(v) for v in values]

    raise ProtocolError(f"Unknown property value fields: {sorted(wire)}")


def _properties_to_wire(properties: dict[str, Any]) -> dict[str, Any]:
    result = {}
    for name, value in properties.items():
        if not isinstance(name, str) or not name:
            raise InvalidArgumentError("Property names must be non-empty strings", argument="name")
        result[name] = to_wire_value(value)
    return result


def _properties_from_wire(properties: Any) -> dict[str, Any]:
    if properties is None:
        return {}
    if not isinstance(properties, dict):
        raise ProtocolError("Entity properties must be an object")
    return {name: from_wire_value(value) for name, value in properties.items()}


def entity_to_wire(entity: Entity) -> dict[str, Any]:
    """Encode an entity into its wire representation."""
    wire: dict[str, Any] = {"properties": _properties_to_wire(entity.properties)}
    if entity.key is not None:
        wire["key"] = key_to_wire(entity.key)
    return wire


def entity_from_wire(wire: Any) -> Entity:
    """Decode an entity from its wire representation.

    Raises:
        ProtocolError: If the wire entity is malformed
    """
    if not isinstance(wire, dict):
        raise ProtocolError(f"Entity must be an object, got {type(wire).__name__}")
    key = key_from_wire(wire["key"]) if "key" in wire else None
    return Entity(key=key, properties=_properties_from_wire(wire.get("properties")))
