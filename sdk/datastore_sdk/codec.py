"""
Wire codec for request and response messages.

Messages are JSON objects encoded as compact UTF-8 bytes. Both the gRPC
and the HTTP transport carry these bytes unchanged.
"""

from __future__ import annotations

import json
from typing import Any

from .errors import ProtocolError


def encode_message(message: dict[str, Any]) -> bytes:
    """Encode a message dict into wire bytes."""
    return json.dumps(message, separators=(",", ":"), sort_keys=True).encode("utf-8")


def decode_message(data: bytes, method: str | None = None) -> dict[str, Any]:
    """Decode wire bytes into a message dict.

    Empty payloads decode to an empty message.

    Raises:
        ProtocolError: If the bytes are not a JSON object
    """
    if not data:
        return {}
    try:
        message = json.loads(data.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Failed to decode response: {e}", method=method) from e
    if not isinstance(message, dict):
        raise ProtocolError(
            f"Response must be an object, got {type(message).__name__}",
            method=method,
        )
    return message
