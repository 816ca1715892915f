"""
Canonical encoding of queue ids and job payloads.

The encoded string is both a component of store keys and the identity of a
member inside a pending or in-flight set, so it must be deterministic:
structurally equal values always produce the same string.
"""

from __future__ import annotations

import json
import math
from typing import Any, Protocol

from .exceptions import SerializationError


class Codec(Protocol):
    """Protocol for canonical value encoding."""

    def encode(self, value: Any) -> str:
        """Encode value to its canonical string form."""
        ...

    def decode(self, data: str) -> Any:
        """Decode a canonical string back to a value."""
        ...


class JsonCodec:
    """JSON codec with sorted keys and compact separators."""

    def encode(self, value: Any) -> str:
        try:
            encoded = json.dumps(
                value,
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
            # Lone surrogates survive json.dumps but not the trip to a store
            encoded.encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Value is not canonically serializable: {e}") from e
        return encoded

    def decode(self, data: str) -> Any:
        try:
            return json.loads(data)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Stored value is not valid JSON: {e}") from e


def check_priority(priority: float) -> float:
    """Validate a priority score, rejecting bools, NaN and infinities."""
    if isinstance(priority, bool) or not isinstance(priority, (int, float)):
        raise SerializationError(f"Priority must be a number, got {type(priority).__name__}")
    if not math.isfinite(priority):
        raise SerializationError(f"Priority must be finite, got {priority}")
    return float(priority)
