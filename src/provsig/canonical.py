"""Canonical JSON serialization and stable hashing.

Provides deterministic JSON output for signed payloads.

Design decisions:
- JSON: sorted keys, no whitespace, ASCII-only, null/bool/number normalization
- Arrays: preserved order (caller must sort where semantic ordering matters)
- Floats: finite values only; NaN/Inf raise errors to prevent silent corruption
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any


class CanonicalJSONEncoder(json.JSONEncoder):
    """JSON encoder that produces canonical, deterministic output.

    Guarantees:
    - Sorted keys at all levels
    - No whitespace
    - ASCII-only output
    - Finite floats only, -0.0 normalized to 0.0
    """

    def __init__(self, **kwargs: Any) -> None:
        kwargs["sort_keys"] = True
        kwargs["separators"] = (",", ":")
        kwargs["ensure_ascii"] = True
        kwargs["allow_nan"] = False
        super().__init__(**kwargs)

    def default(self, o: Any) -> Any:
        """Handle non-serializable types."""
        if hasattr(o, "to_dict"):
            return o.to_dict()
        return super().default(o)

    def encode(self, o: Any) -> str:
        """Encode with canonical formatting."""
        return super().encode(self._normalize(o))

    def _normalize(self, obj: Any) -> Any:
        """Recursively normalize values for canonical representation."""
        if obj is None or isinstance(obj, bool):
            return obj
        if isinstance(obj, float):
            if math.isnan(obj) or math.isinf(obj):
                raise ValueError(f"Cannot canonicalize non-finite float: {obj}")
            if obj == 0.0:
                return 0.0
            return obj
        if isinstance(obj, (int, str)):
            return obj
        if isinstance(obj, dict):
            for key in obj:
                if not isinstance(key, str):
                    raise ValueError(f"Object keys must be strings, got {type(key).__name__}")
            return {k: self._normalize(v) for k, v in sorted(obj.items())}
        if isinstance(obj, (list, tuple)):
            return [self._normalize(item) for item in obj]
        if hasattr(obj, "to_dict"):
            return self._normalize(obj.to_dict())
        return obj


_encoder = CanonicalJSONEncoder()


def canonical_json(data: Any) -> str:
    """Produce canonical JSON string from data.

    Args:
        data: Any JSON-serializable data

    Returns:
        Canonical JSON string with sorted keys, no whitespace, ASCII-only

    Raises:
        ValueError: If data contains NaN/Infinity floats or non-string keys
    """
    return _encoder.encode(data)


def canonical_bytes(data: Any) -> bytes:
    """Canonical JSON encoded as UTF-8 bytes."""
    return canonical_json(data).encode("utf-8")


def sha256_digest(data: bytes) -> str:
    """Return "sha256:<hex>" for data."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"
