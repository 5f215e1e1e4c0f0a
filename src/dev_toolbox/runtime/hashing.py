"""Deterministic cache keys and typed payload codecs."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import math
from collections.abc import Mapping
from typing import Any, Generic, Protocol, TypeVar

T = TypeVar("T")


def canonicalize(value: Any) -> Any:
    """Return a JSON-compatible form of ``value`` with mapping keys sorted recursively.

    Dataclass instances become mappings, tuples and lists become lists, sets
    become sorted lists.  Mapping keys must be strings.
    """

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"Non-finite float is not hashable as a cache key: {value!r}")
        return 0.0 if value == 0 else value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return canonicalize(dataclasses.asdict(value))
    if isinstance(value, Mapping):
        canonical: dict[str, Any] = {}
        for key in sorted(value):
            if not isinstance(key, str):
                raise TypeError(f"Mapping keys must be strings, got {type(key).__name__}")
            canonical[key] = canonicalize(value[key])
        return canonical
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(item) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
    raise TypeError(f"Unsupported cache key component type: {type(value).__name__}")


def canonical_json(value: Any) -> str:
    """Serialize ``value`` canonically: sorted keys, no insignificant whitespace."""

    return json.dumps(
        canonicalize(value),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )


def generate_hash(*components: Any) -> str:
    """Hash an ordered list of key components into a hex SHA-256 digest.

    Every component is canonicalized and length-prefixed, so
    ``generate_hash("ab", "c") != generate_hash("a", "bc")`` and
    ``generate_hash({"b": 2, "a": 1}) == generate_hash({"a": 1, "b": 2})``.
    """

    digest = hashlib.sha256()
    for component in components:
        encoded = canonical_json(component).encode("utf-8")
        digest.update(f"{len(encoded)}:".encode("ascii"))
        digest.update(encoded)
    return digest.hexdigest()


class Codec(Protocol[T]):
    """Explicit serialize/deserialize pair for one stored value type."""

    def encode(self, value: T) -> Any:
        """Turn ``value`` into a JSON-compatible payload."""

    def decode(self, payload: Any) -> T:
        """Rebuild a value from a payload produced by :meth:`encode`."""


class JsonCodec:
    """Identity codec for values that are already JSON-native."""

    def encode(self, value: Any) -> Any:
        return value

    def decode(self, payload: Any) -> Any:
        return payload


JSON_CODEC = JsonCodec()


class DataclassCodec(Generic[T]):
    """Codec for flat dataclasses whose fields are JSON-native."""

    def __init__(self, cls: type[T]) -> None:
        if not dataclasses.is_dataclass(cls):
            raise TypeError(f"{cls!r} is not a dataclass")
        self._cls = cls

    def encode(self, value: T) -> dict[str, Any]:
        if not isinstance(value, self._cls):
            raise TypeError(f"Expected {self._cls.__name__}, got {type(value).__name__}")
        return dataclasses.asdict(value)  # type: ignore[call-overload]

    def decode(self, payload: Any) -> T:
        if not isinstance(payload, dict):
            raise TypeError(f"Expected JSON object for {self._cls.__name__}")
        return self._cls(**payload)
