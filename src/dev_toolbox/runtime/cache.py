"""Content-addressable on-disk cache partitioned into namespaces.

Layout::

    <root_dir>/<namespace>/<key[:2]>/<key>.json

Each file holds one :class:`CacheEntry`.  Entries are written with an atomic
replace, so a reader sees either the previous record or the new one.  Reads
never raise: missing, stale and malformed entries are all misses.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from dev_toolbox.runtime.hashing import JSON_CODEC, Codec, generate_hash
from dev_toolbox.runtime.storage import read_json, write_json

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "cache_stats",
    "clear_cache",
    "generate_hash",
    "list_namespaces",
]

_ENTRY_SUFFIX = ".json"


@dataclass(slots=True)
class CacheEntry:
    """One stored result."""

    key: str
    value: Any
    created_at: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_live(self, now: float, ttl: float | None) -> bool:
        return ttl is None or now - self.created_at < ttl

    def to_payload(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> CacheEntry:
        if not isinstance(payload, dict):
            raise TypeError("cache entry must be a JSON object")
        created_at = payload["created_at"]
        if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
            raise TypeError("created_at must be a number")
        metadata = payload.get("metadata") or {}
        return cls(
            key=str(payload["key"]),
            value=payload["value"],
            created_at=float(created_at),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


@dataclass(slots=True)
class CacheStats:
    """Entry count and size for one namespace."""

    namespace: str
    count: int = 0
    size_bytes: int = 0
    oldest: datetime | None = None
    newest: datetime | None = None


class CacheStore:
    """Cache entries of one namespace under ``root_dir``."""

    def __init__(
        self,
        root_dir: Path,
        namespace: str,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        _validate_namespace(namespace)
        self.root_dir = root_dir
        self.namespace = namespace
        self.enabled = enabled
        self._clock = clock

    @property
    def namespace_dir(self) -> Path:
        return self.root_dir / self.namespace

    def entry_path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.namespace_dir / key[:2] / f"{key}{_ENTRY_SUFFIX}"

    def lookup(self, key: str, ttl: float | None) -> CacheEntry | None:
        """Return the live entry for ``key`` or ``None`` on a miss."""

        if not self.enabled:
            return None
        path = self.entry_path(key)
        if not path.exists():
            logger.debug("Cache miss: %s/%s", self.namespace, key[:16])
            return None
        try:
            entry = CacheEntry.from_payload(read_json(path))
        except (OSError, ValueError, KeyError, TypeError):
            logger.debug("Cache entry unreadable, treating as miss: %s", path, exc_info=True)
            return None
        if entry.key != key:
            logger.debug("Cache entry key mismatch in %s", path)
            return None

        now = self._clock()
        if not entry.is_live(now, ttl):
            logger.debug(
                "Cache expired: %s/%s (age=%.1fs, ttl=%ss)",
                self.namespace,
                key[:16],
                now - entry.created_at,
                ttl,
            )
            self.delete(key)
            return None

        logger.debug("Cache hit: %s/%s", self.namespace, key[:16])
        return entry

    def get(self, key: str, ttl: float | None) -> Any | None:
        """Return the cached value, or ``None`` when missing or stale."""

        entry = self.lookup(key, ttl)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, metadata: dict[str, Any] | None = None) -> None:
        """Store ``value`` under ``key`` stamped with the current time.

        Write failures are logged and swallowed.
        """

        if not self.enabled:
            return
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            metadata=dict(metadata or {}),
        )
        try:
            write_json(self.entry_path(key), entry.to_payload())
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Cache write failed for %s/%s: %s", self.namespace, key[:16], exc)
            return
        logger.debug("Cache set: %s/%s", self.namespace, key[:16])

    def delete(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            self.entry_path(key).unlink(missing_ok=True)
        except OSError as exc:
            logger.debug("Cache delete failed for %s/%s: %s", self.namespace, key[:16], exc)

    def clear(self) -> None:
        """Delete every entry in this namespace."""

        if self.namespace_dir.exists():
            shutil.rmtree(self.namespace_dir)
        logger.info("Cache namespace cleared: %s", self.namespace)

    def stats(self) -> CacheStats:
        stats = CacheStats(namespace=self.namespace)
        if not self.namespace_dir.is_dir():
            return stats
        oldest: float | None = None
        newest: float | None = None
        for path in self.namespace_dir.glob(f"*/*{_ENTRY_SUFFIX}"):
            try:
                size = path.stat().st_size
            except OSError:
                continue
            stats.count += 1
            stats.size_bytes += size
            try:
                entry = CacheEntry.from_payload(read_json(path))
            except (OSError, ValueError, KeyError, TypeError):
                continue
            oldest = entry.created_at if oldest is None else min(oldest, entry.created_at)
            newest = entry.created_at if newest is None else max(newest, entry.created_at)
        stats.oldest = _to_datetime(oldest)
        stats.newest = _to_datetime(newest)
        return stats

    async def get_or_compute(
        self,
        key: str,
        *,
        ttl: float | None,
        compute: Callable[[], Awaitable[T]],
        codec: Codec[T] = JSON_CODEC,
        metadata: dict[str, Any] | None = None,
    ) -> T:
        """Return the cached value for ``key`` or await ``compute`` and store its result."""

        entry = self.lookup(key, ttl)
        if entry is not None:
            try:
                return codec.decode(entry.value)
            except (KeyError, TypeError, ValueError):
                logger.debug("Cached payload does not decode, recomputing: %s", key[:16])
        value = await compute()
        self.set(key, codec.encode(value), metadata)
        return value


def list_namespaces(root_dir: Path) -> list[str]:
    """Names of namespace directories that currently exist under ``root_dir``."""

    if not root_dir.is_dir():
        return []
    return sorted(path.name for path in root_dir.iterdir() if path.is_dir())


def clear_cache(root_dir: Path, namespace: str | None = None) -> None:
    """Delete one namespace, or every namespace when ``namespace`` is omitted."""

    if namespace is not None:
        CacheStore(root_dir, namespace).clear()
        return
    for name in list_namespaces(root_dir):
        CacheStore(root_dir, name).clear()


def cache_stats(root_dir: Path) -> list[CacheStats]:
    return [CacheStore(root_dir, name).stats() for name in list_namespaces(root_dir)]


def _validate_namespace(namespace: str) -> None:
    if not namespace or namespace.startswith(".") or "/" in namespace or "\\" in namespace:
        raise ValueError(f"Invalid cache namespace: {namespace!r}")


def _to_datetime(timestamp: float | None) -> datetime | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=UTC)
