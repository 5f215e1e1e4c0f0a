"""CLI controller for cache maintenance commands."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from dev_toolbox.config import Settings
from dev_toolbox.runtime.cache import CacheStats, CacheStore, cache_stats, clear_cache


@dataclass(slots=True)
class CacheCommand:
    """Input for cache stats / clear CLI commands."""

    cache_dir: Path | None = None
    namespace: str | None = None


class CacheCliController:
    """CLI controller for the on-disk response cache."""

    def collect(self, command: CacheCommand) -> list[CacheStats]:
        root = _cache_root(command)
        if command.namespace is not None:
            stats = CacheStore(root, command.namespace).stats()
            return [stats] if stats.count else []
        return cache_stats(root)

    def stats(self, command: CacheCommand) -> Iterator[str]:
        root = _cache_root(command)
        collected = self.collect(command)
        if not collected:
            yield f"Cache is empty: {root}"
            return

        yield f"Cache: {root}"
        for item in collected:
            yield f"  {item.namespace:12s} {item.count:6d} entries  {format_bytes(item.size_bytes)}"
            if item.oldest and item.newest:
                yield (
                    f"    oldest {item.oldest:%Y-%m-%d %H:%M}  newest {item.newest:%Y-%m-%d %H:%M}"
                )
        total_count = sum(item.count for item in collected)
        total_size = sum(item.size_bytes for item in collected)
        yield f"  {'total':12s} {total_count:6d} entries  {format_bytes(total_size)}"

    def clear(self, command: CacheCommand) -> Iterator[str]:
        root = _cache_root(command)
        collected = self.collect(command)
        clear_cache(root, command.namespace)
        removed = sum(item.count for item in collected)
        scope = f"namespace {command.namespace}" if command.namespace else "all namespaces"
        yield f"Cleared {removed} entries from {scope}"


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:  # noqa: PLR2004
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _cache_root(command: CacheCommand) -> Path:
    return Settings.from_env(cache_dir=command.cache_dir).cache.cache_dir
