"""Bounded-concurrency execution of independent async operations.

Two strategies with the same shape:

- **fixed batch**: chunks of ``max_concurrency`` items, each chunk awaited
  until every item settles, optional pause between chunks;
- **sliding window**: a new item starts as soon as any slot frees.

Per-item failures are captured as the exception object at that item's index;
the run itself never aborts because one operation failed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

from dev_toolbox.runtime.cache import CacheStore
from dev_toolbox.runtime.hashing import JSON_CODEC, Codec

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Operation = Callable[[T, int], Awaitable[R] | R]

DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_DELAY_BETWEEN_BATCHES = 0.1


class Strategy(str, Enum):
    """How the executor schedules items."""

    FIXED_BATCH = "fixed-batch"
    SLIDING_WINDOW = "sliding-window"


class ProgressObserver(Protocol):
    """Receives a notification after every individual completion."""

    def on_progress(self, completed: int, total: int) -> None:
        """Called synchronously once per settled item; a raised error is logged and ignored."""


class CallbackObserver:
    """Adapts a plain ``(completed, total)`` callable to :class:`ProgressObserver`."""

    def __init__(self, callback: Callable[[int, int], None]) -> None:
        self._callback = callback

    def on_progress(self, completed: int, total: int) -> None:
        self._callback(completed, total)


@dataclass(slots=True)
class ExecutionSummary:
    """Success/failure counts of one executor run."""

    total: int
    succeeded: int
    failed: int
    errors: dict[int, BaseException] = field(default_factory=dict)

    def describe(self) -> str:
        return f"{self.succeeded} of {self.total} succeeded"


def summarize(results: Sequence[Any]) -> ExecutionSummary:
    errors = {index: value for index, value in enumerate(results) if isinstance(value, Exception)}
    return ExecutionSummary(
        total=len(results),
        succeeded=len(results) - len(errors),
        failed=len(errors),
        errors=errors,
    )


class _Progress:
    def __init__(self, total: int, observer: ProgressObserver | None) -> None:
        self.total = total
        self.completed = 0
        self._observer = observer

    def advance(self) -> None:
        self.completed += 1
        if self._observer is None:
            return
        try:
            self._observer.on_progress(self.completed, self.total)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Progress observer failed at %d/%d",
                self.completed,
                self.total,
                exc_info=True,
            )


async def _invoke(operation: Operation[T, R], item: T, index: int) -> R:
    outcome = operation(item, index)
    if inspect.isawaitable(outcome):
        return await outcome
    return outcome


class BoundedExecutor(Generic[T, R]):
    """Run ``operation(item, index)`` over items with at most ``max_concurrency`` in flight."""

    def __init__(
        self,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        delay_between_batches: float = DEFAULT_DELAY_BETWEEN_BATCHES,
        observer: ProgressObserver | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if delay_between_batches < 0:
            raise ValueError("delay_between_batches must be >= 0")
        self.max_concurrency = max_concurrency
        self.delay_between_batches = delay_between_batches
        self._observer = observer
        self._sleep = sleep

    async def run(
        self,
        items: Sequence[T],
        operation: Operation[T, R],
        *,
        strategy: Strategy = Strategy.SLIDING_WINDOW,
    ) -> list[R | Exception]:
        if strategy is Strategy.FIXED_BATCH:
            return await self.run_batches(items, operation)
        return await self.run_sliding_window(items, operation)

    async def run_batches(
        self,
        items: Sequence[T],
        operation: Operation[T, R],
    ) -> list[R | Exception]:
        """Fixed-batch strategy: launch a whole chunk, wait for all of it, pause, repeat."""

        total = len(items)
        results: list[Any] = [None] * total
        if total == 0:
            return results
        progress = _Progress(total, self._observer)
        size = self.max_concurrency

        for start in range(0, total, size):
            chunk = range(start, min(start + size, total))
            await asyncio.gather(
                *(
                    self._settle(results, progress, operation, items[index], index)
                    for index in chunk
                ),
            )
            if start + size < total and self.delay_between_batches > 0:
                await self._sleep(self.delay_between_batches)

        logger.debug("Fixed-batch run finished: %d items, batch size %d", total, size)
        return results

    async def run_sliding_window(
        self,
        items: Sequence[T],
        operation: Operation[T, R],
    ) -> list[R | Exception]:
        """Sliding-window strategy: top the window back up whenever a slot frees."""

        total = len(items)
        results: list[Any] = [None] * total
        if total == 0:
            return results
        progress = _Progress(total, self._observer)
        in_flight: dict[asyncio.Task[Any], int] = {}
        next_index = 0

        try:
            while next_index < total or in_flight:
                while len(in_flight) < self.max_concurrency and next_index < total:
                    task = asyncio.ensure_future(_invoke(operation, items[next_index], next_index))
                    in_flight[task] = next_index
                    next_index += 1

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    index = in_flight.pop(task)
                    try:
                        results[index] = task.result()
                    except Exception as exc:  # noqa: BLE001
                        results[index] = exc
                        logger.debug("Item %d failed: %s", index, exc)
                    progress.advance()
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

        logger.debug(
            "Sliding-window run finished: %d items, window %d",
            total,
            self.max_concurrency,
        )
        return results

    async def _settle(
        self,
        results: list[Any],
        progress: _Progress,
        operation: Operation[T, R],
        item: T,
        index: int,
    ) -> None:
        try:
            results[index] = await _invoke(operation, item, index)
        except Exception as exc:  # noqa: BLE001
            results[index] = exc
            logger.debug("Item %d failed: %s", index, exc)
        progress.advance()


def cached(
    operation: Operation[T, R],
    *,
    cache: CacheStore,
    key_fn: Callable[[T], str],
    ttl: float | None,
    codec: Codec[R] = JSON_CODEC,
    metadata_fn: Callable[[T], dict[str, Any]] | None = None,
) -> Callable[[T, int], Awaitable[R]]:
    """Wrap ``operation`` so each task consults ``cache`` before doing the real call.

    ``key_fn`` must build the key from the logically relevant part of the item
    only; credentials never belong in a key.
    """

    async def _cached_operation(item: T, index: int) -> R:
        return await cache.get_or_compute(
            key_fn(item),
            ttl=ttl,
            compute=lambda: _invoke(operation, item, index),
            codec=codec,
            metadata=metadata_fn(item) if metadata_fn is not None else None,
        )

    return _cached_operation
