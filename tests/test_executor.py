from __future__ import annotations

import asyncio
import random

import allure
import pytest

from dev_toolbox.runtime.cache import CacheStore
from dev_toolbox.runtime.executor import (
    BoundedExecutor,
    CallbackObserver,
    Strategy,
    cached,
    summarize,
)

pytestmark = [
    allure.epic("Runtime"),
    allure.feature("Bounded Executor"),
]

STRATEGIES = [Strategy.FIXED_BATCH, Strategy.SLIDING_WINDOW]


class _InFlightCounter:
    def __init__(self) -> None:
        self.current = 0
        self.peak = 0

    async def __call__(self, item: int, _index: int) -> int:
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(0.001 * (item % 3))
        finally:
            self.current -= 1
        return item * 10


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _executor(max_concurrency: int = 3, **kwargs) -> BoundedExecutor:
    kwargs.setdefault("delay_between_batches", 0)
    return BoundedExecutor(max_concurrency=max_concurrency, **kwargs)


class TestConcurrencyBound:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    @pytest.mark.parametrize("max_concurrency", [1, 2, 3, 5])
    async def test_never_exceeds_limit(self, strategy, max_concurrency):
        counter = _InFlightCounter()
        items = list(range(17))

        results = await _executor(max_concurrency).run(items, counter, strategy=strategy)

        assert counter.peak <= max_concurrency
        assert results == [item * 10 for item in items]

    @pytest.mark.asyncio
    async def test_sliding_window_keeps_window_full(self):
        counter = _InFlightCounter()

        await _executor(4).run(list(range(3, 40, 3)), counter, strategy=Strategy.SLIDING_WINDOW)

        assert counter.peak == 4

    @pytest.mark.asyncio
    async def test_sliding_window_refills_freed_slot_while_slow_item_runs(self):
        release_slow = asyncio.Event()
        started: list[int] = []
        finished: list[int] = []

        async def _op(item: int, _index: int) -> int:
            started.append(item)
            if item == 0:
                await release_slow.wait()
            else:
                await asyncio.sleep(0)
                if item == 3:
                    release_slow.set()
            finished.append(item)
            return item

        results = await asyncio.wait_for(
            _executor(2).run([0, 1, 2, 3], _op, strategy=Strategy.SLIDING_WINDOW),
            timeout=1,
        )

        assert results == [0, 1, 2, 3]
        assert started == [0, 1, 2, 3]
        assert finished == [1, 2, 3, 0]


class TestOrdering:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    async def test_results_match_input_positions(self, strategy):
        rng = random.Random(42)
        delays = [rng.uniform(0, 0.005) for _ in range(25)]

        async def _op(item: str, index: int) -> str:
            await asyncio.sleep(delays[index])
            return f"{item}:{index}"

        items = [f"item-{n}" for n in range(25)]
        results = await _executor(4).run(items, _op, strategy=strategy)

        assert results == [f"item-{n}:{n}" for n in range(25)]


class TestFailureIsolation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    async def test_one_failure_does_not_disturb_others(self, strategy):
        async def _op(item: int, _index: int) -> int:
            if item == 3:
                raise RuntimeError("ticket 3 not found")
            return item

        results = await _executor(2).run(list(range(6)), _op, strategy=strategy)

        assert isinstance(results[3], RuntimeError)
        assert [r for i, r in enumerate(results) if i != 3] == [0, 1, 2, 4, 5]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    async def test_sync_operation_errors_are_captured(self, strategy):
        def _op(item: int, _index: int) -> int:
            if item % 2:
                raise ValueError(f"odd {item}")
            return item

        results = await _executor(2).run([0, 1, 2], _op, strategy=strategy)

        assert results[0] == 0
        assert isinstance(results[1], ValueError)
        assert results[2] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    async def test_empty_input(self, strategy):
        async def _op(item, _index):
            raise AssertionError("must not be called")

        assert await _executor().run([], _op, strategy=strategy) == []

    def test_summarize(self):
        error = RuntimeError("boom")
        summary = summarize(["a", error, "c"])

        assert summary.total == 3
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.errors == {1: error}
        assert summary.describe() == "2 of 3 succeeded"


class TestFixedBatch:
    @pytest.mark.asyncio
    async def test_batches_and_delays(self):
        sleep = _RecordingSleep()
        batches: list[list[int]] = []
        current: list[int] = []

        async def _op(item: int, _index: int) -> int:
            current.append(item)
            await asyncio.sleep(0)
            return item

        async def _sleep_between(seconds: float) -> None:
            batches.append(list(current))
            current.clear()
            await sleep(seconds)

        executor = BoundedExecutor(
            max_concurrency=2,
            delay_between_batches=0.25,
            sleep=_sleep_between,
        )
        await executor.run([1, 2, 3, 4, 5], _op, strategy=Strategy.FIXED_BATCH)
        batches.append(list(current))

        assert batches == [[1, 2], [3, 4], [5]]
        assert sleep.delays == [0.25, 0.25]

    @pytest.mark.asyncio
    async def test_no_delay_when_zero(self):
        sleep = _RecordingSleep()
        executor = BoundedExecutor(max_concurrency=2, delay_between_batches=0, sleep=sleep)

        async def _op(item: int, _index: int) -> int:
            return item

        await executor.run([1, 2, 3], _op, strategy=Strategy.FIXED_BATCH)

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_sliding_window_never_sleeps(self):
        sleep = _RecordingSleep()
        executor = BoundedExecutor(max_concurrency=2, delay_between_batches=1.0, sleep=sleep)

        async def _op(item: int, _index: int) -> int:
            return item

        await executor.run([1, 2, 3, 4, 5], _op, strategy=Strategy.SLIDING_WINDOW)

        assert sleep.delays == []


class TestProgress:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    async def test_reports_every_completion(self, strategy):
        seen: list[tuple[int, int]] = []

        async def _op(item: int, _index: int) -> int:
            if item == 2:
                raise RuntimeError("failed items count too")
            return item

        observer = CallbackObserver(lambda done, total: seen.append((done, total)))
        executor = _executor(2, observer=observer)
        await executor.run([1, 2, 3, 4], _op, strategy=strategy)

        assert seen == [(1, 4), (2, 4), (3, 4), (4, 4)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", STRATEGIES)
    async def test_failing_observer_does_not_abort_run(self, strategy, caplog):
        def _broken(done: int, _total: int) -> None:
            if done == 1:
                raise RuntimeError("progress bar closed")

        async def _op(item: int, _index: int) -> int:
            await asyncio.sleep(0)
            return item

        executor = _executor(2, observer=CallbackObserver(_broken))
        results = await executor.run([1, 2, 3, 4], _op, strategy=strategy)

        assert results == [1, 2, 3, 4]
        assert "Progress observer failed at 1/4" in caplog.text


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_sliding_window_waits_for_in_flight_items(self):
        item_tasks: list[asyncio.Task] = []
        both_started = asyncio.Event()

        async def _op(item: int, _index: int) -> int:
            item_tasks.append(asyncio.current_task())
            if len(item_tasks) == 2:
                both_started.set()
            await asyncio.Event().wait()
            return item

        run = asyncio.ensure_future(
            _executor(2).run([1, 2, 3], _op, strategy=Strategy.SLIDING_WINDOW),
        )
        await both_started.wait()
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run

        assert len(item_tasks) == 2
        assert all(task.cancelled() for task in item_tasks)


class TestValidation:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError, match="max_concurrency"):
            BoundedExecutor(max_concurrency=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError, match="delay_between_batches"):
            BoundedExecutor(max_concurrency=1, delay_between_batches=-1)


class TestCachedOperation:
    @pytest.mark.asyncio
    async def test_second_run_is_served_from_cache(self, tmp_path, clock):
        store = CacheStore(tmp_path, "jira", clock=clock)
        calls: list[str] = []

        async def _fetch(key: str, _index: int) -> dict:
            calls.append(key)
            return {"key": key}

        operation = cached(_fetch, cache=store, key_fn=lambda key: f"k{key}", ttl=3_600)
        executor = _executor(2)

        first = await executor.run(["A-1", "A-2"], operation)
        second = await executor.run(["A-1", "A-2"], operation)

        assert first == second == [{"key": "A-1"}, {"key": "A-2"}]
        assert calls == ["A-1", "A-2"]

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, tmp_path, clock):
        store = CacheStore(tmp_path, "jira", clock=clock)
        attempts: list[str] = []

        async def _flaky(key: str, _index: int) -> str:
            attempts.append(key)
            if len(attempts) == 1:
                raise RuntimeError("503")
            return key

        operation = cached(_flaky, cache=store, key_fn=lambda key: f"k{key}", ttl=3_600)

        first = await _executor(1).run(["A-1"], operation)
        second = await _executor(1).run(["A-1"], operation)

        assert isinstance(first[0], RuntimeError)
        assert second == ["A-1"]
        assert attempts == ["A-1", "A-1"]

    @pytest.mark.asyncio
    async def test_metadata_fn_is_stored(self, tmp_path, clock):
        store = CacheStore(tmp_path, "jira", clock=clock)

        async def _fetch(key: str, _index: int) -> str:
            return key

        operation = cached(
            _fetch,
            cache=store,
            key_fn=lambda key: f"k{key}",
            ttl=None,
            metadata_fn=lambda key: {"ticket": key},
        )
        await _executor(1).run(["A-1"], operation)

        entry = store.lookup("kA-1", ttl=None)
        assert entry is not None
        assert entry.metadata == {"ticket": "A-1"}
