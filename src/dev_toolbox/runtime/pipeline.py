"""Resumable staged pipeline with an on-disk checkpoint.

Stages run strictly in the supplied order.  After each stage that actually
ran and succeeded, the stage id is written to ``<work_dir>/.progress``.  A
resumed run skips every stage up to and including the checkpointed one.  A
disabled optional stage is skipped without touching the checkpoint; a failed
stage is not checkpointed, so the next resume retries exactly that stage.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Generic, TypeVar

from dev_toolbox.runtime.storage import atomic_write_text

logger = logging.getLogger(__name__)

C = TypeVar("C")

CHECKPOINT_FILENAME = ".progress"


class PipelineState(str, Enum):
    """Run lifecycle."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class PipelineError(RuntimeError):
    """Pipeline misconfiguration or run failure."""


class PreconditionError(RuntimeError):
    """A stage cannot start: missing credential or missing upstream artifact."""


@dataclass(frozen=True, slots=True)
class Stage(Generic[C]):
    """One named unit of work.

    ``run`` receives the job context and signals failure by raising.  It may be
    a coroutine function or a plain function.
    """

    id: str
    name: str
    run: Callable[[C], Awaitable[None] | None]
    optional: bool = False


@dataclass(slots=True)
class StageResult:
    """Outcome of one stage within a run."""

    stage_id: str
    name: str
    status: StageStatus
    error: str | None = None
    elapsed_seconds: float = 0.0


@dataclass(slots=True)
class PipelineRunResult:
    """Result of one :meth:`Pipeline.run_all` or :meth:`Pipeline.run_stage` call."""

    state: PipelineState = PipelineState.NOT_STARTED
    current_index: int | None = None
    resumed_from: str | None = None
    stages: list[StageResult] = field(default_factory=list)
    error: str | None = None

    @property
    def executed(self) -> list[str]:
        return [s.stage_id for s in self.stages if s.status is StageStatus.COMPLETED]

    @property
    def skipped(self) -> list[str]:
        return [s.stage_id for s in self.stages if s.status is StageStatus.SKIPPED]


class StageFailedError(PipelineError):
    """A stage raised; the run stopped and the stage was not checkpointed."""

    def __init__(
        self,
        stage_id: str,
        name: str,
        cause: BaseException,
        result: PipelineRunResult | None = None,
    ) -> None:
        super().__init__(f"Stage {stage_id} ({name}) failed: {cause}")
        self.stage_id = stage_id
        self.stage_name = name
        self.cause = cause
        self.result = result


class CheckpointStore:
    """Id of the last completed stage, one plain-text file in the work dir."""

    def __init__(self, work_dir: Path, filename: str = CHECKPOINT_FILENAME) -> None:
        self.path = work_dir / filename

    def read(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            value = self.path.read_text("utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise PipelineError(
                f"Cannot read checkpoint {self.path}: {exc}. Delete it or start a fresh run.",
            ) from exc
        return value or None

    def write(self, stage_id: str) -> None:
        atomic_write_text(self.path, stage_id)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def stage_output_ready(path: Path) -> bool:
    """True when a stage's output artifact is already present.

    Stage-local idempotency is keyed on presence only: changed upstream
    settings are not detected, and a fresh work dir is needed to recompute.
    """

    return path.exists()


class Pipeline(Generic[C]):
    """Runs stages sequentially and checkpoints progress in ``work_dir``."""

    def __init__(
        self,
        stages: Sequence[Stage[C]],
        *,
        work_dir: Path,
        is_enabled: Callable[[Stage[C]], bool] | None = None,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        ids = [stage.id for stage in stages]
        duplicates = sorted({stage_id for stage_id in ids if ids.count(stage_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage ids: {', '.join(duplicates)}")
        self._stages = tuple(stages)
        self.work_dir = work_dir
        self.checkpoint = CheckpointStore(work_dir)
        self._is_enabled = is_enabled or (lambda _stage: True)
        self._on_progress = on_progress or (lambda _msg: None)

    @property
    def stages(self) -> tuple[Stage[C], ...]:
        return self._stages

    def get_stage(self, stage_id: str) -> Stage[C]:
        return self._stages[self._index_of(stage_id)]

    def _index_of(self, stage_id: str) -> int:
        for index, stage in enumerate(self._stages):
            if stage.id == stage_id:
                return index
        known = ", ".join(stage.id for stage in self._stages)
        raise PipelineError(f"Unknown stage: {stage_id}. Known stages: {known}")

    def _emit(self, msg: str) -> None:
        logger.info(msg)
        self._on_progress(msg)

    async def run_all(self, context: C, *, resume: bool = False) -> PipelineRunResult:
        """Run every stage in order, optionally resuming after the last checkpoint.

        Raises :class:`StageFailedError` when a stage fails.
        """

        result = PipelineRunResult()
        start = 0
        if resume:
            last_completed = self.checkpoint.read()
            if last_completed:
                start = self._index_of(last_completed) + 1
                result.resumed_from = last_completed
                self._emit(f"Resuming after last completed stage: {last_completed}")
            else:
                self._emit("No checkpoint found, starting from the first stage")
        else:
            self.checkpoint.clear()

        self.work_dir.mkdir(parents=True, exist_ok=True)
        result.state = PipelineState.RUNNING

        for index in range(start, len(self._stages)):
            stage = self._stages[index]
            result.current_index = index
            if stage.optional and not self._is_enabled(stage):
                self._emit(f"[{stage.id}] Skipped (disabled by configuration)")
                result.stages.append(StageResult(stage.id, stage.name, StageStatus.SKIPPED))
                continue
            await self._execute(stage, context, result)

        result.state = PipelineState.COMPLETED
        result.current_index = None
        return result

    async def run_stage(self, stage_id: str, context: C) -> PipelineRunResult:
        """Run one named stage regardless of configuration gates and checkpoint it."""

        stage = self.get_stage(stage_id)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        result = PipelineRunResult(
            state=PipelineState.RUNNING,
            current_index=self._index_of(stage_id),
        )
        await self._execute(stage, context, result)
        result.state = PipelineState.COMPLETED
        result.current_index = None
        return result

    async def _execute(self, stage: Stage[C], context: C, result: PipelineRunResult) -> None:
        self._emit(f"[{stage.id}] {stage.name}")
        started = time.monotonic()
        try:
            outcome: Any = stage.run(context)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            elapsed = time.monotonic() - started
            result.stages.append(
                StageResult(stage.id, stage.name, StageStatus.FAILED, str(exc), elapsed),
            )
            result.state = PipelineState.FAILED
            result.error = str(exc)
            logger.error("Stage %s failed after %.1fs: %s", stage.id, elapsed, exc)
            raise StageFailedError(stage.id, stage.name, exc, result) from exc

        elapsed = time.monotonic() - started
        self.checkpoint.write(stage.id)
        result.stages.append(
            StageResult(stage.id, stage.name, StageStatus.COMPLETED, elapsed_seconds=elapsed),
        )
        self._emit(f"[{stage.id}] Completed in {elapsed:.1f}s")
