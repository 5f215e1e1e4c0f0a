"""CLI controller for release-notes commands."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from dev_toolbox.config import Settings
from dev_toolbox.release_notes.job import RELEASE_NOTES_STAGES, run_release_notes
from dev_toolbox.release_notes.models import ReleaseNotesConfig
from dev_toolbox.release_notes.workdir import ReleaseNotesWorkdir
from dev_toolbox.runtime.pipeline import PipelineRunResult, StageFailedError, StageStatus

logger = logging.getLogger(__name__)

_SENTINEL = object()


class ReleaseNotesJobError(RuntimeError):
    """The release-notes job could not complete."""


@dataclass(slots=True)
class ReleaseNotesRunCommand:
    """Input for release-notes run CLI command."""

    version: str
    repo_path: Path = Path(".")
    source_branch: str | None = None
    target_branch: str | None = None
    work_dir: Path | None = None
    output_dir: Path | None = None
    resume: bool = False
    step: str | None = None
    fetch_ticket_details: bool = True
    use_ai: bool = True
    use_cache: bool = True
    jira_project: str | None = None
    debug_limit: int | None = None
    keep_work_dir: bool = False


@dataclass(slots=True)
class ReleaseNotesCleanCommand:
    """Input for release-notes clean CLI command."""

    repo_path: Path = Path(".")
    work_dir: Path | None = None


def build_job_config(command: ReleaseNotesRunCommand, settings: Settings) -> ReleaseNotesConfig:
    """Resolve CLI options against settings; relative paths live under the repository."""

    defaults = settings.release_notes
    repo_path = command.repo_path.resolve()
    output_dir = repo_path / (command.output_dir or Path("."))
    return ReleaseNotesConfig(
        version=command.version,
        repo_path=repo_path,
        work_dir=repo_path / (command.work_dir or defaults.work_dir),
        output_path=output_dir / f"release_notes_{command.version}.md",
        source_branch=command.source_branch or defaults.source_branch,
        target_branch=command.target_branch or defaults.target_branch,
        jira_project=command.jira_project or defaults.jira_project,
        fetch_ticket_details=command.fetch_ticket_details,
        use_ai=command.use_ai,
        debug_limit=command.debug_limit,
    )


class ReleaseNotesCliController:
    """CLI controller for release-notes operations."""

    def run(self, command: ReleaseNotesRunCommand) -> Iterator[str]:
        """Execute the job, yielding real-time progress lines.

        Raises :class:`ReleaseNotesJobError` after the progress lines when a
        stage fails; the work dir is kept so ``--resume`` can continue.
        """

        settings = Settings.from_env()
        if not command.use_cache:
            settings = dataclasses.replace(
                settings,
                cache=dataclasses.replace(settings.cache, enabled=False),
            )
        try:
            settings.validate_for_release_notes(command.jira_project)
        except ValueError as exc:
            raise ReleaseNotesJobError(str(exc)) from exc

        config = build_job_config(command, settings)
        if not (config.repo_path / ".git").exists():
            raise ReleaseNotesJobError(f"Not a git repository: {config.repo_path}")

        yield f"Release notes {config.version} for {config.repo_path}"
        yield f"Range: {config.target_branch}..{config.source_branch}"
        yield f"Work dir: {config.work_dir}"
        if config.debug_limit is not None:
            yield f"Debug mode: at most {config.debug_limit} tickets"
        if not settings.cache.enabled:
            yield "Cache disabled"

        progress_q: queue.Queue[str | object] = queue.Queue()
        result_holder: list[PipelineRunResult] = []
        error_holder: list[Exception] = []

        def _run() -> None:
            try:
                result_holder.append(
                    asyncio.run(
                        run_release_notes(
                            config,
                            settings,
                            resume=command.resume,
                            step=command.step,
                            on_progress=progress_q.put,
                        ),
                    ),
                )
            except Exception as exc:  # noqa: BLE001
                error_holder.append(exc)
            finally:
                progress_q.put(_SENTINEL)

        worker_thread = threading.Thread(target=_run, daemon=True)
        worker_thread.start()

        while True:
            item = progress_q.get()
            if item is _SENTINEL:
                break
            yield str(item)

        worker_thread.join(timeout=10)

        if error_holder:
            exc = error_holder[0]
            if isinstance(exc, StageFailedError):
                if exc.result is not None:
                    yield from _format_run_result(exc.result)
                yield f"Work dir kept at {config.work_dir}; rerun with --resume to continue."
                raise ReleaseNotesJobError(
                    f"Stage {exc.stage_id} failed: {exc.cause}",
                ) from exc
            raise ReleaseNotesJobError(str(exc)) from exc

        if result_holder:
            yield from _format_run_result(result_holder[0])

        if command.step is None:
            yield f"Release notes: {config.output_path}"
            if not command.keep_work_dir and ReleaseNotesWorkdir(config.work_dir).remove():
                yield f"Removed work dir {config.work_dir}"

    def list_steps(self) -> Iterator[str]:
        """List stages in execution order."""

        for index, stage in enumerate(RELEASE_NOTES_STAGES, start=1):
            marker = " (optional)" if stage.optional else ""
            yield f"{index}. {stage.id:15s} {stage.name}{marker}"

    def clean(self, command: ReleaseNotesCleanCommand) -> Iterator[str]:
        """Delete the work dir with every intermediate artifact and the checkpoint."""

        settings = Settings.from_env()
        work_dir = command.repo_path.resolve() / (
            command.work_dir or settings.release_notes.work_dir
        )
        if ReleaseNotesWorkdir(work_dir).remove():
            yield f"Removed work dir {work_dir}"
        else:
            yield f"Nothing to clean: {work_dir} does not exist"


def _format_run_result(result: PipelineRunResult) -> Iterator[str]:
    yield ""
    yield f"Pipeline {result.state.value}"
    if result.resumed_from:
        yield f"  Resumed after: {result.resumed_from}"
    for stage in result.stages:
        marker = "ok" if stage.status is StageStatus.COMPLETED else stage.status.value
        yield f"  [{marker}] {stage.stage_id} ({stage.elapsed_seconds:.1f}s)"
        if stage.error:
            yield f"    Error: {stage.error}"
