"""CLI entrypoint for dev-toolbox."""

import logging
from collections.abc import Iterable
from pathlib import Path

import rich_click as click

from dev_toolbox import __version__
from dev_toolbox.release_notes.controllers import (
    ReleaseNotesCleanCommand,
    ReleaseNotesCliController,
    ReleaseNotesJobError,
    ReleaseNotesRunCommand,
)
from dev_toolbox.release_notes.job import RELEASE_NOTES_STAGES
from dev_toolbox.runtime.controllers import CacheCliController, CacheCommand

click.rich_click.USE_MARKDOWN = True
RELEASE_NOTES_CONTROLLER = ReleaseNotesCliController()
CACHE_CONTROLLER = CacheCliController()


@click.group()
@click.version_option(version=__version__, prog_name="dev-toolbox")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def dev_toolbox(verbose: bool) -> None:
    """Developer toolbox CLI."""

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@dev_toolbox.group("release-notes")
def release_notes() -> None:
    """Release-notes generation from a git range and the ticket tracker.

    Stages checkpoint into the work dir; a failed run can continue with `--resume`.
    """


@release_notes.command("run")
@click.option("--version", "version", required=True, help="Version being released, e.g. 4.2.0.")
@click.option(
    "--repo",
    "repo_path",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
    show_default=True,
    help="Path to the git repository.",
)
@click.option("--source", "source_branch", default=None, help="Branch with new commits.")
@click.option("--target", "target_branch", default=None, help="Branch already released.")
@click.option(
    "--work-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Intermediate artifacts dir, relative to the repository.",
)
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Where release_notes_<version>.md is written, relative to the repository.",
)
@click.option("--resume", is_flag=True, default=False, help="Continue after the last checkpoint.")
@click.option(
    "--step",
    type=click.Choice([stage.id for stage in RELEASE_NOTES_STAGES]),
    default=None,
    help="Run a single stage.",
)
@click.option("--jira/--no-jira", "fetch_ticket_details", default=True, show_default=True)
@click.option("--ai/--no-ai", "use_ai", default=True, show_default=True)
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True)
@click.option("--jira-project", default=None, help="Ticket key prefix, e.g. APP.")
@click.option(
    "--debug-limit",
    type=click.IntRange(min=1),
    default=None,
    help="Process at most N tickets.",
)
@click.option("--keep/--no-keep", "keep_work_dir", default=False, show_default=True)
def release_notes_run(  # noqa: PLR0913
    version: str,
    repo_path: Path,
    source_branch: str | None,
    target_branch: str | None,
    work_dir: Path | None,
    output_dir: Path | None,
    resume: bool,
    step: str | None,
    fetch_ticket_details: bool,
    use_ai: bool,
    use_cache: bool,
    jira_project: str | None,
    debug_limit: int | None,
    keep_work_dir: bool,
) -> None:
    """Generate release notes for the commits between two branches."""

    command = ReleaseNotesRunCommand(
        version=version,
        repo_path=repo_path,
        source_branch=source_branch,
        target_branch=target_branch,
        work_dir=work_dir,
        output_dir=output_dir,
        resume=resume,
        step=step,
        fetch_ticket_details=fetch_ticket_details,
        use_ai=use_ai,
        use_cache=use_cache,
        jira_project=jira_project,
        debug_limit=debug_limit,
        keep_work_dir=keep_work_dir,
    )
    try:
        _emit_lines(RELEASE_NOTES_CONTROLLER.run(command))
    except ReleaseNotesJobError as exc:
        raise click.ClickException(str(exc)) from exc


@release_notes.command("steps")
def release_notes_steps() -> None:
    """List stages in execution order."""

    _emit_lines(RELEASE_NOTES_CONTROLLER.list_steps())


@release_notes.command("clean")
@click.option(
    "--repo",
    "repo_path",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
    show_default=True,
)
@click.option("--work-dir", type=click.Path(path_type=Path), default=None)
def release_notes_clean(repo_path: Path, work_dir: Path | None) -> None:
    """Delete the work dir and its checkpoint."""

    _emit_lines(
        RELEASE_NOTES_CONTROLLER.clean(
            ReleaseNotesCleanCommand(repo_path=repo_path, work_dir=work_dir),
        ),
    )


@dev_toolbox.group()
def cache() -> None:
    """Response cache maintenance."""


@cache.command("stats")
@click.option("--cache-dir", type=click.Path(path_type=Path), default=None, help="Cache root.")
@click.option("--namespace", default=None, help="Only this namespace, e.g. jira.")
def cache_stats(cache_dir: Path | None, namespace: str | None) -> None:
    """Show entry counts and sizes per namespace."""

    try:
        _emit_lines(CACHE_CONTROLLER.stats(CacheCommand(cache_dir=cache_dir, namespace=namespace)))
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


@cache.command("clear")
@click.option("--cache-dir", type=click.Path(path_type=Path), default=None, help="Cache root.")
@click.option("--namespace", default=None, help="Only this namespace, e.g. claude.")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
def cache_clear(cache_dir: Path | None, namespace: str | None, yes: bool) -> None:
    """Delete cached responses."""

    command = CacheCommand(cache_dir=cache_dir, namespace=namespace)
    scope = f"namespace {namespace!r}" if namespace else "all namespaces"
    if not yes:
        click.confirm(f"Clear {scope}?", abort=True)
    try:
        _emit_lines(CACHE_CONTROLLER.clear(command))
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    dev_toolbox()
