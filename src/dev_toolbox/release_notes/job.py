"""Stage table and entry point of the release-notes job."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AsyncExitStack

from dev_toolbox.clients.completion import CachedCompletionClient, CompletionClient
from dev_toolbox.clients.git_log import GitLogReader
from dev_toolbox.clients.jira import JiraClient
from dev_toolbox.config import Settings
from dev_toolbox.release_notes.models import ReleaseNotesConfig, ReleaseNotesContext
from dev_toolbox.release_notes.steps import (
    analyze_tickets,
    categorize_tickets,
    extract_tickets,
    fetch_commits,
    fetch_ticket_details,
    generate_notes,
)
from dev_toolbox.runtime.cache import CacheStore
from dev_toolbox.runtime.pipeline import Pipeline, PipelineRunResult, Stage

COMPLETION_CACHE_NAMESPACE = "claude"

RELEASE_NOTES_STAGES: tuple[Stage[ReleaseNotesContext], ...] = (
    Stage("fetch-commits", "Fetch commits", fetch_commits),
    Stage("extract", "Extract ticket keys", extract_tickets),
    Stage("categorize", "Categorize tickets", categorize_tickets),
    Stage("fetch-details", "Fetch ticket details", fetch_ticket_details, optional=True),
    Stage("analyze", "Summarize tickets with AI", analyze_tickets, optional=True),
    Stage("generate", "Generate release notes", generate_notes),
)

_STAGE_GATES: dict[str, Callable[[ReleaseNotesConfig], bool]] = {
    "fetch-details": lambda config: config.fetch_ticket_details,
    "analyze": lambda config: config.use_ai,
}


def build_pipeline(
    config: ReleaseNotesConfig,
    *,
    on_progress: Callable[[str], None] | None = None,
) -> Pipeline[ReleaseNotesContext]:
    def _is_enabled(stage: Stage[ReleaseNotesContext]) -> bool:
        gate = _STAGE_GATES.get(stage.id)
        return gate(config) if gate is not None else True

    return Pipeline(
        RELEASE_NOTES_STAGES,
        work_dir=config.work_dir,
        is_enabled=_is_enabled,
        on_progress=on_progress,
    )


async def run_release_notes(  # noqa: PLR0913
    config: ReleaseNotesConfig,
    settings: Settings,
    *,
    resume: bool = False,
    step: str | None = None,
    on_progress: Callable[[str], None] | None = None,
    git: GitLogReader | None = None,
    jira: JiraClient | None = None,
    completion: CachedCompletionClient | None = None,
) -> PipelineRunResult:
    """Run the whole job, or only ``step``.

    Clients not passed in are built from ``settings`` when the stage that needs
    them can run; those are closed on exit.
    """

    pipeline = build_pipeline(config, on_progress=on_progress)
    if step is not None:
        pipeline.get_stage(step)

    async with AsyncExitStack() as stack:
        if jira is None and _wants(config, step, "fetch-details") and settings.jira.is_configured:
            jira = JiraClient(
                base_url=settings.jira.base_url,
                email=settings.jira.email,
                api_token=settings.jira.api_token,
            )
            stack.push_async_callback(jira.aclose)
        if (
            completion is None
            and _wants(config, step, "analyze")
            and settings.completion.is_configured
        ):
            completion = CachedCompletionClient(
                CompletionClient(
                    api_key=settings.completion.api_key,
                    model=settings.completion.model,
                ),
                CacheStore(
                    settings.cache.cache_dir,
                    COMPLETION_CACHE_NAMESPACE,
                    enabled=settings.cache.enabled,
                ),
                ttl=settings.cache.completion_ttl_seconds,
            )
            stack.push_async_callback(completion.aclose)

        context = ReleaseNotesContext(
            config=config,
            settings=settings,
            git=git or GitLogReader(config.repo_path),
            jira=jira,
            completion=completion,
            emit=on_progress or (lambda _msg: None),
        )
        if step is not None:
            return await pipeline.run_stage(step, context)
        return await pipeline.run_all(context, resume=resume)


def _wants(config: ReleaseNotesConfig, step: str | None, stage_id: str) -> bool:
    if step is not None:
        return step == stage_id
    return _STAGE_GATES[stage_id](config)
