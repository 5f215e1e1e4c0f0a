"""Stage implementations of the release-notes job.

Every stage reads its inputs from the work dir and writes exactly one
artifact. A stage whose artifact already exists reuses it, so a resumed
run never repeats remote calls that already succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from datetime import date

from dev_toolbox.clients.jira import TicketDetails
from dev_toolbox.release_notes.models import ReleaseNotesContext
from dev_toolbox.release_notes.prompts import TICKET_SUMMARY_SYSTEM, build_ticket_prompt
from dev_toolbox.release_notes.render import render_markdown
from dev_toolbox.release_notes.workdir import CategorizedTicket
from dev_toolbox.runtime.cache import CacheStore
from dev_toolbox.runtime.executor import (
    BoundedExecutor,
    CallbackObserver,
    ExecutionSummary,
    Strategy,
    cached,
    summarize,
)
from dev_toolbox.runtime.hashing import DataclassCodec, generate_hash
from dev_toolbox.runtime.pipeline import PreconditionError, stage_output_ready
from dev_toolbox.runtime.storage import atomic_write_text

logger = logging.getLogger(__name__)

JIRA_CACHE_NAMESPACE = "jira"
_PROGRESS_EVERY = 10

_CATEGORY_PATTERNS = (
    ("bugfix", re.compile(r"\b(fix(es|ed)?|bug(fix)?|hotfix|revert(s|ed)?)\b")),
    (
        "feature",
        re.compile(r"\b(feat(ure)?|add(s|ed)?|implement(s|ed)?|introduc(e|es|ed)|new|support)\b"),
    ),
    (
        "improvement",
        re.compile(
            r"\b(improv(e|es|ed|ement)|refactor(s|ed)?|updat(e|es|ed)"
            r"|optimi[sz](e|es|ed)|perf|clean(up|s|ed)?)\b",
        ),
    ),
)


class BatchFailedError(RuntimeError):
    """Every item of a remote batch failed."""


def ticket_pattern(project: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(project)}-\d+\b")


def extract_ticket_keys(texts: Iterable[str], project: str) -> list[str]:
    """Unique ticket keys in order of first appearance."""

    pattern = ticket_pattern(project)
    seen: dict[str, None] = {}
    for text in texts:
        for match in pattern.findall(text):
            seen.setdefault(match, None)
    return list(seen)


def categorize_subjects(subjects: Iterable[str]) -> str:
    text = " ".join(subjects).lower()
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return "other"


def ticket_cache_key(key: str, base_url: str) -> str:
    return generate_hash("ticket", key, {"base_url": base_url})


async def fetch_commits(ctx: ReleaseNotesContext) -> None:
    workdir = ctx.workdir
    if stage_output_ready(workdir.commits_path):
        ctx.emit(f"Using existing {workdir.commits_path.name}")
        return

    config = ctx.config
    ctx.emit(f"Fetching commits {config.target_branch}..{config.source_branch}")
    commits = await asyncio.to_thread(
        ctx.git.commits_between,
        config.target_branch,
        config.source_branch,
    )
    workdir.write_commits(commits)
    ctx.emit(f"Found {len(commits)} commits")


async def extract_tickets(ctx: ReleaseNotesContext) -> None:
    workdir = ctx.workdir
    if not workdir.commits_path.exists():
        raise PreconditionError("commits.txt not found. Run the fetch-commits stage first.")
    limit = ctx.config.debug_limit
    if stage_output_ready(workdir.tickets_path) and limit is None:
        ctx.emit(f"Using existing {workdir.tickets_path.name}")
        return

    commits = workdir.read_commits()
    tickets = extract_ticket_keys((commit.subject for commit in commits), ctx.config.jira_project)
    if limit is not None and len(tickets) > limit:
        ctx.emit(f"Debug mode: limiting to {limit} of {len(tickets)} tickets")
        tickets = tickets[:limit]
    workdir.write_tickets(tickets)
    ctx.emit(f"Found {len(tickets)} unique {ctx.config.jira_project} tickets")


async def categorize_tickets(ctx: ReleaseNotesContext) -> None:
    workdir = ctx.workdir
    if not workdir.tickets_path.exists():
        raise PreconditionError("tickets.txt not found. Run the extract stage first.")
    if stage_output_ready(workdir.categories_path):
        ctx.emit(f"Using existing {workdir.categories_path.name}")
        return

    commits = workdir.read_commits()
    categorized: list[CategorizedTicket] = []
    for key in workdir.read_tickets():
        pattern = re.compile(rf"\b{re.escape(key)}\b")
        subjects = [commit.subject for commit in commits if pattern.search(commit.subject)]
        categorized.append(
            CategorizedTicket(key=key, category=categorize_subjects(subjects), commits=subjects),
        )
    workdir.write_categories(categorized)

    counts: dict[str, int] = {}
    for ticket in categorized:
        counts[ticket.category] = counts.get(ticket.category, 0) + 1
    breakdown = ", ".join(f"{name}={count}" for name, count in sorted(counts.items()))
    ctx.emit(f"Categorized {len(categorized)} tickets ({breakdown or 'none'})")


async def fetch_ticket_details(ctx: ReleaseNotesContext) -> None:
    workdir = ctx.workdir
    if not workdir.tickets_path.exists():
        raise PreconditionError("tickets.txt not found. Run the extract stage first.")
    if stage_output_ready(workdir.details_path):
        ctx.emit(f"Using existing {workdir.details_path.name}")
        return
    if ctx.jira is None:
        raise PreconditionError(
            "Jira is not configured. Set JIRA_BASE_URL, JIRA_EMAIL and JIRA_API_TOKEN "
            "or pass --no-jira.",
        )

    tickets = workdir.read_tickets()
    cache_settings = ctx.settings.cache
    jira = ctx.jira
    operation = cached(
        lambda key, _index: jira.fetch_ticket(key),
        cache=CacheStore(
            cache_settings.cache_dir,
            JIRA_CACHE_NAMESPACE,
            enabled=cache_settings.enabled,
        ),
        key_fn=lambda key: ticket_cache_key(key, jira.base_url),
        ttl=cache_settings.jira_ttl_seconds,
        codec=DataclassCodec(TicketDetails),
        metadata_fn=lambda key: {"ticket": key},
    )
    results = await _executor(ctx, "Ticket details").run(
        tickets,
        operation,
        strategy=Strategy.SLIDING_WINDOW,
    )
    summary = summarize(results)
    _raise_if_all_failed(summary, "ticket fetches")

    details = {
        key: result
        for key, result in zip(tickets, results, strict=True)
        if isinstance(result, TicketDetails)
    }
    errors = _errors_by_key(tickets, summary)
    workdir.write_details(details, errors)
    ctx.emit(f"Ticket details: {summary.describe()}")


async def analyze_tickets(ctx: ReleaseNotesContext) -> None:
    workdir = ctx.workdir
    if not workdir.categories_path.exists():
        raise PreconditionError("categories.json not found. Run the categorize stage first.")
    if stage_output_ready(workdir.analysis_path):
        ctx.emit(f"Using existing {workdir.analysis_path.name}")
        return
    if ctx.completion is None:
        raise PreconditionError("ANTHROPIC_API_KEY is not set. Set it or pass --no-ai.")

    tickets = workdir.read_categories()
    details = workdir.read_details()
    completion = ctx.completion
    completion_settings = ctx.settings.completion

    async def _summarize(ticket: CategorizedTicket, _index: int) -> str:
        return await completion.complete(
            build_ticket_prompt(ticket, details.get(ticket.key)),
            system=TICKET_SUMMARY_SYSTEM,
            max_tokens=completion_settings.max_tokens,
            temperature=completion_settings.temperature,
        )

    results = await _executor(ctx, "Ticket analysis").run(
        tickets,
        _summarize,
        strategy=Strategy.FIXED_BATCH,
    )
    summary = summarize(results)
    _raise_if_all_failed(summary, "ticket analyses")

    keys = [ticket.key for ticket in tickets]
    summaries = {
        key: result for key, result in zip(keys, results, strict=True) if isinstance(result, str)
    }
    workdir.write_analysis(summaries, _errors_by_key(keys, summary))
    ctx.emit(f"Ticket analysis: {summary.describe()}")


async def generate_notes(ctx: ReleaseNotesContext) -> None:
    workdir = ctx.workdir
    if not workdir.categories_path.exists():
        raise PreconditionError("categories.json not found. Run the categorize stage first.")

    text = render_markdown(
        version=ctx.config.version,
        tickets=workdir.read_categories(),
        details=workdir.read_details(),
        analysis=workdir.read_analysis(),
        generated_on=date.today(),
    )
    atomic_write_text(ctx.config.output_path, text)
    ctx.emit(f"Release notes written to {ctx.config.output_path}")


def _executor(ctx: ReleaseNotesContext, label: str) -> BoundedExecutor:
    def _report(completed: int, total: int) -> None:
        if completed % _PROGRESS_EVERY == 0 or completed == total:
            ctx.emit(f"{label}: {completed}/{total}")

    executor_settings = ctx.settings.executor
    return BoundedExecutor(
        max_concurrency=executor_settings.max_concurrency,
        delay_between_batches=executor_settings.delay_between_batches_seconds,
        observer=CallbackObserver(_report),
    )


def _errors_by_key(keys: list[str], summary: ExecutionSummary) -> dict[str, str]:
    errors = {keys[index]: str(error) for index, error in summary.errors.items()}
    for key, message in errors.items():
        logger.warning("%s failed: %s", key, message)
    return errors


def _raise_if_all_failed(summary: ExecutionSummary, what: str) -> None:
    if summary.total and summary.succeeded == 0:
        first = next(iter(summary.errors.values()))
        raise BatchFailedError(f"All {summary.total} {what} failed; first error: {first}")
