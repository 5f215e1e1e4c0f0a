"""Markdown rendering of the final release notes."""

from __future__ import annotations

from datetime import date

from dev_toolbox.clients.jira import TicketDetails
from dev_toolbox.release_notes.workdir import CategorizedTicket

CATEGORY_TITLES = {
    "feature": "New Features",
    "bugfix": "Bug Fixes",
    "improvement": "Improvements",
    "other": "Other Changes",
}

_ISSUE_TYPE_CATEGORIES = {
    "bug": "bugfix",
    "story": "feature",
    "new feature": "feature",
    "improvement": "improvement",
}


def effective_category(ticket: CategorizedTicket, details: TicketDetails | None) -> str:
    """Tracker issue type wins over the commit-message heuristic when it is known."""

    if details and details.issue_type:
        mapped = _ISSUE_TYPE_CATEGORIES.get(details.issue_type.strip().lower())
        if mapped:
            return mapped
    return ticket.category if ticket.category in CATEGORY_TITLES else "other"


def render_markdown(
    *,
    version: str,
    tickets: list[CategorizedTicket],
    details: dict[str, TicketDetails],
    analysis: dict[str, str],
    generated_on: date,
) -> str:
    lines = [
        f"# Release Notes {version}",
        "",
        f"_Generated on {generated_on.isoformat()} from {len(tickets)} tickets._",
        "",
    ]
    if not tickets:
        lines.append("No tickets found in this range.")
        return "\n".join(lines) + "\n"

    grouped: dict[str, list[CategorizedTicket]] = {category: [] for category in CATEGORY_TITLES}
    for ticket in tickets:
        grouped[effective_category(ticket, details.get(ticket.key))].append(ticket)

    for category, title in CATEGORY_TITLES.items():
        items = grouped[category]
        if not items:
            continue
        lines.append(f"## {title}")
        lines.append("")
        for ticket in items:
            lines.extend(_ticket_lines(ticket, details.get(ticket.key), analysis.get(ticket.key)))
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def _ticket_lines(
    ticket: CategorizedTicket,
    details: TicketDetails | None,
    summary: str | None,
) -> list[str]:
    if details and details.summary:
        heading = details.summary
    elif ticket.commits:
        heading = ticket.commits[0]
    else:
        heading = ""
    reference = f"[{ticket.key}]({details.url})" if details and details.url else ticket.key
    lines = [f"- **{reference}** {heading}".rstrip()]
    if summary:
        lines.extend(f"  {line}" for line in summary.strip().splitlines() if line.strip())
    return lines
