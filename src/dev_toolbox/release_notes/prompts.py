"""Prompt templates for the release-notes analysis stage."""

from __future__ import annotations

from dev_toolbox.clients.jira import TicketDetails
from dev_toolbox.release_notes.workdir import CategorizedTicket

_MAX_DESCRIPTION_CHARS = 2000
_MAX_COMMITS = 10

TICKET_SUMMARY_SYSTEM = """\
You write release notes for end users of a software product.
Be concise and factual. Never invent features that are not in the input.
"""

TICKET_SUMMARY_PROMPT = """\
Summarize the change below for the release notes of the next version.

Ticket: {ticket_id}
Title: {title}
Type: {issue_type}
Status: {status}

Description:
{description}

Commit messages:
{commits}

Write one or two sentences in plain language describing what changed for the user.
Do not repeat the ticket id. Do not use markdown headings or bullet points.
"""


def build_ticket_prompt(ticket: CategorizedTicket, details: TicketDetails | None) -> str:
    description = details.description if details else ""
    if len(description) > _MAX_DESCRIPTION_CHARS:
        description = description[:_MAX_DESCRIPTION_CHARS] + "..."
    commits = "\n".join(f"- {subject}" for subject in ticket.commits[:_MAX_COMMITS])
    return TICKET_SUMMARY_PROMPT.format(
        ticket_id=ticket.key,
        title=(details.summary if details and details.summary else ticket.key),
        issue_type=(details.issue_type if details and details.issue_type else ticket.category),
        status=(details.status if details and details.status else "unknown"),
        description=description or "(no description)",
        commits=commits or "(no commits)",
    )
