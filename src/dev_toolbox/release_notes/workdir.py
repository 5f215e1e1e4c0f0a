"""Artifact layout of the release-notes working directory."""

from __future__ import annotations

import dataclasses
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from dev_toolbox.clients.git_log import CommitInfo, parse_log
from dev_toolbox.clients.jira import TicketDetails
from dev_toolbox.runtime.storage import atomic_write_text, read_json, write_json


@dataclass(slots=True)
class CategorizedTicket:
    """A ticket with its category and the commit subjects that mention it."""

    key: str
    category: str
    commits: list[str] = field(default_factory=list)


class ReleaseNotesWorkdir:
    """Deterministic file names for every stage artifact."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    @property
    def commits_path(self) -> Path:
        return self.root_dir / "commits.txt"

    @property
    def tickets_path(self) -> Path:
        return self.root_dir / "tickets.txt"

    @property
    def categories_path(self) -> Path:
        return self.root_dir / "categories.json"

    @property
    def details_path(self) -> Path:
        return self.root_dir / "details.json"

    @property
    def analysis_path(self) -> Path:
        return self.root_dir / "analysis.json"

    def write_commits(self, commits: list[CommitInfo]) -> None:
        atomic_write_text(self.commits_path, "\n".join(commit.to_line() for commit in commits))

    def read_commits(self) -> list[CommitInfo]:
        return parse_log(self.commits_path.read_text("utf-8"))

    def write_tickets(self, tickets: list[str]) -> None:
        atomic_write_text(self.tickets_path, "\n".join(tickets))

    def read_tickets(self) -> list[str]:
        lines = self.tickets_path.read_text("utf-8").splitlines()
        return [line.strip() for line in lines if line.strip()]

    def write_categories(self, tickets: list[CategorizedTicket]) -> None:
        write_json(self.categories_path, {"tickets": [dataclasses.asdict(t) for t in tickets]})

    def read_categories(self) -> list[CategorizedTicket]:
        payload = read_json(self.categories_path)
        return [CategorizedTicket(**item) for item in payload.get("tickets", [])]

    def write_details(self, details: dict[str, TicketDetails], errors: dict[str, str]) -> None:
        write_json(
            self.details_path,
            {
                "tickets": {key: dataclasses.asdict(value) for key, value in details.items()},
                "errors": errors,
            },
        )

    def read_details(self) -> dict[str, TicketDetails]:
        if not self.details_path.exists():
            return {}
        payload = read_json(self.details_path)
        return {key: TicketDetails(**value) for key, value in payload.get("tickets", {}).items()}

    def write_analysis(self, summaries: dict[str, str], errors: dict[str, str]) -> None:
        write_json(self.analysis_path, {"summaries": summaries, "errors": errors})

    def read_analysis(self) -> dict[str, str]:
        if not self.analysis_path.exists():
            return {}
        return dict(read_json(self.analysis_path).get("summaries", {}))

    def remove(self) -> bool:
        if not self.root_dir.exists():
            return False
        shutil.rmtree(self.root_dir)
        return True
