"""Domain models for the release-notes job."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from dev_toolbox.clients.completion import CachedCompletionClient
from dev_toolbox.clients.git_log import GitLogReader
from dev_toolbox.clients.jira import JiraClient
from dev_toolbox.config import Settings
from dev_toolbox.release_notes.workdir import ReleaseNotesWorkdir


@dataclass(slots=True)
class ReleaseNotesConfig:
    """Effective options of one release-notes run."""

    version: str
    repo_path: Path
    work_dir: Path
    output_path: Path
    source_branch: str = "origin/test"
    target_branch: str = "origin/master"
    jira_project: str = "APP"
    fetch_ticket_details: bool = True
    use_ai: bool = True
    debug_limit: int | None = None


@dataclass(slots=True)
class ReleaseNotesContext:
    """Shared state handed to every stage."""

    config: ReleaseNotesConfig
    settings: Settings
    git: GitLogReader
    jira: JiraClient | None = None
    completion: CachedCompletionClient | None = None
    emit: Callable[[str], None] = field(default=lambda _msg: None)

    @property
    def workdir(self) -> ReleaseNotesWorkdir:
        return ReleaseNotesWorkdir(self.config.work_dir)
