"""Version-control history reader backed by the ``git`` executable."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_FIELD_SEPARATOR = "|"
LOG_FORMAT = "%H|%an|%ai|%s"


class GitError(RuntimeError):
    """``git`` could not be run or exited with an error."""


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """One non-merge commit."""

    sha: str
    author: str
    date: str
    subject: str

    def to_line(self) -> str:
        return _FIELD_SEPARATOR.join((self.sha, self.author, self.date, self.subject))


def parse_log_line(line: str) -> CommitInfo | None:
    """Parse one ``%H|%an|%ai|%s`` line; the subject may itself contain ``|``."""

    parts = line.strip().split(_FIELD_SEPARATOR, 3)
    if len(parts) != 4 or not parts[0]:  # noqa: PLR2004
        return None
    sha, author, date, subject = parts
    return CommitInfo(sha=sha, author=author, date=date, subject=subject)


def parse_log(text: str) -> list[CommitInfo]:
    commits: list[CommitInfo] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        commit = parse_log_line(line)
        if commit is None:
            logger.debug("Skipping unparseable git log line: %r", line[:80])
            continue
        commits.append(commit)
    return commits


class GitLogReader:
    """Read commit ranges from a local repository."""

    def __init__(
        self,
        repo_path: Path,
        *,
        git_binary: str = "git",
        timeout_seconds: float = 60.0,
    ) -> None:
        self.repo_path = repo_path
        self._git_binary = git_binary
        self._timeout = timeout_seconds

    def commits_between(self, target: str, source: str) -> list[CommitInfo]:
        """Commits reachable from ``source`` but not from ``target``, newest first."""

        stdout = self._run(
            "log",
            f"{target}..{source}",
            f"--pretty=format:{LOG_FORMAT}",
            "--no-merges",
        )
        return parse_log(stdout)

    def _run(self, *args: str) -> str:
        if not self.repo_path.is_dir():
            raise GitError(f"Repository path does not exist: {self.repo_path}")
        command = [self._git_binary, *args]
        try:
            completed = subprocess.run(  # noqa: S603
                command,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as error:
            raise GitError(f"git executable not found: {self._git_binary}") from error
        except subprocess.TimeoutExpired as error:
            raise GitError(f"git {args[0]} timed out after {self._timeout:.0f}s") from error

        if completed.returncode != 0:
            message = completed.stderr.strip() or f"exit code {completed.returncode}"
            raise GitError(f"git {args[0]} failed: {message}")
        return completed.stdout
