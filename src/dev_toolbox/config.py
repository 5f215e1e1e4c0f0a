"""Runtime configuration for toolbox jobs, cache and remote clients."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

_PROJECT_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


@dataclass(slots=True)
class CacheSettings:
    """On-disk cache settings."""

    cache_dir: Path = Path(".toolbox_cache")
    enabled: bool = True
    jira_ttl_seconds: int = 3_600
    completion_ttl_seconds: int = 86_400


@dataclass(slots=True)
class ExecutorSettings:
    """Concurrency limits for batches of remote calls."""

    max_concurrency: int = 3
    delay_between_batches_seconds: float = 0.1


@dataclass(slots=True)
class JiraSettings:
    """Ticket-tracker credentials."""

    base_url: str = ""
    email: str = ""
    api_token: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)


@dataclass(slots=True)
class CompletionSettings:
    """AI completion service settings."""

    api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 500
    temperature: float = 0.3

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass(slots=True)
class ReleaseNotesSettings:
    """Defaults for the release-notes job."""

    work_dir: Path = Path(".release_notes_work")
    jira_project: str = "APP"
    source_branch: str = "origin/test"
    target_branch: str = "origin/master"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    cache: CacheSettings = field(default_factory=CacheSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    jira: JiraSettings = field(default_factory=JiraSettings)
    completion: CompletionSettings = field(default_factory=CompletionSettings)
    release_notes: ReleaseNotesSettings = field(default_factory=ReleaseNotesSettings)

    @classmethod
    def from_env(cls, cache_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        return cls(
            cache=CacheSettings(
                cache_dir=cache_dir or Path(os.getenv("DEV_TOOLBOX_CACHE_DIR", ".toolbox_cache")),
                enabled=_env_bool("DEV_TOOLBOX_CACHE_ENABLED", default=True),
                jira_ttl_seconds=int(os.getenv("DEV_TOOLBOX_JIRA_CACHE_TTL_SECONDS", "3600")),
                completion_ttl_seconds=int(
                    os.getenv("DEV_TOOLBOX_COMPLETION_CACHE_TTL_SECONDS", "86400"),
                ),
            ),
            executor=ExecutorSettings(
                max_concurrency=int(os.getenv("DEV_TOOLBOX_MAX_CONCURRENCY", "3")),
                delay_between_batches_seconds=float(
                    os.getenv("DEV_TOOLBOX_DELAY_BETWEEN_BATCHES_SECONDS", "0.1"),
                ),
            ),
            jira=JiraSettings(
                base_url=os.getenv("JIRA_BASE_URL", "").strip(),
                email=os.getenv("JIRA_EMAIL", "").strip(),
                api_token=os.getenv("JIRA_API_TOKEN", "").strip(),
            ),
            completion=CompletionSettings(
                api_key=os.getenv("ANTHROPIC_API_KEY", "").strip(),
                model=os.getenv("DEV_TOOLBOX_AI_MODEL", "claude-sonnet-4-20250514"),
                max_tokens=int(os.getenv("DEV_TOOLBOX_AI_MAX_TOKENS", "500")),
                temperature=float(os.getenv("DEV_TOOLBOX_AI_TEMPERATURE", "0.3")),
            ),
            release_notes=ReleaseNotesSettings(
                work_dir=Path(
                    os.getenv("DEV_TOOLBOX_RELEASE_NOTES_WORK_DIR", ".release_notes_work"),
                ),
                jira_project=os.getenv("DEV_TOOLBOX_JIRA_PROJECT", "APP"),
                source_branch=os.getenv("DEV_TOOLBOX_SOURCE_BRANCH", "origin/test"),
                target_branch=os.getenv("DEV_TOOLBOX_TARGET_BRANCH", "origin/master"),
            ),
        )

    def validate_for_release_notes(self, jira_project: str | None = None) -> None:
        """Raise configuration error before any remote call is attempted."""

        if self.executor.max_concurrency < 1:
            raise ValueError("DEV_TOOLBOX_MAX_CONCURRENCY must be >= 1.")
        if self.executor.delay_between_batches_seconds < 0:
            raise ValueError("DEV_TOOLBOX_DELAY_BETWEEN_BATCHES_SECONDS must be >= 0.")
        if self.cache.jira_ttl_seconds <= 0:
            raise ValueError("DEV_TOOLBOX_JIRA_CACHE_TTL_SECONDS must be > 0.")
        if self.cache.completion_ttl_seconds <= 0:
            raise ValueError("DEV_TOOLBOX_COMPLETION_CACHE_TTL_SECONDS must be > 0.")
        if self.completion.max_tokens <= 0:
            raise ValueError("DEV_TOOLBOX_AI_MAX_TOKENS must be > 0.")

        project = jira_project or self.release_notes.jira_project
        if not _PROJECT_KEY_RE.match(project):
            raise ValueError(
                f"Invalid Jira project key: {project!r}. Expected uppercase letters, e.g. APP.",
            )
        if self.jira.base_url and not self.jira.base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid JIRA_BASE_URL: {self.jira.base_url!r}. "
                "Expected an absolute URL with http:// or https:// scheme.",
            )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
