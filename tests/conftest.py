"""Shared test fixtures."""

from __future__ import annotations

import pytest

_ENV_VARS = (
    "DEV_TOOLBOX_CACHE_DIR",
    "DEV_TOOLBOX_CACHE_ENABLED",
    "DEV_TOOLBOX_JIRA_CACHE_TTL_SECONDS",
    "DEV_TOOLBOX_COMPLETION_CACHE_TTL_SECONDS",
    "DEV_TOOLBOX_MAX_CONCURRENCY",
    "DEV_TOOLBOX_DELAY_BETWEEN_BATCHES_SECONDS",
    "DEV_TOOLBOX_AI_MODEL",
    "DEV_TOOLBOX_AI_MAX_TOKENS",
    "DEV_TOOLBOX_AI_TEMPERATURE",
    "DEV_TOOLBOX_RELEASE_NOTES_WORK_DIR",
    "DEV_TOOLBOX_JIRA_PROJECT",
    "DEV_TOOLBOX_SOURCE_BRANCH",
    "DEV_TOOLBOX_TARGET_BRANCH",
    "JIRA_BASE_URL",
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "ANTHROPIC_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate every test from the developer's real credentials and settings."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
