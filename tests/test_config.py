from __future__ import annotations

from pathlib import Path

import allure
import pytest

from dev_toolbox.config import (
    CacheSettings,
    ExecutorSettings,
    JiraSettings,
    Settings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.cache.cache_dir == Path(".toolbox_cache")
    assert settings.cache.enabled is True
    assert settings.cache.jira_ttl_seconds == 3_600
    assert settings.cache.completion_ttl_seconds == 86_400
    assert settings.executor.max_concurrency == 3
    assert settings.executor.delay_between_batches_seconds == 0.1
    assert settings.release_notes.jira_project == "APP"
    assert not settings.jira.is_configured
    assert not settings.completion.is_configured


def test_from_env_reads_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DEV_TOOLBOX_CACHE_DIR", str(tmp_path / "c"))
    monkeypatch.setenv("DEV_TOOLBOX_CACHE_ENABLED", "off")
    monkeypatch.setenv("DEV_TOOLBOX_MAX_CONCURRENCY", "8")
    monkeypatch.setenv("JIRA_BASE_URL", " https://example.atlassian.net ")
    monkeypatch.setenv("JIRA_EMAIL", "dev@example.com")
    monkeypatch.setenv("JIRA_API_TOKEN", "token")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

    settings = Settings.from_env()

    assert settings.cache.cache_dir == tmp_path / "c"
    assert settings.cache.enabled is False
    assert settings.executor.max_concurrency == 8
    assert settings.jira.base_url == "https://example.atlassian.net"
    assert settings.jira.is_configured
    assert settings.completion.is_configured


def test_explicit_cache_dir_wins_over_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DEV_TOOLBOX_CACHE_DIR", str(tmp_path / "env"))

    settings = Settings.from_env(cache_dir=tmp_path / "explicit")

    assert settings.cache.cache_dir == tmp_path / "explicit"


def test_invalid_boolean_env_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("DEV_TOOLBOX_CACHE_ENABLED", "maybe")

    with pytest.raises(ValueError, match="DEV_TOOLBOX_CACHE_ENABLED"):
        Settings.from_env()


def test_validate_accepts_defaults() -> None:
    Settings().validate_for_release_notes()


def test_validate_rejects_zero_concurrency() -> None:
    settings = Settings(executor=ExecutorSettings(max_concurrency=0))

    with pytest.raises(ValueError, match="DEV_TOOLBOX_MAX_CONCURRENCY"):
        settings.validate_for_release_notes()


def test_validate_rejects_negative_delay() -> None:
    settings = Settings(executor=ExecutorSettings(delay_between_batches_seconds=-0.5))

    with pytest.raises(ValueError, match="DEV_TOOLBOX_DELAY_BETWEEN_BATCHES_SECONDS"):
        settings.validate_for_release_notes()


def test_validate_rejects_non_positive_ttl() -> None:
    settings = Settings(cache=CacheSettings(jira_ttl_seconds=0))

    with pytest.raises(ValueError, match="DEV_TOOLBOX_JIRA_CACHE_TTL_SECONDS"):
        settings.validate_for_release_notes()


@pytest.mark.parametrize("project", ["app", "1APP", "AP-P"])
def test_validate_rejects_invalid_project_key(project: str) -> None:
    with pytest.raises(ValueError, match="Invalid Jira project key"):
        Settings().validate_for_release_notes(project)


def test_validate_rejects_relative_jira_url() -> None:
    settings = Settings(jira=JiraSettings(base_url="example.atlassian.net"))

    with pytest.raises(ValueError, match="Invalid JIRA_BASE_URL"):
        settings.validate_for_release_notes()
