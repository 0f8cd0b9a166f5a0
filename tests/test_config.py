from __future__ import annotations

from pathlib import Path

import allure
import pytest

from bulkgen.config import Settings
from bulkgen.providers.routes import (
    CLAUDE_OPUS,
    GEMINI_PRO,
    OPENAI_GPT4O,
    RouteCategory,
    RouteEntry,
    RoutingDefaults,
    parse_route_chain,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_defaults_match_documented_thresholds(tmp_path: Path) -> None:
    settings = Settings.from_env(db_path=tmp_path / "x.db")
    settings.validate()

    assert settings.db_path == tmp_path / "x.db"
    assert settings.admission.task_rate_limit_per_minute == 10
    assert settings.admission.route_rate_limit_per_minute == 100
    assert settings.admission.max_pending_jobs == 5
    assert settings.admission.quota_exceeded_threshold == 100
    assert settings.admission.low_quota_warning_threshold == 1_000
    assert settings.admission.rate_limit_strategy == "memory"
    assert settings.jobs.max_attempts == 3
    assert settings.jobs.timeout_seconds == 540.0
    assert settings.jobs.max_bulk_items == 50
    assert settings.providers.max_retries == 3
    assert settings.providers.request_timeout_seconds == 30.0
    assert settings.providers.anthropic_api_key is None


def test_env_overrides_are_applied(monkeypatch) -> None:
    monkeypatch.setenv("BULKGEN_DB_PATH", "/tmp/custom.db")
    monkeypatch.setenv("BULKGEN_TASK_RATE_LIMIT_PER_MINUTE", "3")
    monkeypatch.setenv("BULKGEN_AI_RATE_LIMIT_PER_MINUTE", "7")
    monkeypatch.setenv("BULKGEN_RATE_LIMIT_STRATEGY", "SQLite")
    monkeypatch.setenv("BULKGEN_JOB_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("GEMINI_API_KEY", "  g-key  ")

    settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/custom.db")
    assert settings.admission.task_rate_limit_per_minute == 3
    assert settings.admission.route_rate_limit_per_minute == 7
    assert settings.admission.rate_limit_strategy == "sqlite"
    assert settings.jobs.max_attempts == 5
    assert settings.providers.api_key_for("gemini") == "g-key"
    assert settings.providers.api_key_for("openai") is None


def test_validate_rejects_unknown_rate_limit_strategy(monkeypatch) -> None:
    monkeypatch.setenv("BULKGEN_RATE_LIMIT_STRATEGY", "redis")
    with pytest.raises(ValueError, match="BULKGEN_RATE_LIMIT_STRATEGY"):
        Settings.from_env().validate()


def test_validate_rejects_non_positive_attempts(monkeypatch) -> None:
    monkeypatch.setenv("BULKGEN_JOB_MAX_ATTEMPTS", "0")
    with pytest.raises(ValueError, match="BULKGEN_JOB_MAX_ATTEMPTS"):
        Settings.from_env().validate()


def test_default_chain_is_claude_gemini_openai_for_every_category() -> None:
    routing = RoutingDefaults.from_settings(Settings.from_env().providers)
    expected = (
        RouteEntry(provider="claude", model=CLAUDE_OPUS),
        RouteEntry(provider="gemini", model=GEMINI_PRO),
        RouteEntry(provider="openai", model=OPENAI_GPT4O),
    )
    for category in RouteCategory:
        assert routing.chain_for(category) == expected


def test_route_override_replaces_one_category(monkeypatch) -> None:
    monkeypatch.setenv("BULKGEN_ROUTE_DESIGN_GEN", "gemini:gemini-2.5-pro, openai:gpt-4o")
    routing = RoutingDefaults.from_settings(Settings.from_env().providers)

    assert routing.chain_for(RouteCategory.DESIGN_GEN) == (
        RouteEntry(provider="gemini", model="gemini-2.5-pro"),
        RouteEntry(provider="openai", model="gpt-4o"),
    )
    assert routing.chain_for(RouteCategory.TEXT_GEN)[0].provider == "claude"


def test_route_override_rejects_unknown_category(monkeypatch) -> None:
    monkeypatch.setenv("BULKGEN_ROUTE_VIDEO_GEN", "claude:x")
    with pytest.raises(ValueError, match="Unsupported route category"):
        RoutingDefaults.from_settings(Settings.from_env().providers)


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("claude", "Expected format"),
        ("mistral:large", "Unsupported provider"),
        ("claude: ", "Empty model id"),
        (" , ", "Route chain is empty"),
    ],
)
def test_parse_route_chain_errors(raw: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_route_chain(raw)
