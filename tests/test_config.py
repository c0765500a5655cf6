from __future__ import annotations

import pytest

from docinsight.config import Settings
from docinsight.errors import ConfigurationError


def test_defaults_without_environment(monkeypatch) -> None:
    for name in ("RUN_MODE", "CHUNK_MAX_UNITS", "AI_BACKEND", "AI_AUTH", "DATABASE_URL", "GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.run_mode == "development"
    assert not settings.is_production
    assert settings.chunk_max_units == 200
    assert settings.ai_backend == "mock"
    assert settings.ai_auth == "api_key"
    assert settings.database_url is None


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("RUN_MODE", "Production")
    monkeypatch.setenv("CHUNK_MAX_UNITS", "64")
    monkeypatch.setenv("CHUNK_UNIT", "grapheme")
    monkeypatch.setenv("AI_BACKOFF_BASE", "0.25")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///insight.db")

    settings = Settings.from_env()

    assert settings.is_production
    assert settings.chunk_max_units == 64
    assert settings.chunk_unit == "grapheme"
    assert settings.ai_backoff_base == 0.25
    assert settings.database_url == "sqlite:///insight.db"


def test_malformed_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("AI_MAX_ATTEMPTS", "many")
    monkeypatch.setenv("AI_ATTEMPT_TIMEOUT", "soon")

    settings = Settings.from_env()

    assert settings.ai_max_attempts == 4
    assert settings.ai_attempt_timeout == 30.0


@pytest.mark.parametrize(
    ("name", "value"),
    [("RUN_MODE", "staging"), ("CHUNK_BOUNDARY", "chapter"), ("AI_BACKEND", "oracle"), ("CHUNK_MAX_UNITS", "0")],
)
def test_invalid_values_raise(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigurationError):
        Settings.from_env()


def test_gemini_requires_api_key(monkeypatch) -> None:
    monkeypatch.setenv("AI_BACKEND", "gemini")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        Settings.from_env()

    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    assert Settings.from_env().gemini_api_key == "abc"


def test_google_auth_does_not_need_an_api_key(monkeypatch) -> None:
    monkeypatch.setenv("AI_BACKEND", "gemini")
    monkeypatch.setenv("AI_AUTH", "google")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    settings = Settings.from_env()

    assert settings.ai_auth == "google"
    assert settings.gemini_api_key is None


def test_unknown_auth_mode_raises(monkeypatch) -> None:
    monkeypatch.setenv("AI_AUTH", "kerberos")
    with pytest.raises(ConfigurationError):
        Settings.from_env()
