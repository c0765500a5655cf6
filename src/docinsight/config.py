"""Environment driven settings for the document insight service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

RUN_MODES = ("development", "production")
AI_AUTH_MODES = ("api_key", "google")


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = _env_str(name, default).lower()
    if value not in choices:
        raise ConfigurationError(
            f"{name} must be one of {'|'.join(choices)}, got {value!r}"
        )
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration; see :meth:`from_env` for the variable names."""

    run_mode: str = "development"
    log_level: str = "INFO"
    log_dir: str = "logs"

    chunk_max_units: int = 200
    chunk_unit: str = "word"
    chunk_boundary: str = "sentence"

    prompt_max_chunks: int = 6
    prompt_max_context_words: int = 1500
    prompt_max_history_turns: int = 10
    prompt_max_history_words: int = 800
    prompt_chunk_policy: str = "keyword"

    ai_backend: str = "mock"
    ai_auth: str = "api_key"
    ai_max_attempts: int = 4
    ai_backoff_base: float = 0.5
    ai_backoff_max: float = 8.0
    ai_attempt_timeout: float = 30.0
    ai_max_concurrency: int = 4

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-pro"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"

    database_url: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.run_mode == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            run_mode=_env_choice("RUN_MODE", "development", RUN_MODES),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            log_dir=_env_str("LOG_DIR", "logs"),
            chunk_max_units=_env_int("CHUNK_MAX_UNITS", 200),
            chunk_unit=_env_choice("CHUNK_UNIT", "word", ("word", "grapheme")),
            chunk_boundary=_env_choice(
                "CHUNK_BOUNDARY", "sentence", ("sentence", "word", "paragraph")
            ),
            prompt_max_chunks=_env_int("PROMPT_MAX_CHUNKS", 6),
            prompt_max_context_words=_env_int("PROMPT_MAX_CONTEXT_WORDS", 1500),
            prompt_max_history_turns=_env_int("PROMPT_MAX_HISTORY_TURNS", 10),
            prompt_max_history_words=_env_int("PROMPT_MAX_HISTORY_WORDS", 800),
            prompt_chunk_policy=_env_choice("PROMPT_CHUNK_POLICY", "keyword", ("keyword", "leading")),
            ai_backend=_env_choice("AI_BACKEND", "mock", ("mock", "gemini")),
            ai_auth=_env_choice("AI_AUTH", "api_key", AI_AUTH_MODES),
            ai_max_attempts=_env_int("AI_MAX_ATTEMPTS", 4),
            ai_backoff_base=_env_float("AI_BACKOFF_BASE", 0.5),
            ai_backoff_max=_env_float("AI_BACKOFF_MAX", 8.0),
            ai_attempt_timeout=_env_float("AI_ATTEMPT_TIMEOUT", 30.0),
            ai_max_concurrency=_env_int("AI_MAX_CONCURRENCY", 4),
            gemini_api_key=_env_optional("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-pro"),
            gemini_base_url=_env_str(
                "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
            ),
            database_url=_env_optional("DATABASE_URL"),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.chunk_max_units < 1:
            raise ConfigurationError("CHUNK_MAX_UNITS must be a positive integer")
        if self.ai_max_attempts < 1:
            raise ConfigurationError("AI_MAX_ATTEMPTS must be at least 1")
        if self.ai_max_concurrency < 1:
            raise ConfigurationError("AI_MAX_CONCURRENCY must be at least 1")
        if self.ai_attempt_timeout <= 0:
            raise ConfigurationError("AI_ATTEMPT_TIMEOUT must be positive")
        if self.ai_backend == "gemini" and self.ai_auth == "api_key" and not self.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required when AI_BACKEND=gemini and AI_AUTH=api_key")


__all__ = ["AI_AUTH_MODES", "RUN_MODES", "Settings"]
