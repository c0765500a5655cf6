"""Attempt classification and exponential backoff for AI calls."""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..errors import AuthFailure, QueryTimeout, TransientBackendError


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    AUTH = "auth"


@dataclass(frozen=True, slots=True)
class AttemptResult:
    """Tagged result of a single backend attempt."""

    outcome: AttemptOutcome
    text: Optional[str] = None
    error: Optional[BaseException] = None
    retry_after: Optional[float] = None

    @classmethod
    def success(cls, text: str) -> "AttemptResult":
        return cls(outcome=AttemptOutcome.SUCCESS, text=text)

    @classmethod
    def from_error(cls, error: BaseException) -> "AttemptResult":
        if isinstance(error, AuthFailure):
            return cls(outcome=AttemptOutcome.AUTH, error=error)
        if isinstance(error, TransientBackendError):
            return cls(outcome=AttemptOutcome.TRANSIENT, error=error, retry_after=error.retry_after)
        if isinstance(error, (asyncio.TimeoutError, QueryTimeout)):
            return cls(outcome=AttemptOutcome.TRANSIENT, error=error)
        return cls(outcome=AttemptOutcome.PERMANENT, error=error)


@dataclass(slots=True)
class RetryPolicy:
    """Exponential backoff with proportional jitter up to ``max_attempts``."""

    max_attempts: int = 4
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    jitter: float = 0.5
    rng: random.Random = field(default_factory=random.Random)

    def should_retry(self, result: AttemptResult, attempt: int) -> bool:
        return result.outcome is AttemptOutcome.TRANSIENT and attempt < self.max_attempts

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""

        ceiling = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        spread = ceiling * self.jitter
        delay = ceiling - spread + self.rng.uniform(0.0, spread)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.backoff_max))
        return delay
