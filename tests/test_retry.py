from __future__ import annotations

import asyncio
import random

from docinsight.ai.retry import AttemptOutcome, AttemptResult, RetryPolicy
from docinsight.errors import AuthFailure, PermanentBackendError, TransientBackendError


def test_errors_are_classified() -> None:
    assert AttemptResult.from_error(TransientBackendError("503")).outcome is AttemptOutcome.TRANSIENT
    assert AttemptResult.from_error(asyncio.TimeoutError()).outcome is AttemptOutcome.TRANSIENT
    assert AttemptResult.from_error(AuthFailure("401")).outcome is AttemptOutcome.AUTH
    assert AttemptResult.from_error(PermanentBackendError("400")).outcome is AttemptOutcome.PERMANENT
    assert AttemptResult.from_error(ValueError("boom")).outcome is AttemptOutcome.PERMANENT


def test_retry_after_is_carried() -> None:
    result = AttemptResult.from_error(TransientBackendError("429", retry_after=3.0))
    assert result.retry_after == 3.0


def test_only_transient_failures_below_ceiling_are_retried() -> None:
    policy = RetryPolicy(max_attempts=3)
    transient = AttemptResult.from_error(TransientBackendError("503"))

    assert policy.should_retry(transient, 1)
    assert policy.should_retry(transient, 2)
    assert not policy.should_retry(transient, 3)
    assert not policy.should_retry(AttemptResult.from_error(PermanentBackendError("400")), 1)


def test_backoff_grows_exponentially_within_jitter_bounds() -> None:
    policy = RetryPolicy(backoff_base=1.0, backoff_max=5.0, jitter=0.5, rng=random.Random(7))

    for attempt, ceiling in [(1, 1.0), (2, 2.0), (3, 4.0), (4, 5.0), (8, 5.0)]:
        delay = policy.delay(attempt)
        assert ceiling / 2 <= delay <= ceiling


def test_retry_after_raises_the_delay_up_to_the_cap() -> None:
    policy = RetryPolicy(backoff_base=0.1, backoff_max=4.0, jitter=0.0)

    assert policy.delay(1, retry_after=2.0) == 2.0
    assert policy.delay(1, retry_after=60.0) == 4.0
