"""Tests for retry-with-backoff and deadlines."""

from __future__ import annotations

import logging
import threading
import time

import pytest

from kb_search.errors import OperationCancelledError, ProviderUnavailableError
from kb_search.retry import Deadline, backoff_delay, call_with_retry


class _Flaky:
    def __init__(self, failures: int, *, status_code: int | None = 503) -> None:
        self.failures = failures
        self.status_code = status_code
        self.attempts = 0

    def __call__(self) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ProviderUnavailableError("unavailable", status_code=self.status_code)
        return "ok"


def test_call_that_fails_twice_then_succeeds_takes_three_attempts() -> None:
    flaky = _Flaky(failures=2)
    sleeps: list[float] = []

    result = call_with_retry(flaky, max_attempts=3, sleep=sleeps.append, rng=lambda: 0.0)

    assert result == "ok"
    assert flaky.attempts == 3
    assert sleeps == [0.5, 1.0]


def test_call_that_always_fails_makes_max_attempts_then_raises() -> None:
    flaky = _Flaky(failures=100, status_code=None)
    sleeps: list[float] = []

    with pytest.raises(ProviderUnavailableError):
        call_with_retry(flaky, max_attempts=4, sleep=sleeps.append, rng=lambda: 0.0)

    assert flaky.attempts == 4
    assert len(sleeps) == 3


def test_non_retryable_errors_raise_immediately() -> None:
    flaky = _Flaky(failures=1, status_code=400)

    with pytest.raises(ProviderUnavailableError):
        call_with_retry(flaky, max_attempts=3, sleep=lambda _: None)

    assert flaky.attempts == 1


def test_rate_limits_are_retried() -> None:
    flaky = _Flaky(failures=1, status_code=429)

    assert call_with_retry(flaky, sleep=lambda _: None) == "ok"
    assert flaky.attempts == 2


def test_backoff_delay_grows_exponentially_with_jitter() -> None:
    assert backoff_delay(1, base_delay=0.5, max_jitter=0.25, rng=lambda: 0.0) == 0.5
    assert backoff_delay(3, base_delay=0.5, max_jitter=0.25, rng=lambda: 0.0) == 2.0
    assert backoff_delay(2, base_delay=0.5, max_jitter=0.25, rng=lambda: 1.0) == 1.25


def test_cancelled_deadline_stops_retries() -> None:
    deadline = Deadline()
    deadline.cancel()
    flaky = _Flaky(failures=0)

    with pytest.raises(OperationCancelledError):
        call_with_retry(flaky, deadline=deadline)

    assert flaky.attempts == 0


def test_deadline_sleep_is_interrupted_by_cancel() -> None:
    deadline = Deadline()
    threading.Timer(0.05, deadline.cancel).start()
    started = time.monotonic()

    with pytest.raises(OperationCancelledError):
        deadline.sleep(5)

    assert time.monotonic() - started < 2


def test_deadline_clamps_timeouts_and_expires() -> None:
    deadline = Deadline(0.05)

    assert deadline.clamp(30) <= 0.05
    time.sleep(0.06)
    assert deadline.expired
    with pytest.raises(OperationCancelledError):
        deadline.check("query")


def test_unbounded_deadline_never_expires() -> None:
    deadline = Deadline()

    assert deadline.remaining() is None
    assert deadline.clamp(30) == 30
    assert not deadline.expired


def test_child_deadline_is_cancelled_with_its_parent() -> None:
    parent = Deadline()
    child = Deadline(30, parent=parent)
    threading.Timer(0.05, parent.cancel).start()
    started = time.monotonic()

    with pytest.raises(OperationCancelledError):
        child.sleep(5)

    assert time.monotonic() - started < 2
    assert child.cancelled


def test_child_deadline_never_outlives_its_parent() -> None:
    parent = Deadline(0.05)
    child = Deadline(30, parent=parent)

    assert child.remaining() <= 0.05
    assert Deadline(parent=Deadline()).remaining() is None


def test_child_of_cancelled_parent_starts_cancelled() -> None:
    parent = Deadline()
    parent.cancel()

    assert Deadline(10, parent=parent).cancelled


def test_cancelling_child_leaves_parent_running() -> None:
    parent = Deadline()
    child = Deadline(parent=parent)

    child.cancel()

    assert not parent.cancelled
    parent.check()


def test_retries_are_logged(caplog) -> None:
    flaky = _Flaky(failures=1)

    with caplog.at_level(logging.WARNING, logger="kb_search.retry"):
        call_with_retry(flaky, sleep=lambda _: None, rng=lambda: 0.0, description="upsert")

    assert "upsert failed (attempt 1/3)" in caplog.text
    assert "retrying in 0.50s" in caplog.text
