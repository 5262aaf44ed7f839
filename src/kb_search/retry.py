"""
Deadlines, cancellation and retry-with-backoff for network calls.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .errors import OperationCancelledError, ProviderUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """
    Caller-supplied time budget that can also be cancelled explicitly.

    A deadline created with ``parent`` never outlives it: it expires no later
    than the parent and is cancelled as soon as the parent is.
    """

    def __init__(self, timeout: float | None = None, *, parent: Deadline | None = None) -> None:
        expires_at = None if timeout is None else time.monotonic() + timeout
        if parent is not None and parent._expires_at is not None:
            expires_at = (
                parent._expires_at if expires_at is None else min(expires_at, parent._expires_at)
            )
        self._expires_at = expires_at
        self._cancelled = threading.Event()
        self._children: list[Deadline] = []
        self._lock = threading.Lock()
        self._parent = parent
        if parent is not None:
            parent._adopt(self)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cancel(self) -> None:
        """Cancel this deadline and every deadline derived from it."""
        with self._lock:
            self._cancelled.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel()
        if self._parent is not None:
            self._parent._release(self)

    def check(self, what: str = "operation") -> None:
        if self.cancelled:
            raise OperationCancelledError(f"{what} cancelled")
        if self.expired:
            raise OperationCancelledError(f"{what} exceeded its deadline")

    def clamp(self, timeout: float) -> float:
        """Per-call timeout that never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return max(min(timeout, remaining), 0.001)

    def sleep(self, seconds: float) -> None:
        """Wait up to ``seconds``; raise as soon as the deadline is cancelled or expires."""
        remaining = self.remaining()
        wait_for = seconds if remaining is None else min(seconds, remaining)
        if self._cancelled.wait(wait_for):
            raise OperationCancelledError("operation cancelled while waiting")
        if remaining is not None and wait_for < seconds:
            raise OperationCancelledError("operation exceeded its deadline while waiting")

    def _adopt(self, child: Deadline) -> None:
        with self._lock:
            if not self._cancelled.is_set():
                self._children.append(child)
                return
        child.cancel()

    def _release(self, child: Deadline) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)


def backoff_delay(
    attempt: int,
    *,
    base_delay: float,
    max_jitter: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retrying after failed ``attempt`` (1-based)."""
    return base_delay * (2 ** (attempt - 1)) + rng() * max_jitter


class _BackoffWait(wait_base):
    def __init__(self, base_delay: float, max_jitter: float, rng: Callable[[], float]) -> None:
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return backoff_delay(
            retry_state.attempt_number,
            base_delay=self.base_delay,
            max_jitter=self.max_jitter,
            rng=self.rng,
        )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderUnavailableError) and exc.retryable


def call_with_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_jitter: float = 0.25,
    deadline: Deadline | None = None,
    sleep: Callable[[float], None] | None = None,
    rng: Callable[[], float] = random.random,
    description: str = "remote call",
) -> T:
    """
    Run ``fn`` up to ``max_attempts`` times with exponential backoff and jitter.

    Only retryable :class:`ProviderUnavailableError` failures are retried; any
    other exception, or a non-retryable provider error (4xx other than 429),
    propagates immediately. The last error propagates once attempts run out.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be > 0")
    if sleep is None:
        sleep = deadline.sleep if deadline is not None else time.sleep

    def _attempt() -> T:
        if deadline is not None:
            deadline.check(description)
        return fn()

    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "%s failed (attempt %d/%d): %s; retrying in %.2fs",
            description,
            retry_state.attempt_number,
            max_attempts,
            exc,
            delay,
        )

    retrying = Retrying(
        retry=retry_if_exception(_is_retryable),
        wait=_BackoffWait(base_delay, max_jitter, rng),
        stop=stop_after_attempt(max_attempts),
        sleep=sleep,
        reraise=True,
        before_sleep=_before_sleep,
    )
    return retrying(_attempt)
