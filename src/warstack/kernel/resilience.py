"""
Retry logic with exponential backoff for unreliable calls.

Two consumers live here:
- Remote (AI) calls: async, classified errors, deterministic jitter drawn
  from an injected source so that a replay waits exactly as long as the
  original run did.
- SQLite lock contention: a plain synchronous decorator.

Both are built on tenacity; this module only supplies the policies.

Fun fact: Exponential backoff dates back to ALOHAnet (1971), where radio
stations that collided on the same frequency doubled their wait each time.
"""

import asyncio
import math
import sqlite3
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar, cast

from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from warstack.kernel.config import ResiliencePolicy
from warstack.kernel.errors import AIError, AIErrorCategory
from warstack.kernel.logging import get_logger
from warstack.kernel.metrics import remote_call_failures_total, remote_call_retries_total

logger = get_logger(__name__)

T = TypeVar("T")

JitterSource = Callable[[], float]
OnRetry = Callable[["RetryMeta", AIError], None]
OnFail = Callable[[AIError], None]
Sleep = Callable[[float], Awaitable[Any]]


class RetryMeta(BaseModel):
    """Timing of one scheduled retry"""

    model_config = ConfigDict(frozen=True)

    attempt: int  # the attempt that just failed (1-based)
    backoff_ms: int
    jitter_ms: int
    total_delay_ms: int


# ============================================================================
# Classification
# ============================================================================


def _status_code(err: BaseException) -> int | None:
    for candidate in (
        getattr(err, "status", None),
        getattr(err, "status_code", None),
        getattr(getattr(err, "response", None), "status_code", None),
        getattr(getattr(err, "response", None), "status", None),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def _category_hint(value: Any) -> AIErrorCategory | None:
    if value is None:
        return None
    try:
        return AIErrorCategory(value)
    except ValueError:
        return None


def classify_error(err: BaseException) -> AIError:
    """
    Map an arbitrary exception onto an AIError

    Precedence: an AIError passes through; then a numeric HTTP status
    (429 rate limit, 5xx transient, other 4xx permanent); then the caller's
    own category / retriable hints; then timeouts and connection errors;
    anything else is UNKNOWN and retriable.
    """
    if isinstance(err, AIError):
        return err

    message = str(err) or type(err).__name__
    status = _status_code(err)

    if status is not None:
        if status == 429:
            return AIError(message, category=AIErrorCategory.API_THRESHOLD, status_code=status)
        if status >= 500:
            return AIError(message, category=AIErrorCategory.NETWORK_JITTER, status_code=status)
        if 400 <= status < 500:
            return AIError(
                message,
                category=AIErrorCategory.LOGIC_BREACH,
                status_code=status,
                retriable=False,
            )

    category = _category_hint(getattr(err, "category", None))
    retriable_hint = getattr(err, "retriable", None)
    if category is not None or isinstance(retriable_hint, bool):
        category = category or AIErrorCategory.UNKNOWN
        retriable = (
            retriable_hint
            if isinstance(retriable_hint, bool)
            else category is not AIErrorCategory.LOGIC_BREACH
        )
        return AIError(message, category=category, status_code=status, retriable=retriable)

    if isinstance(err, (TimeoutError, ConnectionError)):
        return AIError(message, category=AIErrorCategory.NETWORK_JITTER, status_code=status)

    return AIError(message, category=AIErrorCategory.UNKNOWN, status_code=status)


def _is_retriable(err: BaseException) -> bool:
    return isinstance(err, AIError) and err.retriable


# ============================================================================
# Backoff
# ============================================================================


def compute_backoff(policy: ResiliencePolicy, attempt: int, jitter_draw: float) -> RetryMeta:
    """
    Delay before the retry that follows a failed attempt

    Args:
        policy: Backoff parameters
        attempt: 1-based number of the attempt that failed
        jitter_draw: A value in [0, 1)

    Returns:
        RetryMeta with backoff, jitter and their sum in milliseconds
    """
    backoff = min(policy.max_delay_ms, policy.base_delay_ms * 2 ** (attempt - 1))
    jitter = math.floor(backoff * policy.jitter_ratio * jitter_draw)
    return RetryMeta(
        attempt=attempt,
        backoff_ms=backoff,
        jitter_ms=jitter,
        total_delay_ms=backoff + jitter,
    )


async def with_exponential_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: ResiliencePolicy,
    jitter01: JitterSource,
    on_retry: OnRetry | None = None,
    on_fail: OnFail | None = None,
    sleep: Sleep | None = None,
) -> T:
    """
    Run an async operation, retrying retriable failures with backoff

    Every failure is classified first. Non-retriable errors and the failure
    of the last attempt call on_fail and are re-raised as AIError (the
    original exception is chained as __cause__). Jitter is only drawn when
    a retry is actually scheduled.

    Args:
        fn: Zero-argument coroutine function to call
        policy: Attempts and delays
        jitter01: Source of jitter draws in [0, 1)
        on_retry: Called with (meta, error) before each sleep
        on_fail: Called once with the final error
        sleep: Awaitable sleep in seconds (defaults to asyncio.sleep)

    Returns:
        Whatever fn returns on its first successful attempt

    Raises:
        AIError: The classified final failure
    """
    scheduled: list[RetryMeta] = []
    calls = 0

    def wait(retry_state: RetryCallState) -> float:
        # Newer tenacity asks for the wait before checking stop
        if retry_state.attempt_number >= policy.max_attempts:
            return 0.0
        meta = compute_backoff(policy, retry_state.attempt_number, jitter01())
        scheduled.append(meta)
        return meta.total_delay_ms / 1000.0

    def before_sleep(retry_state: RetryCallState) -> None:
        # Only retriable AIErrors reach a sleep
        error = cast(AIError, retry_state.outcome.exception() if retry_state.outcome else None)
        meta = scheduled[-1]
        remote_call_retries_total.labels(category=error.category.value).inc()
        logger.warning(
            "Remote call failed, retrying",
            attempt=meta.attempt,
            max_attempts=policy.max_attempts,
            delay_ms=meta.total_delay_ms,
            category=error.category.value,
            error=str(error),
        )
        if on_retry is not None:
            on_retry(meta, error)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception(_is_retriable),
        before_sleep=before_sleep,
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )

    async def attempt_once() -> T:
        nonlocal calls
        calls += 1
        try:
            return await fn()
        except AIError:
            raise
        except Exception as exc:
            raise classify_error(exc) from exc

    try:
        return await retrying(attempt_once)
    except AIError as error:
        remote_call_failures_total.labels(category=error.category.value).inc()
        logger.error(
            "Remote call failed permanently",
            attempts=calls,
            category=error.category.value,
            status_code=error.status_code,
            retriable=error.retriable,
            error=str(error),
        )
        if on_fail is not None:
            on_fail(error)
        raise


class ResilienceWrapper:
    """
    Policy, jitter source and callbacks bundled for repeated use

    Example:
        wrapper = ResilienceWrapper(ResiliencePolicy(), jitter01=rng.next)
        reply = await wrapper.run(lambda: client.complete(prompt))
    """

    def __init__(
        self,
        policy: ResiliencePolicy,
        *,
        jitter01: JitterSource,
        on_retry: OnRetry | None = None,
        on_fail: OnFail | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.policy = policy
        self.jitter01 = jitter01
        self.on_retry = on_retry
        self.on_fail = on_fail
        self.sleep = sleep

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        on_retry: OnRetry | None = None,
        on_fail: OnFail | None = None,
    ) -> T:
        """Per-call callbacks take precedence over the wrapper's own"""
        return await with_exponential_backoff(
            fn,
            policy=self.policy,
            jitter01=self.jitter01,
            on_retry=on_retry or self.on_retry,
            on_fail=on_fail or self.on_fail,
            sleep=self.sleep,
        )


# ============================================================================
# SQLite Lock Retry
# ============================================================================


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 100,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait_ms: Minimum wait time in milliseconds (default: 100)
        max_wait_ms: Maximum wait time in milliseconds (default: 1000)

    Returns:
        Decorated function that retries on sqlite3.OperationalError
    """
    return retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )
