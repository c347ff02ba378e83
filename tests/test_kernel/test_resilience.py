"""
Tests for error classification and exponential backoff
"""

import asyncio
import sqlite3

import pytest

from tests.helpers import Flaky, HttpError, RecordingSleep
from warstack.kernel.config import ResiliencePolicy
from warstack.kernel.errors import AIError, AIErrorCategory, RemoteCallError
from warstack.kernel.resilience import (
    ResilienceWrapper,
    RetryMeta,
    classify_error,
    compute_backoff,
    retry_on_sqlite_lock,
    with_exponential_backoff,
)
from warstack.kernel.rng import DeterministicRNG


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class ResponseError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__("bad response")
        self.response = FakeResponse(status_code)


def zero_jitter() -> float:
    return 0.0


class TestClassifyError:
    @pytest.mark.parametrize(
        "err, category, retriable",
        [
            (HttpError(429), AIErrorCategory.API_THRESHOLD, True),
            (HttpError(500), AIErrorCategory.NETWORK_JITTER, True),
            (HttpError(503), AIErrorCategory.NETWORK_JITTER, True),
            (HttpError(400), AIErrorCategory.LOGIC_BREACH, False),
            (HttpError(404), AIErrorCategory.LOGIC_BREACH, False),
            (ResponseError(502), AIErrorCategory.NETWORK_JITTER, True),
            (TimeoutError("slow"), AIErrorCategory.NETWORK_JITTER, True),
            (ConnectionError("reset"), AIErrorCategory.NETWORK_JITTER, True),
            (ValueError("weird"), AIErrorCategory.UNKNOWN, True),
        ],
    )
    def test_categories(
        self, err: BaseException, category: AIErrorCategory, retriable: bool
    ) -> None:
        classified = classify_error(err)
        assert classified.category is category
        assert classified.retriable is retriable

    def test_status_code_recorded(self) -> None:
        assert classify_error(HttpError(503)).status_code == 503
        assert classify_error(ValueError("x")).status_code is None

    def test_ai_error_passes_through(self) -> None:
        err = AIError("done", category=AIErrorCategory.LOGIC_BREACH, retriable=False)
        assert classify_error(err) is err

    def test_status_code_beats_hints(self) -> None:
        err = RemoteCallError("limited", status_code=429, category="LOGIC_BREACH", retriable=False)
        classified = classify_error(err)
        assert classified.category is AIErrorCategory.API_THRESHOLD
        assert classified.retriable

    def test_hints_used_without_status(self) -> None:
        classified = classify_error(RemoteCallError("policy", category="LOGIC_BREACH"))
        assert classified.category is AIErrorCategory.LOGIC_BREACH
        assert not classified.retriable

        classified = classify_error(RemoteCallError("flaky", retriable=False))
        assert classified.category is AIErrorCategory.UNKNOWN
        assert not classified.retriable

    def test_bool_status_ignored(self) -> None:
        err = ValueError("odd")
        err.status = True  # type: ignore[attr-defined]
        assert classify_error(err).category is AIErrorCategory.UNKNOWN

    def test_empty_message_uses_type_name(self) -> None:
        assert str(classify_error(KeyError())) == "KeyError"


class TestComputeBackoff:
    def test_first_retry(self) -> None:
        meta = compute_backoff(ResiliencePolicy(), 1, 0.0)
        assert meta == RetryMeta(attempt=1, backoff_ms=400, jitter_ms=0, total_delay_ms=400)

    def test_jitter_added(self) -> None:
        meta = compute_backoff(ResiliencePolicy(), 3, 0.5)
        assert (meta.backoff_ms, meta.jitter_ms, meta.total_delay_ms) == (1600, 200, 1800)

    def test_backoff_capped(self) -> None:
        meta = compute_backoff(ResiliencePolicy(), 6, 0.0)
        assert meta.backoff_ms == 8000

    def test_policy_rejects_inverted_delays(self) -> None:
        with pytest.raises(ValueError):
            ResiliencePolicy(base_delay_ms=1000, max_delay_ms=10)


@pytest.mark.asyncio
class TestWithExponentialBackoff:
    async def test_success_after_transient_failures(self, recording_sleep: RecordingSleep) -> None:
        fn = Flaky([HttpError(503), TimeoutError("slow")])
        retries: list[tuple[RetryMeta, AIError]] = []

        result = await with_exponential_backoff(
            fn,
            policy=ResiliencePolicy(),
            jitter01=zero_jitter,
            on_retry=lambda meta, err: retries.append((meta, err)),
            sleep=recording_sleep,
        )

        assert result == "ok"
        assert fn.calls == 3
        assert recording_sleep.delays == [0.4, 0.8]
        assert [meta.attempt for meta, _ in retries] == [1, 2]
        assert retries[0][1].category is AIErrorCategory.NETWORK_JITTER

    async def test_non_retriable_fails_fast(self, recording_sleep: RecordingSleep) -> None:
        fn = Flaky([HttpError(404)])
        failures: list[AIError] = []

        with pytest.raises(AIError) as exc_info:
            await with_exponential_backoff(
                fn,
                policy=ResiliencePolicy(),
                jitter01=zero_jitter,
                on_fail=failures.append,
                sleep=recording_sleep,
            )

        assert fn.calls == 1
        assert recording_sleep.delays == []
        assert exc_info.value.category is AIErrorCategory.LOGIC_BREACH
        assert isinstance(exc_info.value.__cause__, HttpError)
        assert failures == [exc_info.value]

    async def test_exhaustion(self, recording_sleep: RecordingSleep) -> None:
        policy = ResiliencePolicy(max_attempts=3)
        fn = Flaky([HttpError(500)] * 5)
        failures: list[AIError] = []

        with pytest.raises(AIError) as exc_info:
            await with_exponential_backoff(
                fn,
                policy=policy,
                jitter01=zero_jitter,
                on_fail=failures.append,
                sleep=recording_sleep,
            )

        assert fn.calls == 3
        assert recording_sleep.delays == [0.4, 0.8]
        assert exc_info.value.status_code == 500
        assert len(failures) == 1

    async def test_default_policy_backoff_bounds(self, recording_sleep: RecordingSleep) -> None:
        policy = ResiliencePolicy(
            max_attempts=4, base_delay_ms=400, max_delay_ms=8000, jitter_ratio=0.25
        )
        fn = Flaky([HttpError(500)] * 10)
        scheduled: list[RetryMeta] = []

        with pytest.raises(AIError) as exc_info:
            await with_exponential_backoff(
                fn,
                policy=policy,
                jitter01=DeterministicRNG(42).next,
                on_retry=lambda meta, error: scheduled.append(meta),
                sleep=recording_sleep,
            )

        assert fn.calls == 4
        assert exc_info.value.category is AIErrorCategory.NETWORK_JITTER
        assert [m.backoff_ms for m in scheduled] == [400, 800, 1600]
        assert len(recording_sleep.delays) == 3
        for meta, delay in zip(scheduled, recording_sleep.delays):
            assert 0 <= meta.jitter_ms < 0.25 * meta.backoff_ms
            assert meta.backoff_ms <= delay * 1000 < 1.25 * meta.backoff_ms

    async def test_jitter_only_drawn_for_scheduled_retries(
        self, recording_sleep: RecordingSleep
    ) -> None:
        draws: list[float] = []

        def jitter() -> float:
            draws.append(0.5)
            return 0.5

        with pytest.raises(AIError):
            await with_exponential_backoff(
                Flaky([HttpError(500)] * 3),
                policy=ResiliencePolicy(max_attempts=2),
                jitter01=jitter,
                sleep=recording_sleep,
            )
        assert len(draws) == 1
        assert recording_sleep.delays == [0.45]

        draws.clear()
        await with_exponential_backoff(
            Flaky([]), policy=ResiliencePolicy(), jitter01=jitter, sleep=recording_sleep
        )
        assert draws == []

    async def test_single_attempt_policy(self, recording_sleep: RecordingSleep) -> None:
        fn = Flaky([HttpError(503)])
        with pytest.raises(AIError):
            await with_exponential_backoff(
                fn,
                policy=ResiliencePolicy(max_attempts=1),
                jitter01=zero_jitter,
                sleep=recording_sleep,
            )
        assert fn.calls == 1
        assert recording_sleep.delays == []

    async def test_ai_errors_from_fn_kept_as_is(self, recording_sleep: RecordingSleep) -> None:
        original = AIError("quota", category=AIErrorCategory.API_THRESHOLD, retriable=False)
        with pytest.raises(AIError) as exc_info:
            await with_exponential_backoff(
                Flaky([original]),
                policy=ResiliencePolicy(),
                jitter01=zero_jitter,
                sleep=recording_sleep,
            )
        assert exc_info.value is original

    async def test_default_sleep_is_asyncio(self) -> None:
        policy = ResiliencePolicy(base_delay_ms=1, max_delay_ms=1)
        fn = Flaky([ConnectionError("blip")])
        assert await with_exponential_backoff(fn, policy=policy, jitter01=zero_jitter) == "ok"

    async def test_cancellation_not_classified(self, recording_sleep: RecordingSleep) -> None:
        async def cancelled() -> str:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await with_exponential_backoff(
                cancelled,
                policy=ResiliencePolicy(),
                jitter01=zero_jitter,
                sleep=recording_sleep,
            )


@pytest.mark.asyncio
class TestResilienceWrapper:
    async def test_run_uses_wrapper_callbacks(self, recording_sleep: RecordingSleep) -> None:
        retries: list[int] = []
        wrapper = ResilienceWrapper(
            ResiliencePolicy(),
            jitter01=zero_jitter,
            on_retry=lambda meta, err: retries.append(meta.attempt),
            sleep=recording_sleep,
        )
        assert await wrapper.run(Flaky([HttpError(429)])) == "ok"
        assert retries == [1]

    async def test_per_call_callbacks_win(self, recording_sleep: RecordingSleep) -> None:
        wrapper_seen: list[int] = []
        call_seen: list[int] = []
        wrapper = ResilienceWrapper(
            ResiliencePolicy(),
            jitter01=zero_jitter,
            on_retry=lambda meta, err: wrapper_seen.append(meta.attempt),
            sleep=recording_sleep,
        )
        await wrapper.run(
            Flaky([HttpError(500)]),
            on_retry=lambda meta, err: call_seen.append(meta.attempt),
        )
        assert call_seen == [1]
        assert wrapper_seen == []


class TestRetryOnSqliteLock:
    def test_retries_operational_error(self) -> None:
        calls = []

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "done"

        assert flaky() == "done"
        assert len(calls) == 3

    def test_gives_up_and_reraises(self) -> None:
        @retry_on_sqlite_lock(max_attempts=2, min_wait_ms=1, max_wait_ms=2)
        def locked() -> None:
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            locked()

    def test_other_errors_not_retried(self) -> None:
        calls = []

        @retry_on_sqlite_lock(min_wait_ms=1, max_wait_ms=2)
        def broken() -> None:
            calls.append(1)
            raise sqlite3.IntegrityError("constraint")

        with pytest.raises(sqlite3.IntegrityError):
            broken()
        assert len(calls) == 1
