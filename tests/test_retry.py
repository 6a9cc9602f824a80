"""Tests for the retry executor: backoff, jitter, timeouts and presets."""

import asyncio
import logging
from unittest.mock import patch

import pytest

from transcription_core.utils.errors import APIError, TranscriptionTimeoutError, ValidationError
from transcription_core.utils.retry import (
    API_CALL_POLICY,
    RetryPolicy,
    compute_delay,
    retry_with_backoff,
    retry_with_timeout,
    retryable,
    with_timeout,
)

FAST = RetryPolicy(max_retries=3, initial_delay=0.001, max_delay=0.01, jitter_factor=0.0)


def _always(_: BaseException) -> bool:
    return True


class TestComputeDelay:
    """Tests for delay(attempt) = min(initial * factor^attempt, max) +/- jitter."""

    def test_no_jitter_follows_exponential_curve(self) -> None:
        policy = RetryPolicy(initial_delay=1.0, max_delay=60.0, jitter_factor=0.0)
        assert [compute_delay(a, policy) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(initial_delay=2.0, max_delay=60.0, jitter_factor=0.0)
        assert compute_delay(10, policy) == 60.0

    @pytest.mark.parametrize("attempt", [0, 1, 3, 6, 20])
    @pytest.mark.parametrize("rand_value", [0.0, 0.25, 0.5, 0.999999])
    def test_bounded_by_jittered_max_and_zero(self, attempt: int, rand_value: float) -> None:
        policy = API_CALL_POLICY
        delay = compute_delay(attempt, policy, rand=lambda: rand_value)
        assert 0 <= delay <= policy.max_delay * (1 + policy.jitter_factor)

    def test_jitter_spreads_both_ways(self) -> None:
        policy = RetryPolicy(initial_delay=10.0, max_delay=60.0, jitter_factor=0.2)
        assert compute_delay(0, policy, rand=lambda: 0.0) == 8.0
        assert compute_delay(0, policy, rand=lambda: 0.5) == 10.0
        assert compute_delay(0, policy, rand=lambda: 0.75) == 11.0

    def test_full_jitter_never_negative(self) -> None:
        policy = RetryPolicy(initial_delay=1.0, jitter_factor=1.5)
        assert compute_delay(0, policy, rand=lambda: 0.0) == 0.0

    def test_truncated_to_whole_milliseconds(self) -> None:
        policy = RetryPolicy(initial_delay=0.0012345, jitter_factor=0.0)
        assert compute_delay(0, policy) == 0.001


class TestRetryWithBackoff:
    """Tests for retry_with_backoff()."""

    async def test_succeeds_on_first_call(self) -> None:
        call_count = 0

        async def succeed() -> str:
            nonlocal call_count
            call_count += 1
            return "ok"

        assert await retry_with_backoff(succeed, FAST) == "ok"
        assert call_count == 1

    async def test_retries_on_failure_then_succeeds(self) -> None:
        call_count = 0

        async def fail_twice_then_succeed() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise APIError("openai", 503, f"attempt {call_count}")
            return "ok"

        assert await retry_with_backoff(fail_twice_then_succeed, FAST) == "ok"
        assert call_count == 3

    async def test_exhaustion_calls_n_plus_one_times_and_raises_last_error(self) -> None:
        raised: list[Exception] = []

        async def always_fail() -> None:
            exc = APIError("openai", 500, f"failure {len(raised)}")
            raised.append(exc)
            raise exc

        with pytest.raises(APIError) as exc_info:
            await retry_with_backoff(always_fail, FAST)

        # 1 initial + 3 retries = 4 total calls
        assert len(raised) == 4
        assert exc_info.value is raised[-1]
        assert exc_info.value._retry_count == 3  # type: ignore[attr-defined]

    async def test_non_retryable_error_runs_once(self) -> None:
        call_count = 0

        async def invalid() -> None:
            nonlocal call_count
            call_count += 1
            raise ValidationError("audioData", "too small")

        with pytest.raises(ValidationError):
            await retry_with_backoff(invalid, FAST)

        assert call_count == 1

    async def test_unknown_exception_not_retried_by_default(self) -> None:
        call_count = 0

        async def boom() -> None:
            nonlocal call_count
            call_count += 1
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await retry_with_backoff(boom, FAST)

        assert call_count == 1

    async def test_custom_predicate_overrides_classifier(self) -> None:
        call_count = 0

        async def boom() -> None:
            nonlocal call_count
            call_count += 1
            raise RuntimeError("boom")

        policy = RetryPolicy(max_retries=2, initial_delay=0.001, should_retry=_always)
        with pytest.raises(RuntimeError):
            await retry_with_backoff(boom, policy)

        assert call_count == 3

    async def test_zero_retries_runs_once(self) -> None:
        call_count = 0

        async def fail_once() -> None:
            nonlocal call_count
            call_count += 1
            raise APIError("openai", 503, "down")

        with pytest.raises(APIError):
            await retry_with_backoff(fail_once, RetryPolicy(max_retries=0))

        assert call_count == 1

    async def test_sleeps_follow_policy_delays(self) -> None:
        recorded_delays: list[float] = []

        async def mock_sleep(delay: float) -> None:
            recorded_delays.append(delay)

        async def always_fail() -> None:
            raise APIError("openai", 429, "slow down")

        policy = RetryPolicy(max_retries=3, initial_delay=1.0, max_delay=60.0, jitter_factor=0.0)
        with patch("transcription_core.utils.retry.asyncio.sleep", side_effect=mock_sleep):
            with pytest.raises(APIError):
                await retry_with_backoff(always_fail, policy)

        assert recorded_delays == [1.0, 2.0, 4.0]

    async def test_on_retry_callback_receives_attempt_error_and_delay(self) -> None:
        calls: list[tuple[int, str, float]] = []
        policy = RetryPolicy(
            max_retries=2,
            initial_delay=0.001,
            jitter_factor=0.0,
            on_retry=lambda attempt, exc, delay: calls.append((attempt, str(exc), delay)),
        )

        async def always_fail() -> None:
            raise APIError("assemblyai", 502, "bad gateway")

        with pytest.raises(APIError):
            await retry_with_backoff(always_fail, policy)

        assert [c[0] for c in calls] == [1, 2]
        assert "bad gateway" in calls[0][1]
        assert calls[1][2] == 0.002


class TestApiCallPolicy:
    """Tests for the API call preset."""

    def test_preset_values(self) -> None:
        assert API_CALL_POLICY.max_retries == 3
        assert API_CALL_POLICY.initial_delay == 2.0
        assert API_CALL_POLICY.max_delay == 60.0
        assert API_CALL_POLICY.backoff_factor == 2.0

    @pytest.mark.parametrize("status", [429, 500, 501, 502, 503, 504, 599])
    def test_retries_rate_limits_and_server_errors(self, status: int) -> None:
        assert API_CALL_POLICY.is_retryable(APIError("openai", status, "x"))

    @pytest.mark.parametrize("status", [400, 401, 404, 413])
    def test_does_not_retry_client_errors(self, status: int) -> None:
        assert not API_CALL_POLICY.is_retryable(APIError("openai", status, "x"))

    @pytest.mark.parametrize("status", [500, 503])
    def test_does_not_retry_terminal_job_failures(self, status: int) -> None:
        assert not API_CALL_POLICY.is_retryable(APIError("assemblyai", status, "x", terminal=True))

    async def test_terminal_failure_runs_once(self) -> None:
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise APIError("assemblyai", 500, "Transcription failed", terminal=True)

        policy = RetryPolicy(
            max_retries=3,
            initial_delay=0.001,
            max_delay=0.01,
            should_retry=API_CALL_POLICY.should_retry,
        )
        with pytest.raises(APIError):
            await retry_with_backoff(operation, policy)
        assert calls == 1

    def test_defers_to_classifier_for_other_errors(self) -> None:
        assert API_CALL_POLICY.is_retryable(TranscriptionTimeoutError("call", 1))
        assert not API_CALL_POLICY.is_retryable(ValidationError("f", "r"))
        assert not API_CALL_POLICY.is_retryable(RuntimeError("x"))


class TestWithTimeout:
    """Tests for with_timeout()."""

    async def test_returns_result_within_bound(self) -> None:
        async def quick() -> int:
            return 42

        assert await with_timeout(quick, 1.0) == 42

    async def test_raises_timeout_without_waiting_for_operation(self) -> None:
        started = asyncio.get_running_loop().time()

        async def slow() -> None:
            await asyncio.sleep(10)

        with pytest.raises(TranscriptionTimeoutError) as exc_info:
            await with_timeout(slow, 0.05, "Slow call")

        assert asyncio.get_running_loop().time() - started < 5
        assert exc_info.value.operation == "Slow call"
        assert exc_info.value.timeout_seconds == 0.05

    async def test_propagates_operation_error(self) -> None:
        async def broken() -> None:
            raise APIError("openai", 400, "bad request")

        with pytest.raises(APIError, match="bad request"):
            await with_timeout(broken, 1.0)


class TestRetryWithTimeout:
    """Tests for retry_with_timeout()."""

    async def test_timeouts_are_retried_per_attempt(self) -> None:
        call_count = 0

        async def slow_then_fast() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                await asyncio.sleep(10)
            return "ok"

        result = await retry_with_timeout(slow_then_fast, FAST, 0.05, "Flaky call")
        assert result == "ok"
        assert call_count == 3

    async def test_timeout_retry_can_be_disabled(self) -> None:
        call_count = 0

        async def slow() -> None:
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(10)

        with pytest.raises(TranscriptionTimeoutError):
            await retry_with_timeout(slow, FAST, 0.05, retry_on_timeout=False)

        assert call_count == 1

    async def test_non_timeout_errors_use_policy_predicate(self) -> None:
        call_count = 0

        async def rejected() -> None:
            nonlocal call_count
            call_count += 1
            raise APIError("openai", 400, "bad request")

        with pytest.raises(APIError):
            await retry_with_timeout(rejected, FAST, 1.0)

        assert call_count == 1

    async def test_without_timeout_behaves_like_plain_retry(self) -> None:
        async def quick() -> str:
            return "ok"

        assert await retry_with_timeout(quick, FAST, None) == "ok"


class TestRetryableDecorator:
    """Tests for the decorator form."""

    async def test_preserves_function_name_and_retries(self) -> None:
        call_count = 0

        @retryable(FAST)
        async def my_function(value: int) -> int:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise APIError("openai", 503, "down")
            return value * 2

        assert my_function.__name__ == "my_function"
        assert await my_function(21) == 42
        assert call_count == 2


class TestRetryLogging:
    """Tests for retry attempt logging."""

    async def test_retry_logs_warning_with_attempt_info(self, caplog) -> None:
        async def always_fail() -> None:
            raise APIError("openai", 503, "network down")

        policy = RetryPolicy(max_retries=2, initial_delay=0.001, jitter_factor=0.0)
        with caplog.at_level(logging.WARNING, logger="transcription_core.utils.retry"):
            with pytest.raises(APIError):
                await retry_with_backoff(always_fail, policy, "always_fail")

        retry_logs = [r for r in caplog.records if r.message.startswith("Retry")]
        assert len(retry_logs) == 2
        assert "1/2" in retry_logs[0].message
        assert "2/2" in retry_logs[1].message
        assert "network down" in retry_logs[0].message
        assert "always_fail" in retry_logs[0].message

    async def test_no_log_on_immediate_success(self, caplog) -> None:
        async def succeed() -> str:
            return "ok"

        with caplog.at_level(logging.WARNING, logger="transcription_core.utils.retry"):
            await retry_with_backoff(succeed, FAST)

        assert not [r for r in caplog.records if r.message.startswith("Retry")]
