"""Tests for groundwork.retry strategies and RetryContext."""

import pytest

from groundwork.core.errors import ParseError, StateLockError
from groundwork.retry import ConstantBackoff, ExponentialBackoff, NoRetry, RetryContext


class TestStrategies:
    def test_no_retry(self):
        strategy = NoRetry()
        assert strategy.should_retry(1, RuntimeError()) is False
        assert strategy.next_delay(0) == 0.0

    def test_constant_backoff(self):
        strategy = ConstantBackoff(max_retries=2, delay=0.5)
        assert strategy.next_delay(0) == 0.5
        assert strategy.next_delay(5) == 0.5
        assert strategy.should_retry(1, RuntimeError())
        assert strategy.should_retry(2, RuntimeError())
        assert not strategy.should_retry(3, RuntimeError())

    def test_exponential_backoff_without_jitter(self):
        strategy = ExponentialBackoff(base_delay=1.0, multiplier=2.0, max_delay=5.0, jitter=False)
        assert [strategy.next_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_exponential_backoff_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=4.0, jitter=True, jitter_range=0.25)
        for _ in range(20):
            assert 3.0 <= strategy.next_delay(0) <= 5.0

    def test_non_retryable_errors_are_not_retried(self):
        strategy = ConstantBackoff(max_retries=5)
        assert not strategy.should_retry(1, ParseError("bad"))
        assert strategy.should_retry(1, StateLockError("/x"))
        # plain exceptions carry no flag and count as retryable
        assert strategy.should_retry(1, ValueError())


class TestRetryContext:
    def test_success_first_time(self):
        ctx = RetryContext(ConstantBackoff(), sleep=lambda s: None)
        assert ctx.run(lambda: "ok") == "ok"
        assert ctx.attempt == 1
        assert ctx.errors == []

    def test_retries_until_success(self):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "done"

        ctx = RetryContext(ConstantBackoff(max_retries=3, delay=0.25), sleep=sleeps.append)
        assert ctx.run(flaky) == "done"
        assert ctx.attempt == 3
        assert len(ctx.errors) == 2
        assert sleeps == [0.25, 0.25]

    def test_reraises_last_error_when_exhausted(self):
        ctx = RetryContext(ConstantBackoff(max_retries=1, delay=0), sleep=lambda s: None)
        with pytest.raises(ConnectionError):
            ctx.run(self._always_fail)
        assert ctx.attempt == 2

    def test_on_retry_callback(self):
        seen = []
        ctx = RetryContext(
            ConstantBackoff(max_retries=2, delay=0.1),
            on_retry=lambda attempt, error, delay: seen.append((attempt, type(error).__name__, delay)),
            sleep=lambda s: None,
        )
        with pytest.raises(ConnectionError):
            ctx.run(self._always_fail)
        assert seen == [(1, "ConnectionError", 0.1), (2, "ConnectionError", 0.1)]

    def test_no_retry_fails_immediately(self):
        ctx = RetryContext(NoRetry())
        with pytest.raises(ConnectionError):
            ctx.run(self._always_fail)
        assert ctx.attempt == 1

    @staticmethod
    def _always_fail():
        raise ConnectionError("down")
