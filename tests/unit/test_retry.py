"""Tests for RetryPolicy and the tagged step results."""

from __future__ import annotations

import pytest

from promote_release.core.retry import Fatal, Ok, Retryable, RetryPolicy, attempt
from promote_release.errors import (
    CutoverConflict,
    IntegrityViolation,
    SigningUnavailable,
    StoreTransientError,
)


def _policy(max_attempts: int = 3, sleeps: list[float] | None = None) -> RetryPolicy:
    sink = sleeps if sleeps is not None else []
    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay_ms=100,
        backoff_multiplier=2.0,
        max_delay_ms=1000,
        jitter=False,
        sleep=sink.append,
    )


class TestAttempt:
    def test_ok(self):
        result = attempt(lambda: 42)
        assert isinstance(result, Ok)
        assert result.value == 42

    def test_transient_is_retryable(self):
        def boom():
            raise StoreTransientError("503")

        result = attempt(boom)
        assert isinstance(result, Retryable)
        assert isinstance(result.error, StoreTransientError)

    def test_integrity_violation_is_fatal(self):
        def boom():
            raise IntegrityViolation("x", expected="a", actual="b")

        assert isinstance(attempt(boom), Fatal)

    def test_foreign_exception_propagates(self):
        def boom():
            raise ValueError("bug")

        with pytest.raises(ValueError):
            attempt(boom)


class TestDelays:
    def test_exponential_without_jitter(self):
        policy = _policy()
        assert policy.calculate_delay(0) == pytest.approx(0.1)
        assert policy.calculate_delay(1) == pytest.approx(0.2)
        assert policy.calculate_delay(2) == pytest.approx(0.4)

    def test_capped_at_max_delay(self):
        assert _policy().calculate_delay(10) == pytest.approx(1.0)

    def test_jitter_stays_within_quarter(self):
        policy = RetryPolicy(initial_delay_ms=1000, jitter=True)
        for _ in range(50):
            assert 0.75 <= policy.calculate_delay(0) <= 1.25

    def test_max_attempts_clamped(self):
        assert RetryPolicy(max_attempts=0).max_attempts == 1


class TestRun:
    def test_succeeds_after_transient_failures(self):
        sleeps: list[float] = []
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise StoreTransientError("try again")
            return "done"

        assert _policy(sleeps=sleeps).call(flaky, op="flaky") == "done"
        assert calls["n"] == 3
        assert sleeps == [pytest.approx(0.1), pytest.approx(0.2)]

    def test_exhaustion_raises_last_error(self):
        sleeps: list[float] = []
        calls = {"n": 0}

        def down():
            calls["n"] += 1
            raise SigningUnavailable(f"down {calls['n']}")

        with pytest.raises(SigningUnavailable, match="down 3"):
            _policy(sleeps=sleeps).call(down)
        assert calls["n"] == 3
        # No sleep after the final attempt
        assert len(sleeps) == 2

    def test_fatal_is_not_retried(self):
        calls = {"n": 0}

        def conflict():
            calls["n"] += 1
            raise CutoverConflict("nightly", "a", "b")

        with pytest.raises(CutoverConflict):
            _policy().call(conflict)
        assert calls["n"] == 1

    def test_run_with_explicit_results(self):
        results = iter([Retryable(error=StoreTransientError("x")), Ok(value=7)])
        assert _policy().run(lambda: next(results)) == 7

    def test_run_fatal_result(self):
        with pytest.raises(IntegrityViolation):
            _policy().run(lambda: Fatal(error=IntegrityViolation("a", reason="bad")))

    def test_single_attempt_never_sleeps(self):
        sleeps: list[float] = []

        def down():
            raise StoreTransientError("x")

        with pytest.raises(StoreTransientError):
            _policy(max_attempts=1, sleeps=sleeps).call(down)
        assert sleeps == []


class TestFromConfig:
    def test_reads_retry_fields(self, config):
        policy = RetryPolicy.from_config(config)
        assert policy.max_attempts == 3
        assert policy.initial_delay_ms == 0
        assert policy.jitter is False
