"""Unit tests for retry_with_backoff and SingleFlight."""

import threading
import time

import pytest

from certprep.core.concurrency import SingleFlight, retry_with_backoff
from certprep.core.exceptions import VersionConflict


class TestRetryWithBackoff:
    def test_returns_first_success(self):
        sleeps = []
        result = retry_with_backoff(lambda attempt: attempt * 10, sleep=sleeps.append)

        assert result == 10
        assert sleeps == []

    def test_retries_conflicts_with_linear_backoff(self):
        sleeps = []
        calls = []

        def flaky(attempt):
            calls.append(attempt)
            if attempt < 3:
                raise VersionConflict("session", "s1")
            return "ok"

        assert retry_with_backoff(flaky, attempts=3, base_delay=0.05, sleep=sleeps.append) == "ok"
        assert calls == [1, 2, 3]
        assert sleeps == pytest.approx([0.05, 0.10])

    def test_reraises_after_exhausting(self):
        def always(attempt):
            raise VersionConflict("history")

        with pytest.raises(VersionConflict):
            retry_with_backoff(always, attempts=2, sleep=lambda s: None)

    def test_other_errors_are_not_retried(self):
        calls = []

        def broken(attempt):
            calls.append(attempt)
            raise KeyError("x")

        with pytest.raises(KeyError):
            retry_with_backoff(broken, attempts=3, sleep=lambda s: None)
        assert calls == [1]

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            retry_with_backoff(lambda attempt: None, attempts=0)


class TestSingleFlight:
    def test_concurrent_calls_share_one_execution(self):
        flight = SingleFlight()
        started = threading.Event()
        release = threading.Event()
        executions = []

        def work():
            executions.append(1)
            started.set()
            release.wait(timeout=5)
            return "shared"

        results = []
        leader = threading.Thread(target=lambda: results.append(flight.do("key", work)))
        leader.start()
        assert started.wait(timeout=5)

        followers = [
            threading.Thread(target=lambda: results.append(flight.do("key", work))) for _ in range(3)
        ]
        for thread in followers:
            thread.start()
        # Give followers time to join the in-flight call
        time.sleep(0.2)
        release.set()
        for thread in [leader, *followers]:
            thread.join(timeout=5)

        assert executions == [1]
        assert results == ["shared"] * 4
        assert not flight.in_flight("key")

    def test_error_reaches_caller_and_key_is_released(self):
        flight = SingleFlight()

        def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            flight.do("k", fail)
        assert flight.do("k", lambda: 5) == 5

    def test_different_keys_run_independently(self):
        flight = SingleFlight()
        assert flight.do("a", lambda: 1) == 1
        assert flight.do("b", lambda: 2) == 2
