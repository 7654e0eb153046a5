"""
Concurrency helpers: optimistic-concurrency retry and single-flight calls.

``retry_with_backoff`` is the one place transaction retry lives. Callers pass
a function that opens its own session, reloads the row, reapplies the change
and commits; a ``VersionConflict`` raised from it triggers another attempt
after ``base_delay * attempt`` seconds.

``SingleFlight`` collapses concurrent calls for the same key into one
execution whose result (or exception) every waiter receives.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from loguru import logger

from certprep.core.exceptions import VersionConflict

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[int], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    retry_on: tuple[type[BaseException], ...] = (VersionConflict,),
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``fn`` until it succeeds or ``attempts`` are exhausted.

    Args:
        fn: Called with the 1-based attempt number
        attempts: Maximum number of calls
        base_delay: Seconds slept after attempt ``n`` is ``base_delay * n``
        retry_on: Exception types that trigger another attempt
        label: Name used in log messages
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``fn`` returns

    Raises:
        The last exception from ``fn`` once attempts are exhausted
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn(attempt)
        except retry_on as exc:
            if attempt >= attempts:
                logger.error("{} failed after {} attempts: {}", label, attempts, exc)
                raise
            delay = base_delay * attempt
            logger.debug(
                "{} attempt {}/{} failed ({}), retrying in {:.2f}s",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{label}: retry loop exited without result")


@dataclass
class _Call:
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: BaseException | None = None
    waiters: int = 0


class SingleFlight:
    """
    Deduplicate concurrent calls by key.

    Usage:
        flight = SingleFlight()
        questions = flight.do(("Physical Care Skills", "beginner"), generate)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: dict[Hashable, _Call] = {}

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        """Run ``fn`` unless a call for ``key`` is already in flight, then share its outcome."""
        with self._lock:
            call = self._calls.get(key)
            if call is not None:
                call.waiters += 1
                leader = False
            else:
                call = _Call()
                self._calls[key] = call
                leader = True

        if not leader:
            logger.debug("Joining in-flight call for {}", key)
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()
        return call.result

    def in_flight(self, key: Hashable) -> bool:
        """Whether a call for ``key`` is currently running."""
        with self._lock:
            return key in self._calls
