"""
Background maintenance for the quiz engine.

Runs idempotent sweeps on their own intervals in a daemon thread:
- Due sweep: flag spaced-repetition rows whose due date has passed
- Pool maintenance: retire stale blueprints, replenish, report health
- Question maintenance: move low-quality questions to review, generate for thin areas
- Session reaper: abandon sessions idle past the inactivity window

Every task is safe to run twice; a failing task is logged and retried on
its next interval without stopping the others.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from certprep.core.exceptions import CertPrepError
from certprep.core.taxonomy import DIFFICULTY_FALLBACK
from certprep.db.repositories.questions import QuestionRepository

if TYPE_CHECKING:
    from certprep.services import Services

LOW_QUALITY_THRESHOLD = 30


@dataclass
class TaskStatus:
    """Last outcome of one maintenance task."""

    name: str
    interval_seconds: int
    last_run_at: datetime | None = None
    last_success: bool = True
    last_result: Any = None
    error_message: str | None = None
    total_runs: int = 0


@dataclass
class MaintenanceScheduler:
    """
    Periodic maintenance runner.

    Usage:
        scheduler = MaintenanceScheduler(services)
        scheduler.start()
        # ... process runs ...
        scheduler.stop()
    """

    services: Services
    tick_seconds: float = 5.0
    on_task_complete: Callable[[TaskStatus], None] | None = None

    # Internal state
    _tasks: dict[str, TaskStatus] = field(default_factory=dict, repr=False)
    _thread: threading.Thread | None = field(default=None, repr=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def __post_init__(self) -> None:
        settings = self.services.settings
        for name, interval in (
            ("due_sweep", settings.due_sweep_interval_seconds),
            ("pool_maintenance", settings.pool_maintenance_interval_seconds),
            ("question_maintenance", settings.question_maintenance_interval_seconds),
            ("session_reaper", settings.session_reaper_interval_seconds),
        ):
            self._tasks[name] = TaskStatus(name=name, interval_seconds=interval)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tasks(self) -> dict[str, TaskStatus]:
        return self._tasks

    def start(self) -> None:
        if self.is_running:
            logger.warning("Maintenance scheduler already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="certprep-maintenance",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Maintenance scheduler started ({})",
            ", ".join(f"{t.name}={t.interval_seconds}s" for t in self._tasks.values()),
        )

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the loop and wait for the current task to finish."""
        if not self.is_running:
            return
        logger.info("Stopping maintenance scheduler...")
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        logger.info("Maintenance scheduler stopped")

    def wait(self) -> None:
        """Block until the scheduler is stopped."""
        while self.is_running and not self._stop_event.wait(timeout=1.0):
            pass

    def run_once(self) -> dict[str, Any]:
        """Run every task now (blocking)."""
        return {name: self._run_task(name) for name in self._tasks}

    # ========================================
    # Loop
    # ========================================

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            now = self.services.sessions.clock()
            for name, status in self._tasks.items():
                if self._stop_event.is_set():
                    break
                if (
                    status.last_run_at is None
                    or (now - status.last_run_at).total_seconds() >= status.interval_seconds
                ):
                    self._run_task(name)
            if self._stop_event.wait(timeout=self.tick_seconds):
                break

    def _run_task(self, name: str) -> Any:
        status = self._tasks[name]
        task = getattr(self, f"_{name}")
        status.last_run_at = self.services.sessions.clock()
        status.total_runs += 1
        try:
            status.last_result = task()
            status.last_success = True
            status.error_message = None
        except Exception as exc:  # Intentionally broad - one failing task must not stop the loop
            logger.error("Maintenance task {} failed: {}", name, exc)
            status.last_success = False
            status.error_message = str(exc)
            status.last_result = None

        if self.on_task_complete:
            try:
                self.on_task_complete(status)
            except Exception as exc:
                logger.warning("Maintenance callback failed: {}", exc)
        return status.last_result

    # ========================================
    # Tasks
    # ========================================

    def _due_sweep(self) -> int:
        return self.services.tracker.sweep_due()

    def _pool_maintenance(self) -> dict[str, Any]:
        report = self.services.pool.maintain()
        health = report.health
        logger.info(
            "Pool maintenance: retired {}, created {}, health {} ({})",
            len(report.retired),
            len(report.created),
            health.health_score if health else "n/a",
            health.status if health else "n/a",
        )
        return {
            "retired": len(report.retired),
            "created": len(report.created),
            "health_score": health.health_score if health else None,
        }

    def _question_maintenance(self) -> dict[str, Any]:
        services = self.services
        with services.db.session_scope() as session:
            repo = QuestionRepository(session)
            flagged = repo.flag_low_quality(LOW_QUALITY_THRESHOLD)
            stats = repo.pool_stats(services.settings.question_pool_min_size)

        generated = 0
        if services.orchestrator.available:
            for recommendation in stats.recommendations:
                count = min(recommendation["needed"], services.settings.selection_min_generation_count)
                try:
                    result = services.orchestrator.replenish(
                        recommendation["area"], DIFFICULTY_FALLBACK, count
                    )
                except CertPrepError as exc:
                    logger.warning("Replenishment for {} failed: {}", recommendation["area"], exc)
                    continue
                generated += len(result.question_ids)
        elif stats.recommendations:
            logger.info(
                "Question pool below target in {} areas; generation disabled",
                len(stats.recommendations),
            )

        return {
            "flagged": flagged,
            "generated": generated,
            "health_score": stats.health_score,
        }

    def _session_reaper(self) -> int:
        return len(self.services.sessions.reap_inactive())
