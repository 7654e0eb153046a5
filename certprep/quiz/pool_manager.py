"""
Quiz Pool Manager for the shared, pre-assembled quiz pool.

Handles blueprint creation from the catalog, fair assignment (a user never
gets a blueprint they already completed), completion bookkeeping,
retirement of stale blueprints, pool health and replenishment.

Completion is recorded in the completion ledger first; usage rows, blueprint
aggregates and the per-user history are projections rebuilt from it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certprep.config import Settings
from certprep.core.clock import Clock, utcnow
from certprep.core.concurrency import retry_with_backoff
from certprep.core.exceptions import CertPrepError, VersionConflict
from certprep.core.ids import new_quiz_id
from certprep.core.rounding import round_half_up
from certprep.core.taxonomy import (
    ADAPTIVE,
    DEFAULT_COMPETENCY_RATIOS,
    DIFFICULTY_ROTATION,
    distribution_from_ratios,
)
from certprep.db.database import Database
from certprep.db.models import QuizCompletion, QuizPoolEntry
from certprep.db.repositories.questions import QuestionRepository, health_status
from certprep.db.repositories.quiz_pool import QuizPoolRepository
from certprep.quiz.history import CompletionRecord, HistoryProjection, project_history
from certprep.quiz.selection_engine import SelectionEngine, SelectionPreferences

BLUEPRINT_BASE_QUALITY = 70


@dataclass(frozen=True)
class PoolConfig:
    min_size: int = 50
    target_size: int = 100
    assignment_ttl_hours: int = 24
    retire_age_days: int = 180
    retire_min_uses: int = 5
    retire_min_quality: int = 30
    max_generation_per_run: int = 10
    blueprint_size: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> PoolConfig:
        return cls(
            min_size=settings.pool_min_size,
            target_size=settings.pool_target_size,
            assignment_ttl_hours=settings.pool_assignment_ttl_hours,
            retire_age_days=settings.pool_retire_age_days,
            retire_min_uses=settings.pool_retire_min_uses,
            retire_min_quality=settings.pool_retire_min_quality,
            max_generation_per_run=settings.pool_max_generation_per_run,
            blueprint_size=settings.default_question_count,
        )


@dataclass
class QuizAssignment:
    """A blueprint handed to a user (questions without answers)."""

    user_id: str
    quiz_id: str
    difficulty: str
    questions: list[dict[str, Any]]
    assigned_at: Any
    expires_at: Any
    reused: bool = False

    @property
    def total_questions(self) -> int:
        return len(self.questions)


@dataclass
class PoolHealth:
    """Pool statistics with a 0-100 health score."""

    active: int
    retired: int
    average_quality: float | None
    average_difficulty_rating: float | None
    total_uses: int
    by_difficulty: dict[str, int]
    health_score: int
    status: str
    needs_replenishment: bool


@dataclass
class MaintenanceReport:
    retired: list[tuple[str, str]] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    health: PoolHealth | None = None


@dataclass
class ReconcileReport:
    user_id: str
    completions: int
    usage_added: int
    usage_removed: int
    projection: HistoryProjection


def blueprint_quality_score(
    questions: list[dict[str, Any]],
    target_ratios: dict[str, int] | None = None,
) -> int:
    """
    Quality of an assembled blueprint.

    Distribution score: 70 minus the mean absolute deviation (percentage
    points) from the target competency ratios. Completeness: 100 minus 10 per
    question missing content/answer/explanation and 5 per missing option.
    The result is their mean, clamped to 0-100.
    """
    target_ratios = target_ratios or DEFAULT_COMPETENCY_RATIOS
    total = len(questions)
    if total == 0:
        return 0

    counts = {area: 0 for area in target_ratios}
    for question in questions:
        area = question.get("competency_area")
        if area in counts:
            counts[area] += 1
    deviation = sum(
        abs(counts[area] / total * 100 - share) for area, share in target_ratios.items()
    ) / len(target_ratios)
    distribution_score = BLUEPRINT_BASE_QUALITY - deviation

    completeness = 100
    for question in questions:
        if not (question.get("content") and question.get("correct_answer") and question.get("explanation")):
            completeness -= 10
        options = question.get("options") or {}
        filled = sum(1 for text in options.values() if str(text).strip())
        completeness -= 5 * max(0, 4 - filled)

    return round_half_up(max(0.0, min(100.0, (distribution_score + completeness) / 2)))


def low_usage_reason(age_days: int) -> str:
    """Retirement reason for blueprints that went unused for ``age_days``."""
    if age_days % 30 == 0:
        months = age_days // 30
        return f"Low usage after {months} month" + ("s" if months != 1 else "")
    return f"Low usage after {age_days} days"


def difficulty_rating(average_score: float) -> int:
    """Blueprint difficulty on a 1-10 scale from its average score."""
    return max(1, min(10, 11 - round_half_up(average_score / 10)))


def format_for_user(entry: QuizPoolEntry) -> dict[str, Any]:
    """Client-safe view of a blueprint: no correct answers, no explanations."""
    return {
        "quiz_id": entry.quiz_id,
        "difficulty": entry.difficulty,
        "total_questions": entry.total_questions,
        "questions": [
            {k: v for k, v in q.items() if k not in ("correct_answer", "explanation")}
            for q in entry.questions
        ],
    }


class QuizPoolManager:
    """
    Manager for the shared quiz pool.

    Handles:
    - Blueprint creation from the catalog
    - Assignment with reuse and never-repeat fairness
    - Completion ledger and projections
    - Retirement, health and replenishment
    """

    def __init__(
        self,
        db: Database,
        engine: SelectionEngine,
        config: PoolConfig | None = None,
        clock: Clock = utcnow,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ):
        self.db = db
        self.engine = engine
        self.config = config or PoolConfig()
        self.clock = clock
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    def _retry(self, fn, label: str):
        return retry_with_backoff(
            fn,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retry_on=(VersionConflict, IntegrityError),
            label=label,
        )

    # ========================================
    # Blueprints
    # ========================================

    def create_blueprint(self, difficulty: str, question_count: int | None = None) -> str | None:
        """
        Assemble a blueprint from the catalog with the default competency ratios.

        Returns:
            The new quiz id, or None when no questions could be selected
        """
        count = question_count or self.config.blueprint_size
        distribution = distribution_from_ratios(count)
        selection = self.engine.select(
            None,
            distribution,
            SelectionPreferences(difficulty=difficulty, avoid_recent=False),
        )
        if not selection.selected:
            logger.warning("No questions available for a {} blueprint", difficulty)
            return None

        with self.db.session_scope() as session:
            rows = QuestionRepository(session).get_many(q.question_id for q in selection.selected)
            questions = []
            for selected in selection.selected:
                row = rows.get(selected.question_id)
                if row is None:
                    continue
                questions.append(
                    {
                        **selected.to_dict(),
                        "position": len(questions) + 1,
                        "content": row.content,
                        "options": dict(row.options),
                        "correct_answer": row.correct_answer,
                        "explanation": row.explanation,
                    }
                )

            entry = QuizPoolEntry(
                quiz_id=new_quiz_id(),
                questions=questions,
                target_distribution=distribution,
                difficulty=difficulty,
                quality_score=blueprint_quality_score(questions),
                generation_method="catalog",
                total_questions=len(questions),
                created_at=self.clock(),
            )
            QuizPoolRepository(session).add(entry)
            quiz_id = entry.quiz_id

        logger.info(
            "Created blueprint {} ({}, {} questions{})",
            quiz_id,
            difficulty,
            len(questions),
            f", shortfall {selection.shortfall}" if selection.is_degraded else "",
        )
        return quiz_id

    def get_blueprint(self, quiz_id: str) -> dict[str, Any] | None:
        """Server-side view including answers."""
        with self.db.session_scope() as session:
            entry = QuizPoolRepository(session).get(quiz_id)
            if entry is None:
                return None
            return {**format_for_user(entry), "questions": list(entry.questions)}

    # ========================================
    # Assignment
    # ========================================

    def assign_quiz(self, user_id: str, difficulty: str = ADAPTIVE) -> QuizAssignment | None:
        """
        Give the user a blueprint.

        Reuses a pending, unexpired assignment whose blueprint is still
        active; otherwise picks the oldest active blueprint the user has not
        completed. Returns None when nothing is available.
        """
        return self._retry(
            lambda attempt: self._assign_once(user_id, difficulty), f"assign quiz {user_id}"
        )

    def _assign_once(self, user_id: str, difficulty: str) -> QuizAssignment | None:
        now = self.clock()
        with self.db.session_scope() as session:
            repo = QuizPoolRepository(session)
            history = repo.get_history(user_id)

            if (
                history is not None
                and history.assigned_quiz_id
                and not history.assignment_completed
                and history.expires_at is not None
                and history.expires_at > now
            ):
                entry = repo.get(history.assigned_quiz_id)
                if (
                    entry is not None
                    and entry.is_available
                    and repo.get_completion(user_id, entry.quiz_id) is None
                ):
                    logger.debug("Reusing assignment {} for {}", entry.quiz_id, user_id)
                    return self._assignment(user_id, entry, history.assigned_at, history.expires_at, True)

            entry = repo.oldest_unseen(user_id, difficulty)
            if entry is None:
                logger.info("No unseen {} blueprint available for {}", difficulty, user_id)
                return None

            history = repo.get_or_create_history(user_id)
            history.assigned_quiz_id = entry.quiz_id
            history.assigned_at = now
            history.expires_at = now + timedelta(hours=self.config.assignment_ttl_hours)
            history.assignment_completed = False
            logger.info("Assigned blueprint {} to {}", entry.quiz_id, user_id)
            return self._assignment(user_id, entry, history.assigned_at, history.expires_at, False)

    @staticmethod
    def _assignment(user_id, entry, assigned_at, expires_at, reused) -> QuizAssignment:
        view = format_for_user(entry)
        return QuizAssignment(
            user_id=user_id,
            quiz_id=entry.quiz_id,
            difficulty=entry.difficulty,
            questions=view["questions"],
            assigned_at=assigned_at,
            expires_at=expires_at,
            reused=reused,
        )

    # ========================================
    # Completion
    # ========================================

    def mark_completed(
        self,
        user_id: str,
        quiz_id: str,
        score: float,
        percentage: float | None = None,
        duration_minutes: float | None = None,
        session_id: str | None = None,
    ) -> bool:
        """
        Record that the user finished a blueprint.

        Args:
            score: Score on a 0-100 scale
            percentage: Percentage correct (defaults to ``score`` where needed)
            duration_minutes: Completion time

        Returns:
            True when this call created the ledger entry, False for a repeat
        """
        try:
            with self.db.session_scope() as session:
                repo = QuizPoolRepository(session)
                if repo.get(quiz_id) is None:
                    logger.warning("Completion for unknown blueprint {} by {}", quiz_id, user_id)
                    return False
                if repo.get_completion(user_id, quiz_id) is not None:
                    logger.debug("Blueprint {} already completed by {}", quiz_id, user_id)
                    return False
                repo.add_completion(
                    QuizCompletion(
                        user_id=user_id,
                        quiz_id=quiz_id,
                        score=score,
                        percentage=percentage,
                        duration_minutes=duration_minutes,
                        session_id=session_id,
                        completed_at=self.clock(),
                    )
                )
        except IntegrityError:
            logger.debug("Concurrent completion of {} by {} already recorded", quiz_id, user_id)
            return False

        self.reconcile(user_id)
        logger.info("Recorded completion of {} by {} (score {})", quiz_id, user_id, score)
        return True

    def reconcile(self, user_id: str) -> ReconcileReport:
        """Rebuild the user's usage rows, blueprint aggregates and history from the ledger."""
        return self._retry(lambda attempt: self._reconcile_once(user_id), f"reconcile {user_id}")

    def _reconcile_once(self, user_id: str) -> ReconcileReport:
        with self.db.session_scope() as session:
            repo = QuizPoolRepository(session)
            completions = repo.completions_for_user(user_id)
            ledger = {c.quiz_id: c for c in completions}

            touched: set[str] = set()
            usage = {u.quiz_id: u for u in repo.usage_for_user(user_id)}
            removed = 0
            for quiz_id, row in usage.items():
                if quiz_id not in ledger:
                    session.delete(row)
                    touched.add(quiz_id)
                    removed += 1
            added = 0
            for quiz_id, completion in ledger.items():
                if quiz_id not in usage and repo.get(quiz_id) is not None:
                    repo.add_usage(
                        quiz_id,
                        user_id,
                        completion.score,
                        completion.percentage,
                        completion.duration_minutes,
                        completion.completed_at,
                    )
                    touched.add(quiz_id)
                    added += 1
            session.flush()
            for quiz_id in touched:
                self._refresh_entry_stats(session, quiz_id)

            projection = project_history(
                [
                    CompletionRecord(c.quiz_id, c.score, c.percentage, c.completed_at)
                    for c in completions
                ]
            )
            history = repo.get_or_create_history(user_id)
            history.total_quizzes_taken = projection.total_quizzes_taken
            history.average_score = projection.average_score
            history.best_score = projection.best_score
            history.current_streak = projection.current_streak
            history.longest_streak = projection.longest_streak
            history.last_quiz_at = projection.last_quiz_at
            history.performance_trend = projection.performance_trend
            history.recent_performance = list(projection.recent_performance)
            history.achievements = list(projection.achievements)
            if history.assigned_quiz_id in ledger:
                history.assignment_completed = True

        if added or removed:
            logger.info("Reconciled {}: +{} / -{} usage rows", user_id, added, removed)
        return ReconcileReport(user_id, len(completions), added, removed, projection)

    @staticmethod
    def _refresh_entry_stats(session: Session, quiz_id: str) -> None:
        repo = QuizPoolRepository(session)
        entry = repo.get(quiz_id)
        if entry is None:
            return
        usage = repo.usage_for(quiz_id)
        entry.total_uses = len(usage)
        if not usage:
            entry.average_score = 0.0
            entry.average_completion_time = 0.0
            entry.difficulty_rating = 5
            return
        entry.average_score = round(sum(u.score for u in usage) / len(usage), 2)
        times = [u.completion_time for u in usage if u.completion_time is not None]
        entry.average_completion_time = round(sum(times) / len(times), 2) if times else 0.0
        entry.difficulty_rating = difficulty_rating(entry.average_score)

    def user_history(self, user_id: str) -> dict[str, Any] | None:
        with self.db.session_scope() as session:
            history = QuizPoolRepository(session).get_history(user_id)
            if history is None:
                return None
            return {
                "user_id": history.user_id,
                "assigned_quiz_id": history.assigned_quiz_id,
                "expires_at": history.expires_at,
                "assignment_completed": history.assignment_completed,
                "total_quizzes_taken": history.total_quizzes_taken,
                "average_score": history.average_score,
                "best_score": history.best_score,
                "current_streak": history.current_streak,
                "longest_streak": history.longest_streak,
                "performance_trend": history.performance_trend,
                "recent_performance": list(history.recent_performance or []),
                "achievements": list(history.achievements or []),
            }

    # ========================================
    # Maintenance
    # ========================================

    def retire_stale(self) -> list[tuple[str, str]]:
        """Retire old low-usage and low-quality blueprints. Idempotent."""
        now = self.clock()
        cutoff = now - timedelta(days=self.config.retire_age_days)
        retired = []
        with self.db.session_scope() as session:
            for entry, reason in QuizPoolRepository(session).retirement_candidates(
                cutoff,
                self.config.retire_min_uses,
                self.config.retire_min_quality,
                low_usage_reason(self.config.retire_age_days),
            ):
                entry.is_active = False
                entry.retired_at = now
                entry.retirement_reason = reason
                retired.append((entry.quiz_id, reason))
        for quiz_id, reason in retired:
            logger.info("Retired blueprint {}: {}", quiz_id, reason)
        return retired

    def replenish(self) -> list[str]:
        """Build blueprints until the target size, bounded per run, rotating difficulty."""
        with self.db.session_scope() as session:
            active = QuizPoolRepository(session).count_active()
        if active >= self.config.min_size:
            return []

        needed = min(self.config.target_size - active, self.config.max_generation_per_run)
        logger.info("Pool has {} active blueprints, building {}", active, needed)
        created = []
        for i in range(needed):
            difficulty = DIFFICULTY_ROTATION[i % len(DIFFICULTY_ROTATION)]
            try:
                quiz_id = self.create_blueprint(difficulty)
            except CertPrepError as exc:
                logger.error("Blueprint creation failed ({}): {}", difficulty, exc)
                continue
            if quiz_id:
                created.append(quiz_id)
        return created

    def maintain(self) -> MaintenanceReport:
        report = MaintenanceReport()
        report.retired = self.retire_stale()
        report.created = self.replenish()
        report.health = self.health()
        return report

    def health(self) -> PoolHealth:
        """
        Pool health score.

        Starts at 100: -30 below the minimum size, -20 when average quality is
        below 70, -15 when the average difficulty rating is outside 3-8.
        Quality and difficulty only count when there are active blueprints.
        """
        with self.db.session_scope() as session:
            stats = QuizPoolRepository(session).stats()

        score = 100
        if stats["active"] < self.config.min_size:
            score -= 30
        if stats["average_quality"] is not None and stats["average_quality"] < 70:
            score -= 20
        rating = stats["average_difficulty_rating"]
        if rating is not None and not 3 <= rating <= 8:
            score -= 15

        return PoolHealth(
            active=stats["active"],
            retired=stats["retired"],
            average_quality=round(stats["average_quality"], 1) if stats["average_quality"] is not None else None,
            average_difficulty_rating=round(rating, 1) if rating is not None else None,
            total_uses=stats["total_uses"],
            by_difficulty=stats["by_difficulty"],
            health_score=score,
            status=health_status(score),
            needs_replenishment=stats["active"] < self.config.min_size,
        )
