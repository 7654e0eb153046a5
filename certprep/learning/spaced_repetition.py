"""
Spaced Repetition Tracker for per (user, question) review scheduling.

Implements a simplified SM-2 schedule on top of a full attempt history:
- Correct answers grow the interval (1 day, 6 days, then interval x ease)
- Incorrect answers reset the interval to one day and lower the ease
- A periodic sweep marks rows whose due date has passed as due

The scheduling math lives in pure functions over ``ProgressState`` so it can
be tested without a database; ``SpacedRepetitionTracker`` loads and stores
state through ProgressRepository.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certprep.config import Settings
from certprep.core.clock import Clock, utcnow
from certprep.core.rounding import round_half_up
from certprep.db.database import Database
from certprep.db.repositories.progress import ProgressRepository

# Mastery thresholds
MASTERY_MIN_ATTEMPTS = 5
MASTERY_MIN_ACCURACY = 90
MASTERY_MIN_STREAK = 3

# Trend thresholds
TREND_WINDOW = 3
TREND_THRESHOLD = 10


@dataclass(frozen=True)
class SM2Config:
    """Ease factor bounds and steps."""

    default_ease: float = 2.5
    min_ease: float = 1.3
    max_ease: float = 3.0
    ease_bonus: float = 0.1
    ease_penalty: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings) -> SM2Config:
        return cls(
            default_ease=settings.sr_default_ease_factor,
            min_ease=settings.sr_min_ease_factor,
            max_ease=settings.sr_max_ease_factor,
            ease_bonus=settings.sr_ease_bonus,
            ease_penalty=settings.sr_ease_penalty,
        )


@dataclass
class Attempt:
    """One answer to one question."""

    attempted_at: datetime
    selected_answer: str
    is_correct: bool
    time_spent: float = 0.0
    difficulty: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted_at": self.attempted_at.isoformat(),
            "selected_answer": self.selected_answer,
            "is_correct": self.is_correct,
            "time_spent": self.time_spent,
            "difficulty": self.difficulty,
            "session_id": self.session_id,
        }


@dataclass
class ProgressState:
    """Review state for one user on one question."""

    user_id: str
    question_id: str
    attempts: list[dict[str, Any]] = field(default_factory=list)

    total_attempts: int = 0
    correct_attempts: int = 0
    accuracy: int = 0
    current_streak: int = 0
    best_streak: int = 0
    average_time_spent: int = 0
    first_attempt_at: datetime | None = None
    last_attempt_at: datetime | None = None
    is_mastered: bool = False

    trend: str = "insufficient_data"
    common_mistakes: dict[str, int] = field(default_factory=dict)
    difficulty_performance: dict[str, dict[str, int]] = field(default_factory=dict)
    next_review_priority: str = "medium"
    next_review_at: datetime | None = None

    review_count: int = 0
    interval_days: int = 1
    ease_factor: float = 2.5
    due_date: datetime | None = None
    is_due: bool = True

    def due_at(self, now: datetime) -> bool:
        """Due flag set by the sweep, or a due date that has already passed."""
        return self.is_due or (self.due_date is not None and self.due_date <= now)

    @property
    def needs_practice(self) -> bool:
        return not self.is_mastered and (
            self.accuracy < 80 or self.current_streak < MASTERY_MIN_STREAK or self.is_due
        )


@dataclass
class UserLearningStats:
    """Per-user rollup across all tracked questions."""

    total_questions: int
    mastered_questions: int
    average_accuracy: int
    needs_practice: int
    due_for_review: int

    @property
    def mastery_percentage(self) -> int:
        if self.total_questions == 0:
            return 0
        return round_half_up(self.mastered_questions / self.total_questions * 100)


# ========================================
# Pure transitions
# ========================================


def compute_mastery(state: ProgressState) -> bool:
    """Strict mastery: recomputed from scratch, so one wrong answer clears it."""
    last = state.attempts[-MASTERY_MIN_STREAK:]
    return (
        state.total_attempts >= MASTERY_MIN_ATTEMPTS
        and state.accuracy >= MASTERY_MIN_ACCURACY
        and state.current_streak >= MASTERY_MIN_STREAK
        and len(last) == MASTERY_MIN_STREAK
        and all(a["is_correct"] for a in last)
    )


def compute_trend(attempts: list[dict[str, Any]]) -> str:
    """Compare accuracy of the last three attempts with the three before them."""
    if len(attempts) < TREND_WINDOW * 2:
        return "insufficient_data"

    def _accuracy(window: list[dict[str, Any]]) -> float:
        return sum(1 for a in window if a["is_correct"]) / len(window) * 100

    recent = _accuracy(attempts[-TREND_WINDOW:])
    older = _accuracy(attempts[-TREND_WINDOW * 2 : -TREND_WINDOW])
    delta = recent - older
    if delta > TREND_THRESHOLD:
        return "improving"
    if delta < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def next_review_recommendation(
    accuracy: int, current_streak: int, now: datetime
) -> tuple[str, datetime]:
    """Priority bucket and suggested review date from overall performance."""
    if accuracy < 50:
        return "critical", now + timedelta(days=1)
    if accuracy < 70:
        return "high", now + timedelta(days=3)
    if current_streak >= MASTERY_MIN_STREAK and accuracy >= MASTERY_MIN_ACCURACY:
        return "low", now + timedelta(days=30)
    return "medium", now + timedelta(days=7)


def schedule(
    state: ProgressState, is_correct: bool, now: datetime, config: SM2Config
) -> tuple[int, int, float, datetime]:
    """
    SM-2 step.

    Returns:
        (review_count, interval_days, ease_factor, due_date)
    """
    if is_correct:
        review_count = state.review_count + 1
        if review_count == 1:
            interval = 1
        elif review_count == 2:
            interval = 6
        else:
            interval = round_half_up(state.interval_days * state.ease_factor)
        ease = min(config.max_ease, state.ease_factor + config.ease_bonus)
    else:
        review_count = state.review_count
        interval = 1
        ease = max(config.min_ease, state.ease_factor - config.ease_penalty)
    return review_count, interval, round(ease, 2), now + timedelta(days=interval)


def apply_attempt(
    state: ProgressState, attempt: Attempt, config: SM2Config | None = None
) -> ProgressState:
    """Return the state after ``attempt``; ``state`` itself is not modified."""
    config = config or SM2Config()
    now = attempt.attempted_at

    total = state.total_attempts + 1
    correct = state.correct_attempts + (1 if attempt.is_correct else 0)
    streak = state.current_streak + 1 if attempt.is_correct else 0

    mistakes = dict(state.common_mistakes)
    if not attempt.is_correct:
        mistakes[attempt.selected_answer] = mistakes.get(attempt.selected_answer, 0) + 1

    by_difficulty = {k: dict(v) for k, v in state.difficulty_performance.items()}
    if attempt.difficulty:
        bucket = by_difficulty.setdefault(
            attempt.difficulty, {"attempts": 0, "correct": 0, "accuracy": 0}
        )
        bucket["attempts"] += 1
        bucket["correct"] += 1 if attempt.is_correct else 0
        bucket["accuracy"] = round_half_up(bucket["correct"] / bucket["attempts"] * 100)

    review_count, interval, ease, due_date = schedule(state, attempt.is_correct, now, config)

    new = replace(
        state,
        attempts=[*state.attempts, attempt.to_dict()],
        total_attempts=total,
        correct_attempts=correct,
        accuracy=round_half_up(correct / total * 100),
        current_streak=streak,
        best_streak=max(state.best_streak, streak),
        average_time_spent=round(
            (state.average_time_spent * state.total_attempts + attempt.time_spent) / total
        ),
        first_attempt_at=state.first_attempt_at or now,
        last_attempt_at=now,
        common_mistakes=mistakes,
        difficulty_performance=by_difficulty,
        review_count=review_count,
        interval_days=interval,
        ease_factor=ease,
        due_date=due_date,
        is_due=False,
    )
    new.is_mastered = compute_mastery(new)
    new.trend = compute_trend(new.attempts)
    new.next_review_priority, new.next_review_at = next_review_recommendation(
        new.accuracy, new.current_streak, now
    )
    return new


# ========================================
# Tracker service
# ========================================


class SpacedRepetitionTracker:
    """
    Repository-backed tracker.

    Methods that take ``session`` join the caller's transaction when one is
    given, otherwise they run in their own ``session_scope``.
    """

    def __init__(self, db: Database, config: SM2Config | None = None, clock: Clock = utcnow):
        self.db = db
        self.config = config or SM2Config()
        self.clock = clock

    def record_attempt(
        self,
        user_id: str,
        question_id: str,
        *,
        selected_answer: str,
        is_correct: bool,
        time_spent: float = 0.0,
        difficulty: str | None = None,
        session_id: str | None = None,
        session: Session | None = None,
    ) -> ProgressState:
        """
        Append an attempt and reschedule the question.

        The first attempt creates the progress row. When two first attempts
        race, the loser's insert hits the unique key; in standalone mode it
        reloads the winner's row and applies on top of it.
        """
        attempt = Attempt(
            attempted_at=self.clock(),
            selected_answer=selected_answer,
            is_correct=is_correct,
            time_spent=time_spent,
            difficulty=difficulty,
            session_id=session_id,
        )
        if session is not None:
            return self._record(session, user_id, question_id, attempt)

        try:
            with self.db.session_scope() as own:
                return self._record(own, user_id, question_id, attempt)
        except IntegrityError:
            logger.debug("Concurrent first attempt for {}/{}, reapplying", user_id, question_id)
            with self.db.session_scope() as own:
                return self._record(own, user_id, question_id, attempt)

    def _record(
        self, session: Session, user_id: str, question_id: str, attempt: Attempt
    ) -> ProgressState:
        repo = ProgressRepository(session)
        row = repo.get(user_id, question_id)
        if row is None:
            state = ProgressState(
                user_id=user_id, question_id=question_id, ease_factor=self.config.default_ease
            )
            row = repo.create(user_id, question_id)
        else:
            state = repo.to_state(row)

        new_state = apply_attempt(state, attempt, self.config)
        repo.apply_state(row, new_state)
        session.flush()
        logger.debug(
            "Attempt {}/{} correct={} interval={}d ease={}",
            user_id,
            question_id,
            attempt.is_correct,
            new_state.interval_days,
            new_state.ease_factor,
        )
        return new_state

    def get_progress(self, user_id: str, question_id: str) -> ProgressState | None:
        with self.db.session_scope() as session:
            repo = ProgressRepository(session)
            row = repo.get(user_id, question_id)
            return repo.to_state(row) if row else None

    def progress_map(
        self, session: Session, user_id: str, question_ids: list[str]
    ) -> dict[str, ProgressState]:
        """Progress for a set of questions, keyed by question id (missing = never attempted)."""
        repo = ProgressRepository(session)
        return {row.question_id: repo.to_state(row) for row in repo.for_questions(user_id, question_ids)}

    def recent_question_ids(self, session: Session, user_id: str, window_days: int) -> set[str]:
        since = self.clock() - timedelta(days=window_days)
        return ProgressRepository(session).attempted_since(user_id, since)

    def sweep_due(self, now: datetime | None = None) -> int:
        """Mark every row past its due date as due. Idempotent; returns rows flipped."""
        now = now or self.clock()
        with self.db.session_scope() as session:
            flipped = ProgressRepository(session).mark_due(now)
        if flipped:
            logger.info("Due sweep flagged {} questions for review", flipped)
        return flipped

    def find_due_for_review(self, user_id: str, limit: int = 10) -> list[ProgressState]:
        """Questions due for review, most overdue first."""
        now = self.clock()
        with self.db.session_scope() as session:
            repo = ProgressRepository(session)
            return [repo.to_state(row) for row in repo.due_for_user(user_id, now, limit)]

    def user_stats(self, user_id: str) -> UserLearningStats:
        now = self.clock()
        with self.db.session_scope() as session:
            repo = ProgressRepository(session)
            states = [repo.to_state(row) for row in repo.for_user(user_id)]

        if not states:
            return UserLearningStats(0, 0, 0, 0, 0)
        return UserLearningStats(
            total_questions=len(states),
            mastered_questions=sum(1 for s in states if s.is_mastered),
            average_accuracy=round_half_up(sum(s.accuracy for s in states) / len(states)),
            needs_practice=sum(1 for s in states if s.needs_practice),
            due_for_review=sum(1 for s in states if s.due_at(now)),
        )
