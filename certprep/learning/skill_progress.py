"""
Skill Progress Service for per-topic performance aggregates.

Tracks each learner's accuracy per skill topic across quizzes:
- Rolling history of the last 20 quiz results per topic
- Trend of the last five results against the five before them
- Strength classification (weak, developing, strong, mastered)

Rows are hot (every completed quiz touches several of them), so writes go
through ``retry_with_backoff`` with the row's version column detecting
concurrent updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError

from certprep.core.clock import Clock, utcnow
from certprep.core.rounding import round_half_up
from certprep.core.concurrency import retry_with_backoff
from certprep.core.exceptions import VersionConflict
from certprep.db.database import Database
from certprep.db.repositories.skill_progress import SkillProgressRepository

HISTORY_LIMIT = 20
TREND_WINDOW = 5
TREND_MIN_ENTRIES = 3
TREND_THRESHOLD = 10

PRACTICE_URGENCY = {
    "weak": "critical",
    "developing": "high",
    "strong": "medium",
    "mastered": "low",
}


@dataclass
class TopicResult:
    """Correct/total for one skill topic within one quiz."""

    skill_topic: str
    correct: int
    total: int
    competency_area: str | None = None


@dataclass
class SkillProgressState:
    """Aggregate for one user on one skill topic."""

    user_id: str
    skill_topic: str
    competency_area: str | None = None
    total_questions: int = 0
    correct_answers: int = 0
    accuracy: int = 0
    trend: str = "insufficient_data"
    strength_level: str = "developing"
    quiz_history: list[dict[str, Any]] = field(default_factory=list)
    last_practiced_at: datetime | None = None

    @property
    def practice_urgency(self) -> str:
        return PRACTICE_URGENCY[self.strength_level]

    @property
    def needs_practice(self) -> bool:
        return self.strength_level != "mastered"


@dataclass
class SkillSummary:
    """User-level rollup across skill topics."""

    total_skills: int = 0
    mastered_skills: int = 0
    strong_skills: int = 0
    developing_skills: int = 0
    weak_skills: int = 0
    overall_accuracy: int = 0
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)


def skill_trend(history: list[dict[str, Any]]) -> str:
    """Mean accuracy of the last five results against the five before them."""
    if len(history) < TREND_MIN_ENTRIES:
        return "insufficient_data"
    recent = history[-TREND_WINDOW:]
    older = history[-TREND_WINDOW * 2 : -TREND_WINDOW]
    if not older:
        return "insufficient_data"

    recent_avg = sum(h["accuracy"] for h in recent) / len(recent)
    older_avg = sum(h["accuracy"] for h in older) / len(older)
    delta = recent_avg - older_avg
    if delta > TREND_THRESHOLD:
        return "improving"
    if delta < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def strength_level(accuracy: int, total_questions: int) -> str:
    if total_questions < 5:
        return "developing"
    if accuracy >= 90 and total_questions >= 20:
        return "mastered"
    if accuracy >= 80:
        return "strong"
    if accuracy >= 60:
        return "developing"
    return "weak"


def apply_quiz_result(
    state: SkillProgressState,
    session_id: str,
    correct: int,
    total: int,
    completed_at: datetime,
) -> SkillProgressState:
    """Fold one quiz's result for this topic into the aggregate (returns a new state)."""
    total_questions = state.total_questions + total
    correct_answers = state.correct_answers + correct
    accuracy = round_half_up(correct_answers / total_questions * 100) if total_questions else 0

    entry = {
        "session_id": session_id,
        "correct": correct,
        "total": total,
        "accuracy": round_half_up(correct / total * 100) if total else 0,
        "completed_at": completed_at.isoformat(),
    }
    history = [*state.quiz_history, entry][-HISTORY_LIMIT:]

    return SkillProgressState(
        user_id=state.user_id,
        skill_topic=state.skill_topic,
        competency_area=state.competency_area,
        total_questions=total_questions,
        correct_answers=correct_answers,
        accuracy=accuracy,
        trend=skill_trend(history),
        strength_level=strength_level(accuracy, total_questions),
        quiz_history=history,
        last_practiced_at=completed_at,
    )


class SkillProgressService:
    """Persists SkillProgressState under optimistic concurrency."""

    def __init__(
        self,
        db: Database,
        clock: Clock = utcnow,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ):
        self.db = db
        self.clock = clock
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    def record_quiz(self, user_id: str, session_id: str, results: list[TopicResult]) -> list[SkillProgressState]:
        """
        Update every touched topic after a quiz.

        Each topic is its own short transaction so a conflict on one row only
        retries that row.
        """
        updated = []
        for result in results:
            if result.total <= 0:
                continue
            updated.append(
                retry_with_backoff(
                    lambda attempt, r=result: self._record_topic(user_id, session_id, r),
                    attempts=self.retry_attempts,
                    base_delay=self.retry_base_delay,
                    retry_on=(VersionConflict, IntegrityError),
                    label=f"skill progress {user_id}/{result.skill_topic}",
                )
            )
        logger.info("Updated {} skill topics for {} after {}", len(updated), user_id, session_id)
        return updated

    def _record_topic(self, user_id: str, session_id: str, result: TopicResult) -> SkillProgressState:
        with self.db.session_scope() as session:
            repo = SkillProgressRepository(session)
            row = repo.get_or_create(user_id, result.skill_topic, result.competency_area)
            state = apply_quiz_result(
                _to_state(row), session_id, result.correct, result.total, self.clock()
            )
            row.total_questions = state.total_questions
            row.correct_answers = state.correct_answers
            row.accuracy = state.accuracy
            row.trend = state.trend
            row.strength_level = state.strength_level
            row.quiz_history = list(state.quiz_history)
            row.last_practiced_at = state.last_practiced_at
            if row.competency_area is None:
                row.competency_area = result.competency_area
            return state

    def get_user_skills(self, user_id: str) -> list[SkillProgressState]:
        with self.db.session_scope() as session:
            return [_to_state(row) for row in SkillProgressRepository(session).for_user(user_id)]

    def get_summary(self, user_id: str) -> SkillSummary:
        skills = self.get_user_skills(user_id)
        if not skills:
            return SkillSummary()

        levels = [s.strength_level for s in skills]
        return SkillSummary(
            total_skills=len(skills),
            mastered_skills=levels.count("mastered"),
            strong_skills=levels.count("strong"),
            developing_skills=levels.count("developing"),
            weak_skills=levels.count("weak"),
            overall_accuracy=round_half_up(sum(s.accuracy for s in skills) / len(skills)),
            strengths=[s.skill_topic for s in skills if s.strength_level in ("mastered", "strong")][:3],
            weaknesses=[s.skill_topic for s in skills if s.strength_level in ("weak", "developing")][-3:],
        )


def _to_state(row) -> SkillProgressState:
    return SkillProgressState(
        user_id=row.user_id,
        skill_topic=row.skill_topic,
        competency_area=row.competency_area,
        total_questions=row.total_questions or 0,
        correct_answers=row.correct_answers or 0,
        accuracy=row.accuracy or 0,
        trend=row.trend or "insufficient_data",
        strength_level=row.strength_level or "developing",
        quiz_history=list(row.quiz_history or []),
        last_practiced_at=row.last_practiced_at,
    )
