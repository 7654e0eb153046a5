"""
User quiz history projection.

The completion ledger is the only authority for which quizzes a user has
finished. Everything on UserQuizHistory except the current assignment is
derived by replaying the user's ledger rows in completion order, so an
incremental update and a full ``reconcile`` produce the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from certprep.core.rounding import round_half_up

RECENT_LIMIT = 5
TREND_THRESHOLD = 5
IMPROVEMENT_MILESTONE = 20

ACHIEVEMENT_DETAILS = {
    "first_quiz": "Completed your first CNA practice quiz!",
    "perfect_score": "Perfect score! You got 100% on a quiz!",
    "streak_week": "One week streak! You've taken quizzes for 7 consecutive days!",
    "streak_month": "One month streak! You've taken quizzes for 30 consecutive days!",
    "improvement_milestone": "Major improvement! Your scores have improved by over 20% in recent quizzes!",
}


@dataclass
class CompletionRecord:
    """One ledger row as seen by the projection."""

    quiz_id: str
    score: float
    percentage: float | None
    completed_at: datetime

    @property
    def effective_percentage(self) -> float:
        return self.percentage if self.percentage is not None else self.score


@dataclass
class HistoryProjection:
    total_quizzes_taken: int = 0
    average_score: int = 0
    best_score: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    last_quiz_at: datetime | None = None
    performance_trend: str = "insufficient_data"
    recent_performance: list[dict[str, Any]] = field(default_factory=list)
    achievements: list[dict[str, Any]] = field(default_factory=list)


def performance_trend(recent: list[dict[str, Any]]) -> str:
    """Average of the last two results against the two before, over the last three."""
    if len(recent) < 3:
        return "insufficient_data"
    a, b, c = (r["percentage"] for r in recent[-3:])
    improvement = (b + c) / 2 - (a + b) / 2
    if improvement > TREND_THRESHOLD:
        return "improving"
    if improvement < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def _earned(projection: HistoryProjection, record: CompletionRecord) -> list[str]:
    earned = []
    if projection.total_quizzes_taken == 1:
        earned.append("first_quiz")
    if record.effective_percentage >= 100:
        earned.append("perfect_score")
    if projection.current_streak == 7:
        earned.append("streak_week")
    elif projection.current_streak == 30:
        earned.append("streak_month")
    recent = projection.recent_performance
    if len(recent) >= RECENT_LIMIT and recent[-1]["percentage"] - recent[0]["percentage"] >= IMPROVEMENT_MILESTONE:
        earned.append("improvement_milestone")
    return earned


def project_history(records: list[CompletionRecord]) -> HistoryProjection:
    """Replay ledger rows (any order) into the history projection."""
    projection = HistoryProjection()
    total_score = 0.0
    last_day = None

    for record in sorted(records, key=lambda r: r.completed_at):
        projection.total_quizzes_taken += 1
        total_score += record.score
        projection.average_score = round_half_up(total_score / projection.total_quizzes_taken)
        projection.best_score = max(projection.best_score, record.score)

        day = record.completed_at.date()
        if last_day is None:
            projection.current_streak = 1
        else:
            gap = (day - last_day).days
            if gap == 1:
                projection.current_streak += 1
            elif gap > 1:
                projection.current_streak = 1
        last_day = day
        projection.longest_streak = max(projection.longest_streak, projection.current_streak)
        projection.last_quiz_at = record.completed_at

        projection.recent_performance = [
            *projection.recent_performance,
            {
                "quiz_id": record.quiz_id,
                "date": record.completed_at.isoformat(),
                "score": record.score,
                "percentage": record.effective_percentage,
            },
        ][-RECENT_LIMIT:]
        projection.performance_trend = performance_trend(projection.recent_performance)

        owned = {a["type"] for a in projection.achievements}
        for kind in _earned(projection, record):
            if kind not in owned:
                projection.achievements.append(
                    {
                        "type": kind,
                        "earned_at": record.completed_at.isoformat(),
                        "details": ACHIEVEMENT_DETAILS[kind],
                    }
                )
    return projection
