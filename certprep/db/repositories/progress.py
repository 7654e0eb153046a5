"""Repository for UserQuestionProgress rows."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from certprep.db.models import UserQuestionProgress

if TYPE_CHECKING:
    from certprep.learning.spaced_repetition import ProgressState

# Columns copied one-to-one between the row and ProgressState
_STATE_FIELDS = (
    "total_attempts",
    "correct_attempts",
    "accuracy",
    "current_streak",
    "best_streak",
    "average_time_spent",
    "first_attempt_at",
    "last_attempt_at",
    "is_mastered",
    "trend",
    "next_review_priority",
    "next_review_at",
    "review_count",
    "interval_days",
    "ease_factor",
    "due_date",
    "is_due",
)


class ProgressRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str, question_id: str) -> UserQuestionProgress | None:
        return self.session.scalar(
            select(UserQuestionProgress).where(
                UserQuestionProgress.user_id == user_id,
                UserQuestionProgress.question_id == question_id,
            )
        )

    def create(self, user_id: str, question_id: str) -> UserQuestionProgress:
        row = UserQuestionProgress(user_id=user_id, question_id=question_id)
        self.session.add(row)
        return row

    def for_user(self, user_id: str) -> list[UserQuestionProgress]:
        return list(
            self.session.scalars(
                select(UserQuestionProgress).where(UserQuestionProgress.user_id == user_id)
            )
        )

    def for_questions(
        self, user_id: str, question_ids: Iterable[str]
    ) -> list[UserQuestionProgress]:
        ids = list(question_ids)
        if not ids:
            return []
        return list(
            self.session.scalars(
                select(UserQuestionProgress).where(
                    UserQuestionProgress.user_id == user_id,
                    UserQuestionProgress.question_id.in_(ids),
                )
            )
        )

    def attempted_since(self, user_id: str, since: datetime) -> set[str]:
        rows = self.session.scalars(
            select(UserQuestionProgress.question_id).where(
                UserQuestionProgress.user_id == user_id,
                UserQuestionProgress.last_attempt_at >= since,
            )
        )
        return set(rows)

    def due_for_user(self, user_id: str, now: datetime, limit: int) -> list[UserQuestionProgress]:
        return list(
            self.session.scalars(
                select(UserQuestionProgress)
                .where(
                    UserQuestionProgress.user_id == user_id,
                    (UserQuestionProgress.is_due.is_(True)) | (UserQuestionProgress.due_date <= now),
                )
                .order_by(UserQuestionProgress.due_date.asc().nulls_first())
                .limit(limit)
            )
        )

    def mark_due(self, now: datetime) -> int:
        result = self.session.execute(
            update(UserQuestionProgress)
            .where(
                UserQuestionProgress.is_due.is_(False),
                UserQuestionProgress.due_date <= now,
            )
            .values(is_due=True)
        )
        return result.rowcount or 0

    # ========================================
    # State mapping
    # ========================================

    @staticmethod
    def to_state(row: UserQuestionProgress) -> ProgressState:
        from certprep.learning.spaced_repetition import ProgressState

        state = ProgressState(
            user_id=row.user_id,
            question_id=row.question_id,
            attempts=list(row.attempts or []),
            common_mistakes=dict(row.common_mistakes or {}),
            difficulty_performance={k: dict(v) for k, v in (row.difficulty_performance or {}).items()},
        )
        for name in _STATE_FIELDS:
            setattr(state, name, getattr(row, name))
        return state

    @staticmethod
    def apply_state(row: UserQuestionProgress, state: ProgressState) -> None:
        # JSON columns are reassigned (never mutated in place) so changes are tracked
        row.attempts = list(state.attempts)
        row.common_mistakes = dict(state.common_mistakes)
        row.difficulty_performance = {k: dict(v) for k, v in state.difficulty_performance.items()}
        for name in _STATE_FIELDS:
            setattr(row, name, getattr(state, name))
