"""
Repository for the shared quiz pool, its completion ledger and the per-user
history projection.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from certprep.core.taxonomy import ADAPTIVE
from certprep.db.models import QuizCompletion, QuizPoolEntry, QuizPoolUsage, UserQuizHistory


class QuizPoolRepository:
    def __init__(self, session: Session):
        self.session = session

    # ========================================
    # Blueprints
    # ========================================

    def get(self, quiz_id: str) -> QuizPoolEntry | None:
        return self.session.get(QuizPoolEntry, quiz_id)

    def add(self, entry: QuizPoolEntry) -> QuizPoolEntry:
        self.session.add(entry)
        self.session.flush()
        return entry

    def active_entries(self) -> list[QuizPoolEntry]:
        return list(
            self.session.scalars(
                select(QuizPoolEntry)
                .where(QuizPoolEntry.is_active.is_(True), QuizPoolEntry.retired_at.is_(None))
                .order_by(QuizPoolEntry.created_at)
            )
        )

    def count_active(self) -> int:
        return (
            self.session.scalar(
                select(func.count())
                .select_from(QuizPoolEntry)
                .where(QuizPoolEntry.is_active.is_(True), QuizPoolEntry.retired_at.is_(None))
            )
            or 0
        )

    def oldest_unseen(self, user_id: str, difficulty: str | None) -> QuizPoolEntry | None:
        """Oldest available blueprint the user has no ledger row for."""
        completed = select(QuizCompletion.quiz_id).where(QuizCompletion.user_id == user_id)
        query = select(QuizPoolEntry).where(
            QuizPoolEntry.is_active.is_(True),
            QuizPoolEntry.retired_at.is_(None),
            QuizPoolEntry.quiz_id.notin_(completed),
        )
        if difficulty and difficulty != ADAPTIVE:
            query = query.where(QuizPoolEntry.difficulty == difficulty)
        query = query.order_by(QuizPoolEntry.created_at, QuizPoolEntry.quiz_id).limit(1)
        return self.session.scalar(query)

    def retirement_candidates(
        self, created_before: datetime, min_uses: int, min_quality: int, low_usage_reason: str
    ) -> list[tuple[QuizPoolEntry, str]]:
        """Active blueprints that should be retired, with the reason."""
        candidates = []
        for entry in self.active_entries():
            if entry.created_at < created_before and entry.total_uses < min_uses:
                candidates.append((entry, low_usage_reason))
            elif entry.quality_score < min_quality:
                candidates.append((entry, "Quality score below threshold"))
        return candidates

    # ========================================
    # Usage rows (usedBy projection)
    # ========================================

    def usage_for(self, quiz_id: str) -> list[QuizPoolUsage]:
        return list(
            self.session.scalars(select(QuizPoolUsage).where(QuizPoolUsage.quiz_id == quiz_id))
        )

    def add_usage(
        self,
        quiz_id: str,
        user_id: str,
        score: float,
        percentage: float | None,
        completion_time: float | None,
        used_at: datetime,
    ) -> QuizPoolUsage:
        usage = QuizPoolUsage(
            quiz_id=quiz_id,
            user_id=user_id,
            score=score,
            percentage=percentage,
            completion_time=completion_time,
            used_at=used_at,
        )
        self.session.add(usage)
        self.session.flush()
        return usage

    def usage_for_user(self, user_id: str) -> list[QuizPoolUsage]:
        return list(
            self.session.scalars(select(QuizPoolUsage).where(QuizPoolUsage.user_id == user_id))
        )

    # ========================================
    # Completion ledger
    # ========================================

    def get_completion(self, user_id: str, quiz_id: str) -> QuizCompletion | None:
        return self.session.scalar(
            select(QuizCompletion).where(
                QuizCompletion.user_id == user_id, QuizCompletion.quiz_id == quiz_id
            )
        )

    def add_completion(self, completion: QuizCompletion) -> QuizCompletion:
        self.session.add(completion)
        self.session.flush()
        return completion

    def completions_for_user(self, user_id: str) -> list[QuizCompletion]:
        return list(
            self.session.scalars(
                select(QuizCompletion)
                .where(QuizCompletion.user_id == user_id)
                .order_by(QuizCompletion.completed_at, QuizCompletion.id)
            )
        )

    # ========================================
    # User history projection
    # ========================================

    def get_history(self, user_id: str) -> UserQuizHistory | None:
        return self.session.get(UserQuizHistory, user_id)

    def get_or_create_history(self, user_id: str) -> UserQuizHistory:
        history = self.get_history(user_id)
        if history is None:
            history = UserQuizHistory(user_id=user_id, recent_performance=[], achievements=[])
            self.session.add(history)
        return history

    def stats(self) -> dict[str, Any]:
        """Aggregates over active blueprints."""
        active = (QuizPoolEntry.is_active.is_(True), QuizPoolEntry.retired_at.is_(None))
        row = self.session.execute(
            select(
                func.count(),
                func.avg(QuizPoolEntry.quality_score),
                func.avg(QuizPoolEntry.difficulty_rating),
                func.coalesce(func.sum(QuizPoolEntry.total_uses), 0),
            ).where(*active)
        ).one()
        by_difficulty = dict(
            self.session.execute(
                select(QuizPoolEntry.difficulty, func.count())
                .where(*active)
                .group_by(QuizPoolEntry.difficulty)
            ).all()
        )
        retired = self.session.scalar(
            select(func.count()).select_from(QuizPoolEntry).where(QuizPoolEntry.is_active.is_(False))
        )
        return {
            "active": row[0] or 0,
            "average_quality": float(row[1]) if row[1] is not None else None,
            "average_difficulty_rating": float(row[2]) if row[2] is not None else None,
            "total_uses": int(row[3] or 0),
            "by_difficulty": by_difficulty,
            "retired": retired or 0,
        }
