"""Repository for QuizSession rows."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from certprep.db.models import OPEN_STATUSES, QuizSession


class QuizSessionRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_id: str) -> QuizSession | None:
        return self.session.get(QuizSession, session_id)

    def add(self, row: QuizSession) -> QuizSession:
        self.session.add(row)
        self.session.flush()
        return row

    def open_for_user(self, user_id: str) -> QuizSession | None:
        return self.session.scalar(
            select(QuizSession)
            .where(QuizSession.user_id == user_id, QuizSession.status.in_(OPEN_STATUSES))
            .order_by(QuizSession.started_at.desc())
            .limit(1)
        )

    def completed_percentages(self, user_id: str, exclude_session_id: str | None = None) -> list[float]:
        """Final percentages of the user's completed sessions, oldest first."""
        query = (
            select(QuizSession.score)
            .where(QuizSession.user_id == user_id, QuizSession.status == "completed")
            .order_by(QuizSession.ended_at)
        )
        if exclude_session_id:
            query = query.where(QuizSession.session_id != exclude_session_id)
        return [float((score or {}).get("percentage", 0)) for score in self.session.scalars(query)]

    def inactive_since(self, cutoff: datetime) -> list[str]:
        """Ids of active sessions with no activity after ``cutoff``."""
        return list(
            self.session.scalars(
                select(QuizSession.session_id).where(
                    QuizSession.status == "active",
                    QuizSession.last_activity_at < cutoff,
                )
            )
        )

    def recent_for_user(self, user_id: str, limit: int = 10) -> list[QuizSession]:
        return list(
            self.session.scalars(
                select(QuizSession)
                .where(QuizSession.user_id == user_id)
                .order_by(QuizSession.started_at.desc())
                .limit(limit)
            )
        )
