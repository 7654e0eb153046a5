"""
Quiz completion models.

Implements:
- QuizCompletion: the completion ledger, the single authority for
  "user U completed blueprint Q" (unique per pair)
- UserQuizHistory: per-user projection (assignment, stats, achievements)
  rebuilt from the ledger by QuizPoolManager.reconcile

UserQuizHistory is updated by concurrent completions, so it carries a version
column for optimistic locking.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from certprep.core.clock import utcnow

from .base import Base


class QuizCompletion(Base):
    """Ledger row: one per (user, blueprint)."""

    __tablename__ = "quiz_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quiz_id: Mapped[str] = mapped_column(String(64), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "quiz_id", name="uq_quiz_completion_user_quiz"),
        Index("ix_quiz_completion_quiz", "quiz_id"),
    )

    def __repr__(self) -> str:
        return f"<QuizCompletion(user={self.user_id}, quiz={self.quiz_id}, score={self.score})>"


class UserQuizHistory(Base):
    """Per-user quiz assignment and performance projection."""

    __tablename__ = "user_quiz_history"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Current assignment
    assigned_quiz_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    assignment_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Stats
    total_quizzes_taken: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_quiz_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    performance_trend: Mapped[str] = mapped_column(
        String(20), nullable=False, default="insufficient_data"
    )
    recent_performance: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    achievements: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_user_quiz_history_assigned", "assigned_quiz_id"),
        Index("ix_user_quiz_history_last_quiz", "last_quiz_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserQuizHistory(user={self.user_id}, taken={self.total_quizzes_taken}, "
            f"assigned={self.assigned_quiz_id})>"
        )
