"""
Per (user, question) progress model.

Holds the append-only attempt log, rollup statistics and the SM-2 review
state. Rows are written only through ProgressRepository, which maps them to
and from the pure ``ProgressState`` value used by SpacedRepetitionTracker.
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


class UserQuestionProgress(Base):
    """Review history and scheduling state for one user on one question."""

    __tablename__ = "user_question_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    question_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Append-only attempt log
    attempts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Rollups
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accuracy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_mastered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Learning analytics
    trend: Mapped[str] = mapped_column(String(20), nullable=False, default="insufficient_data")
    common_mistakes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    difficulty_performance: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    next_review_priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # SM-2 state
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_due: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_progress_user_question"),
        Index("ix_progress_user_last_attempt", "user_id", "last_attempt_at"),
        Index("ix_progress_user_due", "user_id", "is_due", "due_date"),
        Index("ix_progress_due_sweep", "is_due", "due_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserQuestionProgress(user={self.user_id}, question={self.question_id}, "
            f"attempts={self.total_attempts}, interval={self.interval_days}d)>"
        )
