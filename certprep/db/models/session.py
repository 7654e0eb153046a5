"""
Quiz session model.

A session is one user's attempt at a quiz, either a personalized practice
selection or a blueprint served from the shared pool. Lifecycle transitions
are computed by QuizSessionMachine and persisted by QuizSessionRepository
under optimistic locking (``version``).

At most one session per user may be open (active or paused). A partial
unique index enforces that on PostgreSQL and SQLite.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from certprep.core.clock import utcnow

from .base import Base

OPEN_STATUSES = ("active", "paused")

_OPEN_PREDICATE = "status IN ('active', 'paused')"


class QuizSession(Base):
    """A user's quiz attempt."""

    __tablename__ = "quiz_sessions"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Configuration
    quiz_type: Mapped[str] = mapped_column(String(20), nullable=False, default="practice")
    quiz_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    question_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    competency_distribution: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="adaptive")
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Ordered questions with selection reason and taxonomy snapshot
    questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Progress
    current_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    answers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    score: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    competency_performance: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_pause_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    average_time_per_question: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    abandon_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    results: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_quiz_sessions_user_status", "user_id", "status"),
        Index("ix_quiz_sessions_status_activity", "status", "last_activity_at"),
        Index(
            "uq_quiz_sessions_one_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=text(_OPEN_PREDICATE),
            sqlite_where=text(_OPEN_PREDICATE),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<QuizSession(id={self.session_id}, user={self.user_id}, "
            f"status={self.status}, position={self.current_position})>"
        )
