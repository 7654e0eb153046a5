"""
Shared quiz pool models.

Implements:
- QuizPoolEntry: an immutable, pre-assembled quiz blueprint served to many users
- QuizPoolUsage: one row per (blueprint, user), the read-optimized "usedBy" list

Blueprint questions structure (JSON, server-only because it carries answers):
    [
        {
            "question_id": "q_...",
            "position": 1,
            "content": "...",
            "options": {"A": "...", "B": "...", "C": "...", "D": "..."},
            "correct_answer": "B",
            "explanation": "...",
            "competency_area": "...",
            "skill_category": "...",
            "skill_topic": "...",
            "test_subject": "...",
            "difficulty": "intermediate"
        }
    ]
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certprep.core.clock import utcnow

from .base import Base


class QuizPoolEntry(Base):
    """A shared quiz blueprint."""

    __tablename__ = "quiz_pool"

    quiz_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    questions: Mapped[list] = mapped_column(JSON, nullable=False)

    # Metadata
    target_distribution: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="intermediate")
    quality_score: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    generation_method: Mapped[str] = mapped_column(String(30), nullable=False, default="catalog")
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Aggregate usage statistics (derived from usage rows)
    total_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_completion_time: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    difficulty_rating: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    retired_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    retirement_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    usage: Mapped[list[QuizPoolUsage]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="QuizPoolUsage.used_at",
    )

    __table_args__ = (
        Index("ix_quiz_pool_available", "is_active", "difficulty", "created_at"),
    )

    @property
    def is_available(self) -> bool:
        return self.is_active and self.retired_at is None

    def __repr__(self) -> str:
        return (
            f"<QuizPoolEntry(id={self.quiz_id}, difficulty={self.difficulty}, "
            f"uses={self.total_uses}, active={self.is_active})>"
        )


class QuizPoolUsage(Base):
    """One user's recorded use of a blueprint."""

    __tablename__ = "quiz_pool_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quiz_id: Mapped[str] = mapped_column(
        ForeignKey("quiz_pool.quiz_id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    completion_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    entry: Mapped[QuizPoolEntry] = relationship(back_populates="usage")

    __table_args__ = (
        UniqueConstraint("quiz_id", "user_id", name="uq_quiz_pool_usage_user"),
        Index("ix_quiz_pool_usage_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<QuizPoolUsage(quiz={self.quiz_id}, user={self.user_id}, score={self.score})>"
