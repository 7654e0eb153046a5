"""
Question catalog model.

Each question is a four-option multiple choice item classified on the four
taxonomy axes (competency area, skill category, skill topic, test subject).
Usage statistics are maintained by QuestionRepository.record_usage; the
lifecycle status moves active -> review -> retired.

Options structure (JSON):
    {"A": "...", "B": "...", "C": "...", "D": "..."}
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from certprep.core.clock import utcnow

from .base import Base


class Question(Base):
    """A catalog question."""

    __tablename__ = "questions"

    question_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Content
    content: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[dict] = mapped_column(JSON, nullable=False)
    correct_answer: Mapped[str] = mapped_column(String(1), nullable=False)
    explanation: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Taxonomy (one value per axis)
    competency_area: Mapped[str] = mapped_column(String(100), nullable=False)
    skill_category: Mapped[str] = mapped_column(String(100), nullable=False)
    skill_topic: Mapped[str] = mapped_column(String(100), nullable=False)
    test_subject: Mapped[str] = mapped_column(String(100), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="intermediate")

    # Quality & provenance
    quality_score: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    generation_method: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")

    # Usage statistics
    total_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accuracy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    performance_difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    retired_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_questions_area_difficulty_status", "competency_area", "difficulty", "status"),
        Index("ix_questions_quality_status", "quality_score", "status"),
        Index("ix_questions_last_used_status", "last_used_at", "status"),
        Index("ix_questions_topic_status", "skill_topic", "status"),
    )

    @property
    def is_available(self) -> bool:
        return self.status == "active" and self.retired_at is None

    def __repr__(self) -> str:
        return (
            f"<Question(id={self.question_id}, area='{self.competency_area}', "
            f"difficulty={self.difficulty}, status={self.status})>"
        )
