"""
Per-user, per-skill-topic aggregate.

Written at the end of every quiz for each skill topic the quiz touched, so
two sessions finishing at once contend on the same row; ``version`` gives
optimistic locking and SkillProgressService retries on conflict.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from certprep.core.clock import utcnow

from .base import Base


class UserSkillProgress(Base):
    """Rolling accuracy and strength classification for one skill topic."""

    __tablename__ = "user_skill_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    skill_topic: Mapped[str] = mapped_column(String(100), nullable=False)
    competency_area: Mapped[str | None] = mapped_column(String(100), nullable=True)

    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accuracy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trend: Mapped[str] = mapped_column(String(20), nullable=False, default="insufficient_data")
    strength_level: Mapped[str] = mapped_column(String(20), nullable=False, default="developing")
    # Last 20 quiz results: {session_id, correct, total, accuracy, completed_at}
    quiz_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    last_practiced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("user_id", "skill_topic", name="uq_skill_progress_user_topic"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserSkillProgress(user={self.user_id}, topic='{self.skill_topic}', "
            f"accuracy={self.accuracy}, level={self.strength_level})>"
        )
