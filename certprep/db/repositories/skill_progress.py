"""Repository for UserSkillProgress rows."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from certprep.db.models import UserSkillProgress


class SkillProgressRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str, skill_topic: str) -> UserSkillProgress | None:
        return self.session.scalar(
            select(UserSkillProgress).where(
                UserSkillProgress.user_id == user_id,
                UserSkillProgress.skill_topic == skill_topic,
            )
        )

    def get_or_create(
        self, user_id: str, skill_topic: str, competency_area: str | None = None
    ) -> UserSkillProgress:
        row = self.get(user_id, skill_topic)
        if row is None:
            row = UserSkillProgress(
                user_id=user_id,
                skill_topic=skill_topic,
                competency_area=competency_area,
                quiz_history=[],
            )
            self.session.add(row)
        return row

    def for_user(self, user_id: str) -> list[UserSkillProgress]:
        return list(
            self.session.scalars(
                select(UserSkillProgress)
                .where(UserSkillProgress.user_id == user_id)
                .order_by(UserSkillProgress.accuracy.desc())
            )
        )
