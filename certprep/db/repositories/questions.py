"""
Question catalog repository.

Owns every read and write on the ``questions`` table: candidate queries for
the selection engine, bulk insert of generated content, per-answer usage
statistics and the periodic quality review.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from certprep.core.clock import utcnow
from certprep.core.ids import new_question_id
from certprep.core.rounding import round_half_up
from certprep.core.taxonomy import ADAPTIVE, COMPETENCY_AREAS, QuestionStatus
from certprep.db.models import Question

# Usage-based review trigger
AUTO_REVIEW_MIN_USES = 50
AUTO_REVIEW_MAX_ACCURACY = 20


@dataclass
class QuestionPoolStats:
    """Catalog health snapshot."""

    total_active: int
    competency_distribution: dict[str, int]
    difficulty_distribution: dict[str, int]
    average_quality: float
    in_review: int
    health_score: int
    health_status: str
    recommendations: list[dict[str, Any]] = field(default_factory=list)


def performance_difficulty(accuracy: int) -> int:
    """Observed difficulty on a 1-10 scale from answer accuracy (%)."""
    return max(1, min(10, round_half_up(11 - accuracy / 10)))


def health_status(score: int) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


class QuestionRepository:
    """Data access for the question catalog."""

    def __init__(self, session: Session):
        self.session = session

    # ========================================
    # Reads
    # ========================================

    def get(self, question_id: str) -> Question | None:
        return self.session.get(Question, question_id)

    def get_many(self, question_ids: Iterable[str]) -> dict[str, Question]:
        ids = list(question_ids)
        if not ids:
            return {}
        rows = self.session.scalars(select(Question).where(Question.question_id.in_(ids)))
        return {row.question_id: row for row in rows}

    def find_candidates(
        self,
        competency_area: str,
        *,
        limit: int,
        min_quality: int = 60,
        difficulty: str | None = None,
        exclude_ids: Iterable[str] = (),
    ) -> list[Question]:
        """
        Active questions for one competency area.

        Least recently used come first (never used before anything else), then
        higher quality.

        Args:
            competency_area: Bucket to query
            limit: Maximum rows returned
            min_quality: Quality floor (inclusive)
            difficulty: Exact difficulty, or None / "adaptive" for any
            exclude_ids: Question ids to leave out (recently answered)

        Returns:
            Candidate questions in preference order
        """
        query = select(Question).where(
            Question.competency_area == competency_area,
            Question.status == QuestionStatus.ACTIVE.value,
            Question.retired_at.is_(None),
            Question.quality_score >= min_quality,
        )
        if difficulty and difficulty != ADAPTIVE:
            query = query.where(Question.difficulty == difficulty)
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(Question.question_id.notin_(excluded))
        query = query.order_by(
            Question.last_used_at.asc().nulls_first(),
            Question.quality_score.desc(),
            Question.question_id,
        ).limit(limit)
        return list(self.session.scalars(query))

    # ========================================
    # Writes
    # ========================================

    def add_many(self, questions: list[dict[str, Any]], generation_method: str) -> list[Question]:
        """Insert validated question dicts, assigning fresh ids."""
        rows = []
        for data in questions:
            row = Question(
                question_id=data.get("question_id") or new_question_id(),
                content=data["content"],
                options=dict(data["options"]),
                correct_answer=data["correct_answer"],
                explanation=data.get("explanation", ""),
                competency_area=data["competency_area"],
                skill_category=data["skill_category"],
                skill_topic=data["skill_topic"],
                test_subject=data["test_subject"],
                difficulty=data.get("difficulty", "intermediate"),
                quality_score=data.get("quality_score", 70),
                generation_method=generation_method,
                status=data.get("status", QuestionStatus.ACTIVE.value),
            )
            self.session.add(row)
            rows.append(row)
        self.session.flush()
        logger.info("Inserted {} questions ({})", len(rows), generation_method)
        return rows

    def record_usage(
        self,
        question_id: str,
        is_correct: bool,
        time_spent: float,
        now: datetime | None = None,
    ) -> Question | None:
        """
        Fold one answer into the question's usage statistics.

        Questions answered correctly by fewer than 20% of at least 50 users
        are moved to review.
        """
        question = self.get(question_id)
        if question is None:
            logger.warning("Usage recorded for unknown question {}", question_id)
            return None

        previous_uses = question.total_uses
        question.total_uses = previous_uses + 1
        if is_correct:
            question.correct_count += 1
        question.accuracy = round_half_up(question.correct_count / question.total_uses * 100)
        question.average_time_spent = round(
            (question.average_time_spent * previous_uses + time_spent) / question.total_uses
        )
        question.performance_difficulty = performance_difficulty(question.accuracy)
        question.last_used_at = now or utcnow()

        if (
            question.status == QuestionStatus.ACTIVE.value
            and question.total_uses >= AUTO_REVIEW_MIN_USES
            and question.accuracy < AUTO_REVIEW_MAX_ACCURACY
        ):
            question.status = QuestionStatus.REVIEW.value
            question.review_notes = (
                f"Auto-flagged: {question.accuracy}% accuracy over {question.total_uses} uses"
            )
            logger.warning("Question {} moved to review (accuracy {}%)", question_id, question.accuracy)
        return question

    def flag_low_quality(self, threshold: int = 30, now: datetime | None = None) -> int:
        """Move active questions below the quality threshold to review. Idempotent."""
        result = self.session.execute(
            update(Question)
            .where(
                Question.status == QuestionStatus.ACTIVE.value,
                Question.quality_score < threshold,
            )
            .values(
                status=QuestionStatus.REVIEW.value,
                review_notes=f"Quality score below {threshold}",
                last_reviewed_at=now or utcnow(),
            )
        )
        flagged = result.rowcount or 0
        if flagged:
            logger.info("Flagged {} low-quality questions for review", flagged)
        return flagged

    # ========================================
    # Statistics
    # ========================================

    def pool_stats(self, min_pool_size: int = 200) -> QuestionPoolStats:
        """
        Catalog health.

        Health starts at 100: -30 below the minimum pool size, -20 when the
        largest and smallest competency areas differ by more than 50 questions.
        Areas below a third of the minimum get a high-priority recommendation.
        """
        active = Question.status == QuestionStatus.ACTIVE.value

        by_area = {area: 0 for area in COMPETENCY_AREAS}
        for area, count in self.session.execute(
            select(Question.competency_area, func.count()).where(active).group_by(Question.competency_area)
        ):
            by_area[area] = count

        by_difficulty: dict[str, int] = {}
        for difficulty, count in self.session.execute(
            select(Question.difficulty, func.count()).where(active).group_by(Question.difficulty)
        ):
            by_difficulty[difficulty] = count

        average_quality = self.session.scalar(select(func.avg(Question.quality_score)).where(active))
        in_review = self.session.scalar(
            select(func.count()).select_from(Question).where(Question.status == QuestionStatus.REVIEW.value)
        )
        total = sum(by_area.values())

        score = 100
        if total < min_pool_size:
            score -= 30
        if by_area and max(by_area.values()) - min(by_area.values()) > 50:
            score -= 20

        per_area_floor = min_pool_size / 3
        recommendations = [
            {
                "area": area,
                "needed": math.ceil(per_area_floor - count),
                "priority": "high",
            }
            for area, count in by_area.items()
            if count < per_area_floor
        ]

        return QuestionPoolStats(
            total_active=total,
            competency_distribution=by_area,
            difficulty_distribution=by_difficulty,
            average_quality=round(float(average_quality or 0), 1),
            in_review=in_review or 0,
            health_score=score,
            health_status=health_status(score),
            recommendations=recommendations,
        )
