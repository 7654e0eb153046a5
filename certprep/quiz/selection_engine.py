"""
Selection Engine for personalized quiz assembly.

Fills a per-topic distribution from the question catalog:
- Candidate query per bucket (active, quality floor, difficulty, not seen recently)
- Replenishment through the generation orchestrator when a bucket is empty
- Composite scoring from the learner's spaced-repetition signals
- Deduplicated merge, Fisher-Yates shuffle, positional numbering

A bucket that cannot be filled never fails the request: the missing count is
reported in ``SelectionResult.shortfall``.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from certprep.config import Settings
from certprep.core.clock import Clock, utcnow
from certprep.core.exceptions import GenerationFailed, PoolExhausted
from certprep.core.taxonomy import ADAPTIVE
from certprep.db.database import Database
from certprep.db.models import Question
from certprep.db.repositories.questions import QuestionRepository
from certprep.generation.orchestrator import ContentGenerationOrchestrator
from certprep.learning.spaced_repetition import ProgressState, SpacedRepetitionTracker


class SelectionReason(str, Enum):
    NEW_QUESTION = "new_question"
    SPACED_REPETITION = "spaced_repetition"
    WEAK_AREA_FOCUS = "weak_area_focus"
    RANDOM_SELECTION = "random_selection"


@dataclass(frozen=True)
class SelectionWeights:
    """Share of the 100-point bonus pool per signal."""

    new_question: float = 0.4
    weak_area: float = 0.3
    spaced_repetition: float = 0.2
    random: float = 0.1
    quality_factor: float = 0.5


@dataclass
class SelectionPreferences:
    """Per-request switches."""

    difficulty: str = ADAPTIVE
    avoid_recent: bool = True
    recent_window_days: int = 7
    min_quality: int = 60
    prioritize_new: bool = True
    focus_weak_areas: bool = True
    include_spaced_repetition: bool = True
    weak_accuracy_threshold: int = 70

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> SelectionPreferences:
        values: dict[str, Any] = {
            "recent_window_days": settings.selection_recent_window_days,
            "min_quality": settings.selection_min_quality,
            "weak_accuracy_threshold": settings.selection_weak_accuracy_threshold,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class SelectedQuestion:
    """A question placed in a quiz."""

    question_id: str
    position: int
    selection_reason: str
    score: float
    competency_area: str
    skill_category: str
    skill_topic: str
    test_subject: str
    difficulty: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "position": self.position,
            "selection_reason": self.selection_reason,
            "competency_area": self.competency_area,
            "skill_category": self.skill_category,
            "skill_topic": self.skill_topic,
            "test_subject": self.test_subject,
            "difficulty": self.difficulty,
        }


@dataclass
class SelectionResult:
    """Selected questions plus what could not be filled."""

    selected: list[SelectedQuestion] = field(default_factory=list)
    shortfall: dict[str, int] = field(default_factory=dict)
    total_requested: int = 0

    @property
    def total_selected(self) -> int:
        return len(self.selected)

    @property
    def is_degraded(self) -> bool:
        return bool(self.shortfall)


@dataclass
class _Candidate:
    question_id: str
    quality_score: int
    competency_area: str
    skill_category: str
    skill_topic: str
    test_subject: str
    difficulty: str
    progress: ProgressState | None
    score: float = 0.0
    reason: SelectionReason = SelectionReason.RANDOM_SELECTION

    @classmethod
    def from_row(cls, row: Question, progress: ProgressState | None) -> _Candidate:
        return cls(
            question_id=row.question_id,
            quality_score=row.quality_score,
            competency_area=row.competency_area,
            skill_category=row.skill_category,
            skill_topic=row.skill_topic,
            test_subject=row.test_subject,
            difficulty=row.difficulty,
            progress=progress,
        )


def fisher_yates_shuffle(items: list, rng: random.Random) -> list:
    """Return a uniformly shuffled copy of ``items``."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


class SelectionEngine:
    """
    Scored, deduplicated question selection.

    Usage:
        engine = SelectionEngine(db, tracker, orchestrator)
        result = engine.select("user-1", {"Physical Care Skills": 19})
    """

    def __init__(
        self,
        db: Database,
        tracker: SpacedRepetitionTracker,
        orchestrator: ContentGenerationOrchestrator | None = None,
        weights: SelectionWeights | None = None,
        candidate_multiplier: int = 3,
        min_generation_count: int = 10,
        rng: random.Random | None = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.tracker = tracker
        self.orchestrator = orchestrator
        self.weights = weights or SelectionWeights()
        self.candidate_multiplier = candidate_multiplier
        self.min_generation_count = min_generation_count
        self.rng = rng or random.Random()
        self.clock = clock

    # ========================================
    # Public API
    # ========================================

    def select(
        self,
        user_id: str | None,
        distribution: dict[str, int],
        prefs: SelectionPreferences | None = None,
    ) -> SelectionResult:
        """
        Select questions for every topic bucket in ``distribution``.

        Args:
            user_id: Learner (None for user-independent selection such as pool blueprints)
            distribution: Requested count per competency area
            prefs: Behavioural switches

        Returns:
            SelectionResult with shuffled, positioned questions and per-topic shortfall
        """
        prefs = prefs or SelectionPreferences()
        result = SelectionResult(total_requested=sum(max(0, n) for n in distribution.values()))
        taken: set[str] = set()
        picked: list[_Candidate] = []

        for topic, requested in distribution.items():
            if requested <= 0:
                continue
            try:
                candidates = self._candidates_with_replenishment(user_id, topic, requested, prefs, taken)
            except (PoolExhausted, GenerationFailed) as exc:
                logger.warning("Bucket '{}' unfilled: {}", topic, exc)
                candidates = []

            chosen = self._rank(candidates, prefs)[:requested]
            for candidate in chosen:
                taken.add(candidate.question_id)
            picked.extend(chosen)

            if len(chosen) < requested:
                result.shortfall[topic] = requested - len(chosen)
                logger.warning(
                    "Question shortage for {}: got {}, needed {}", topic, len(chosen), requested
                )

        shuffled = fisher_yates_shuffle(picked, self.rng)
        result.selected = [
            SelectedQuestion(
                question_id=c.question_id,
                position=position,
                selection_reason=c.reason.value,
                score=round(c.score, 2),
                competency_area=c.competency_area,
                skill_category=c.skill_category,
                skill_topic=c.skill_topic,
                test_subject=c.test_subject,
                difficulty=c.difficulty,
            )
            for position, c in enumerate(shuffled, start=1)
        ]
        logger.info(
            "Selected {}/{} questions for {}{}",
            result.total_selected,
            result.total_requested,
            user_id or "pool",
            f" (shortfall {result.shortfall})" if result.shortfall else "",
        )
        return result

    # ========================================
    # Candidates
    # ========================================

    def _candidates_with_replenishment(
        self,
        user_id: str | None,
        topic: str,
        requested: int,
        prefs: SelectionPreferences,
        taken: set[str],
    ) -> list[_Candidate]:
        candidates = self._query_candidates(user_id, topic, requested, prefs, taken)
        if candidates:
            return candidates

        if self.orchestrator is None or not self.orchestrator.available:
            raise PoolExhausted(topic, requested)

        count = max(requested, self.min_generation_count)
        logger.info("No candidates for '{}', requesting {} generated questions", topic, count)
        self.orchestrator.replenish(topic, prefs.difficulty, count)

        candidates = self._query_candidates(user_id, topic, requested, prefs, taken)
        if not candidates:
            raise PoolExhausted(topic, requested)
        return candidates

    def _query_candidates(
        self,
        user_id: str | None,
        topic: str,
        requested: int,
        prefs: SelectionPreferences,
        taken: set[str],
    ) -> list[_Candidate]:
        with self.db.session_scope() as session:
            excluded: set[str] = set()
            if user_id and prefs.avoid_recent:
                excluded = self.tracker.recent_question_ids(session, user_id, prefs.recent_window_days)

            rows = QuestionRepository(session).find_candidates(
                topic,
                limit=requested * self.candidate_multiplier,
                min_quality=prefs.min_quality,
                difficulty=prefs.difficulty,
                exclude_ids=excluded | taken,
            )
            progress = (
                self.tracker.progress_map(session, user_id, [r.question_id for r in rows])
                if user_id
                else {}
            )
            return [_Candidate.from_row(row, progress.get(row.question_id)) for row in rows]

    # ========================================
    # Scoring
    # ========================================

    def _rank(self, candidates: list[_Candidate], prefs: SelectionPreferences) -> list[_Candidate]:
        now = self.clock()
        for candidate in candidates:
            candidate.score, candidate.reason = self.score(candidate.progress, candidate.quality_score, prefs, now)
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    def score(
        self,
        progress: ProgressState | None,
        quality_score: int,
        prefs: SelectionPreferences,
        now: datetime,
    ) -> tuple[float, SelectionReason]:
        """
        Composite priority of one candidate and the reason it would be picked.

        score = new + weak + due bonuses + quality x factor + U(0, random bonus)
        """
        w = self.weights
        is_new = progress is None
        is_due = progress is not None and progress.due_at(now)
        is_weak = progress is not None and progress.accuracy < prefs.weak_accuracy_threshold

        score = quality_score * w.quality_factor
        if is_new and prefs.prioritize_new:
            score += w.new_question * 100
        if is_weak and prefs.focus_weak_areas:
            score += w.weak_area * 100
        if is_due and prefs.include_spaced_repetition:
            score += w.spaced_repetition * 100
        score += self.rng.uniform(0, w.random * 100)

        if is_new:
            reason = SelectionReason.NEW_QUESTION
        elif is_due:
            reason = SelectionReason.SPACED_REPETITION
        elif is_weak:
            reason = SelectionReason.WEAK_AREA_FOCUS
        else:
            reason = SelectionReason.RANDOM_SELECTION
        return score, reason
