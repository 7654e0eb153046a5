"""
Quiz Session state machine.

States:
    active -> paused -> active      (pause / resume)
    active -> completed             (complete)
    active | paused -> abandoned    (abandon, reaper)

``completed`` and ``abandoned`` are terminal. The machine works on a plain
``SessionState`` value and never touches the database; QuizSessionService
loads the state, applies one transition and persists the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from certprep.core.clock import Clock, utcnow
from certprep.core.exceptions import InvalidTransition, QuestionNotInSession, SessionNotActive
from certprep.core.rounding import round_half_up

STRONG_AREA_THRESHOLD = 80
WEAK_AREA_THRESHOLD = 60


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = (SessionStatus.COMPLETED.value, SessionStatus.ABANDONED.value)


def _percentage(correct: int, total: int) -> int:
    return round_half_up(correct / total * 100) if total else 0


@dataclass
class SessionState:
    """Everything a session transition reads or writes."""

    session_id: str
    user_id: str
    questions: list[dict[str, Any]]
    quiz_type: str = "practice"
    quiz_id: str | None = None
    question_count: int = 0
    competency_distribution: dict[str, int] = field(default_factory=dict)
    difficulty: str = "adaptive"
    settings: dict[str, Any] = field(default_factory=dict)

    current_position: int = 0
    answers: list[dict[str, Any]] = field(default_factory=list)
    score: dict[str, int] = field(default_factory=lambda: {"correct": 0, "total": 0, "percentage": 0})
    competency_performance: dict[str, dict[str, int]] = field(default_factory=dict)

    started_at: datetime = field(default_factory=utcnow)
    paused_at: datetime | None = None
    total_pause_seconds: float = 0.0
    ended_at: datetime | None = None
    total_duration_seconds: float | None = None
    average_time_per_question: float | None = None
    last_activity_at: datetime = field(default_factory=utcnow)

    status: str = SessionStatus.ACTIVE.value
    abandon_reason: str | None = None
    results: dict[str, Any] | None = None

    def question(self, question_id: str) -> dict[str, Any] | None:
        return next((q for q in self.questions if q["question_id"] == question_id), None)

    def answer_for(self, question_id: str) -> dict[str, Any] | None:
        return next((a for a in self.answers if a["question_id"] == question_id), None)

    @property
    def remaining_questions(self) -> int:
        return max(0, len(self.questions) - len(self.answers))


@dataclass
class AnswerOutcome:
    """Result of answering one question; ``duplicate`` marks an already-recorded answer."""

    question_id: str
    is_correct: bool
    duplicate: bool
    position: int
    score: dict[str, int]
    remaining_questions: int

    @property
    def is_last(self) -> bool:
        return self.remaining_questions == 0


@dataclass
class TopicTally:
    """Correct/total for one skill topic in a finished session."""

    skill_topic: str
    competency_area: str | None
    correct: int = 0
    total: int = 0


class QuizSessionMachine:
    """
    Applies lifecycle transitions to a SessionState in place.

    Usage:
        machine = QuizSessionMachine(state)
        outcome = machine.answer_question("q_1", "B", time_spent=12, is_correct=True)
    """

    def __init__(self, state: SessionState, clock: Clock = utcnow):
        self.state = state
        self.clock = clock

    # ========================================
    # Transitions
    # ========================================

    def answer_question(
        self,
        question_id: str,
        answer: str,
        time_spent: float,
        is_correct: bool,
    ) -> AnswerOutcome:
        """
        Record an answer.

        Raises:
            SessionNotActive: Session is paused, completed or abandoned
            QuestionNotInSession: ``question_id`` is not part of the session
        """
        s = self.state
        if s.status != SessionStatus.ACTIVE.value:
            raise SessionNotActive(s.session_id, s.status)

        question = s.question(question_id)
        if question is None:
            raise QuestionNotInSession(s.session_id, question_id)

        existing = s.answer_for(question_id)
        if existing is not None:
            return AnswerOutcome(
                question_id=question_id,
                is_correct=bool(existing["is_correct"]),
                duplicate=True,
                position=existing["position"],
                score=dict(s.score),
                remaining_questions=s.remaining_questions,
            )

        now = self.clock()
        s.answers = [
            *s.answers,
            {
                "question_id": question_id,
                "position": question["position"],
                "selected_answer": answer,
                "is_correct": is_correct,
                "time_spent": time_spent,
                "answered_at": now.isoformat(),
            },
        ]
        s.current_position = len(s.answers)

        correct = s.score.get("correct", 0) + (1 if is_correct else 0)
        total = s.score.get("total", 0) + 1
        s.score = {"correct": correct, "total": total, "percentage": _percentage(correct, total)}

        area = question.get("competency_area") or "Unknown"
        performance = {k: dict(v) for k, v in s.competency_performance.items()}
        bucket = performance.setdefault(area, {"correct": 0, "total": 0, "percentage": 0})
        bucket["total"] += 1
        bucket["correct"] += 1 if is_correct else 0
        bucket["percentage"] = _percentage(bucket["correct"], bucket["total"])
        s.competency_performance = performance

        s.last_activity_at = now
        return AnswerOutcome(
            question_id=question_id,
            is_correct=is_correct,
            duplicate=False,
            position=question["position"],
            score=dict(s.score),
            remaining_questions=s.remaining_questions,
        )

    def pause(self) -> None:
        s = self.state
        if s.status != SessionStatus.ACTIVE.value:
            raise InvalidTransition(s.session_id, s.status, "pause")
        now = self.clock()
        s.status = SessionStatus.PAUSED.value
        s.paused_at = now
        s.last_activity_at = now

    def resume(self) -> None:
        s = self.state
        if s.status != SessionStatus.PAUSED.value:
            raise InvalidTransition(s.session_id, s.status, "resume")
        now = self.clock()
        if s.paused_at is not None:
            s.total_pause_seconds += max(0.0, (now - s.paused_at).total_seconds())
        s.paused_at = None
        s.status = SessionStatus.ACTIVE.value
        s.last_activity_at = now

    def complete(self, historical_average: float | None = None) -> dict[str, Any]:
        """
        Finish the session and build its results.

        Args:
            historical_average: Mean percentage of the user's previous completed sessions

        Returns:
            The results dict also stored on the state
        """
        s = self.state
        if s.status != SessionStatus.ACTIVE.value:
            raise InvalidTransition(s.session_id, s.status, "complete")

        now = self.clock()
        self._close_timing(now)
        answered = len(s.answers)
        s.average_time_per_question = (
            round(s.total_duration_seconds / answered, 1) if answered else 0.0
        )

        competency_results = {k: dict(v) for k, v in s.competency_performance.items()}
        percentage = s.score.get("percentage", 0)
        improvement = round(percentage - historical_average, 1) if historical_average is not None else 0.0

        s.results = {
            "final_score": dict(s.score),
            "competency_results": competency_results,
            "strong_areas": sorted(
                area for area, r in competency_results.items() if r["percentage"] >= STRONG_AREA_THRESHOLD
            ),
            "weak_areas": sorted(
                area for area, r in competency_results.items() if r["percentage"] < WEAK_AREA_THRESHOLD
            ),
            "questions_for_review": [a["question_id"] for a in s.answers if not a["is_correct"]],
            "improvement_from_average": improvement,
            "unanswered": s.remaining_questions,
            "total_duration_seconds": s.total_duration_seconds,
            "average_time_per_question": s.average_time_per_question,
        }
        s.status = SessionStatus.COMPLETED.value
        s.ended_at = now
        s.last_activity_at = now
        return s.results

    def abandon(self, reason: str = "User abandoned") -> None:
        s = self.state
        if s.status in TERMINAL_STATUSES:
            raise InvalidTransition(s.session_id, s.status, "abandon")
        now = self.clock()
        self._close_timing(now)
        s.status = SessionStatus.ABANDONED.value
        s.abandon_reason = reason
        s.ended_at = now
        s.last_activity_at = now

    # ========================================
    # Derived data
    # ========================================

    def topic_tallies(self) -> list[TopicTally]:
        """Per skill topic correct/total over the answered questions."""
        tallies: dict[str, TopicTally] = {}
        for answer in self.state.answers:
            question = self.state.question(answer["question_id"]) or {}
            topic = question.get("skill_topic")
            if not topic:
                continue
            tally = tallies.setdefault(topic, TopicTally(topic, question.get("competency_area")))
            tally.total += 1
            tally.correct += 1 if answer["is_correct"] else 0
        return list(tallies.values())

    def _close_timing(self, now: datetime) -> None:
        s = self.state
        if s.paused_at is not None:
            s.total_pause_seconds += max(0.0, (now - s.paused_at).total_seconds())
            s.paused_at = None
        elapsed = (now - s.started_at).total_seconds() - s.total_pause_seconds
        s.total_duration_seconds = round(max(0.0, elapsed), 1)
