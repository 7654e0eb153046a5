"""
Quiz Session Service: persistence around QuizSessionMachine.

Each operation loads the session row, rebuilds a SessionState, applies one
machine transition and writes the state back, all in one transaction guarded
by the row's version column. A conflicting concurrent write surfaces as
VersionConflict and the whole operation is retried from a fresh read.
"""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certprep.core.clock import Clock, utcnow
from certprep.core.concurrency import retry_with_backoff
from certprep.core.exceptions import (
    ActiveSessionExists,
    InvalidTransition,
    PoolExhausted,
    SessionNotFound,
    VersionConflict,
)
from certprep.core.ids import new_session_id
from certprep.core.taxonomy import ADAPTIVE, distribution_from_ratios
from certprep.db.database import Database
from certprep.db.models import QuizSession
from certprep.db.repositories.questions import QuestionRepository
from certprep.db.repositories.sessions import QuizSessionRepository
from certprep.learning.skill_progress import SkillProgressService, TopicResult
from certprep.learning.spaced_repetition import SpacedRepetitionTracker
from certprep.quiz.pool_manager import QuizPoolManager
from certprep.quiz.selection_engine import SelectionEngine, SelectionPreferences
from certprep.quiz.session_machine import (
    AnswerOutcome,
    QuizSessionMachine,
    SessionState,
    SessionStatus,
)

INACTIVITY_REASON = "Auto-abandoned due to inactivity"

_SESSION_QUESTION_KEYS = (
    "question_id",
    "position",
    "selection_reason",
    "competency_area",
    "skill_category",
    "skill_topic",
    "test_subject",
    "difficulty",
)


class QuizType:
    PRACTICE = "practice"
    POOL = "pool"


def _to_state(row: QuizSession) -> SessionState:
    return SessionState(
        session_id=row.session_id,
        user_id=row.user_id,
        questions=list(row.questions or []),
        quiz_type=row.quiz_type,
        quiz_id=row.quiz_id,
        question_count=row.question_count,
        competency_distribution=dict(row.competency_distribution or {}),
        difficulty=row.difficulty,
        settings=dict(row.settings or {}),
        current_position=row.current_position,
        answers=list(row.answers or []),
        score=dict(row.score or {"correct": 0, "total": 0, "percentage": 0}),
        competency_performance=dict(row.competency_performance or {}),
        started_at=row.started_at,
        paused_at=row.paused_at,
        total_pause_seconds=row.total_pause_seconds or 0.0,
        ended_at=row.ended_at,
        total_duration_seconds=row.total_duration_seconds,
        average_time_per_question=row.average_time_per_question,
        last_activity_at=row.last_activity_at,
        status=row.status,
        abandon_reason=row.abandon_reason,
        results=dict(row.results) if row.results is not None else None,
    )


def _apply_state(row: QuizSession, state: SessionState) -> None:
    # JSON columns are reassigned so SQLAlchemy sees the change
    row.current_position = state.current_position
    row.answers = list(state.answers)
    row.score = dict(state.score)
    row.competency_performance = {k: dict(v) for k, v in state.competency_performance.items()}
    row.paused_at = state.paused_at
    row.total_pause_seconds = state.total_pause_seconds
    row.ended_at = state.ended_at
    row.total_duration_seconds = state.total_duration_seconds
    row.average_time_per_question = state.average_time_per_question
    row.last_activity_at = state.last_activity_at
    row.status = state.status
    row.abandon_reason = state.abandon_reason
    row.results = dict(state.results) if state.results is not None else None


class QuizSessionService:
    """
    Creates and drives quiz sessions.

    Usage:
        service = QuizSessionService(db, engine, pool, tracker, skills)
        state = service.start_quiz("user-1", question_count=30)
        service.answer(state.session_id, state.questions[0]["question_id"], "B", 14)
        results = service.complete(state.session_id)
    """

    def __init__(
        self,
        db: Database,
        engine: SelectionEngine,
        pool: QuizPoolManager,
        tracker: SpacedRepetitionTracker,
        skills: SkillProgressService,
        default_question_count: int = 30,
        inactivity_hours: int = 24,
        default_preferences: SelectionPreferences | None = None,
        clock: Clock = utcnow,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ):
        self.db = db
        self.engine = engine
        self.pool = pool
        self.tracker = tracker
        self.skills = skills
        self.default_question_count = default_question_count
        self.inactivity_hours = inactivity_hours
        self.default_preferences = default_preferences or SelectionPreferences()
        self.clock = clock
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    def _retry(self, fn: Callable[[int], Any], label: str) -> Any:
        return retry_with_backoff(
            fn,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retry_on=(VersionConflict, IntegrityError),
            label=label,
        )

    # ========================================
    # Creation
    # ========================================

    def start_quiz(
        self,
        user_id: str,
        question_count: int | None = None,
        difficulty: str = ADAPTIVE,
        quiz_type: str = QuizType.PRACTICE,
        distribution: dict[str, int] | None = None,
    ) -> SessionState:
        """
        Open a new session for the user.

        Practice sessions are selected for the user by the SelectionEngine;
        pool sessions serve the user's assigned blueprint.

        Raises:
            ActiveSessionExists: The user already has an active or paused session
            PoolExhausted: No questions (or no blueprint) could be found
        """
        existing = self.current_session(user_id)
        if existing is not None:
            raise ActiveSessionExists(user_id, existing.session_id)

        settings: dict[str, Any] = {}
        quiz_id = None
        if quiz_type == QuizType.POOL:
            assignment = self.pool.assign_quiz(user_id, difficulty)
            if assignment is None:
                raise PoolExhausted("quiz pool", question_count or self.default_question_count)
            quiz_id = assignment.quiz_id
            questions = [
                {key: q.get(key) for key in _SESSION_QUESTION_KEYS} for q in assignment.questions
            ]
            distribution = self._distribution_of(questions)
            settings["assignment_reused"] = assignment.reused
        else:
            if distribution is None:
                distribution = distribution_from_ratios(question_count or self.default_question_count)
            prefs = SelectionPreferences(**{**asdict(self.default_preferences), "difficulty": difficulty})
            selection = self.engine.select(user_id, distribution, prefs)
            if not selection.selected:
                raise PoolExhausted("all topics", selection.total_requested)
            questions = [q.to_dict() for q in selection.selected]
            settings = {**asdict(prefs), "shortfall": dict(selection.shortfall)}

        now = self.clock()
        row = QuizSession(
            session_id=new_session_id(),
            user_id=user_id,
            quiz_type=quiz_type,
            quiz_id=quiz_id,
            question_count=len(questions),
            competency_distribution=dict(distribution),
            difficulty=difficulty,
            settings=settings,
            questions=questions,
            current_position=0,
            answers=[],
            score={"correct": 0, "total": 0, "percentage": 0},
            competency_performance={},
            started_at=now,
            last_activity_at=now,
            status=SessionStatus.ACTIVE.value,
        )
        try:
            with self.db.session_scope() as session:
                QuizSessionRepository(session).add(row)
                state = _to_state(row)
        except IntegrityError:
            winner = self.current_session(user_id)
            if winner is None:
                raise
            raise ActiveSessionExists(user_id, winner.session_id) from None

        logger.info(
            "Started {} session {} for {} ({} questions{})",
            quiz_type,
            state.session_id,
            user_id,
            state.question_count,
            f", quiz {quiz_id}" if quiz_id else "",
        )
        return state

    @staticmethod
    def _distribution_of(questions: list[dict[str, Any]]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for question in questions:
            area = question.get("competency_area") or "Unknown"
            counts[area] = counts.get(area, 0) + 1
        return counts

    # ========================================
    # Answers
    # ========================================

    def answer(
        self,
        session_id: str,
        question_id: str,
        answer: str,
        time_spent: float = 0.0,
    ) -> AnswerOutcome:
        """
        Record an answer, the learner's attempt and the question's usage stats.

        A repeated answer for the same question returns an outcome with
        ``duplicate=True`` and changes nothing.

        Raises:
            SessionNotFound: Unknown session id
            SessionNotActive: Session is paused or finished
            QuestionNotInSession: Question is not part of the session
        """
        selected = (answer or "").strip().upper()
        return self._retry(
            lambda attempt: self._answer_once(session_id, question_id, selected, time_spent),
            f"answer {session_id}/{question_id}",
        )

    def _answer_once(
        self, session_id: str, question_id: str, selected: str, time_spent: float
    ) -> AnswerOutcome:
        with self.db.session_scope() as session:
            row = self._load(session, session_id)
            state = _to_state(row)
            machine = QuizSessionMachine(state, self.clock)

            questions = QuestionRepository(session)
            is_correct = False
            if state.question(question_id) is not None and state.answer_for(question_id) is None:
                question = questions.get(question_id)
                if question is None:
                    logger.warning("Session {} references missing question {}", session_id, question_id)
                else:
                    is_correct = selected == question.correct_answer

            outcome = machine.answer_question(question_id, selected, time_spent, is_correct)
            if outcome.duplicate:
                logger.debug("Duplicate answer for {} in {}", question_id, session_id)
                return outcome

            _apply_state(row, state)
            snapshot = state.question(question_id) or {}
            self.tracker.record_attempt(
                state.user_id,
                question_id,
                selected_answer=selected,
                is_correct=is_correct,
                time_spent=time_spent,
                difficulty=snapshot.get("difficulty"),
                session_id=session_id,
                session=session,
            )
            questions.record_usage(question_id, is_correct, time_spent, now=state.last_activity_at)
            return outcome

    # ========================================
    # Lifecycle
    # ========================================

    def pause(self, session_id: str) -> SessionState:
        return self._transition(session_id, "pause", lambda machine: machine.pause())

    def resume(self, session_id: str) -> SessionState:
        return self._transition(session_id, "resume", lambda machine: machine.resume())

    def abandon(self, session_id: str, reason: str = "User abandoned") -> SessionState:
        return self._transition(session_id, "abandon", lambda machine: machine.abandon(reason))

    def complete(self, session_id: str) -> dict[str, Any]:
        """
        Finish the session, then update skill progress and, for pool sessions,
        the completion ledger.

        Returns:
            The session results
        """
        state, tallies = self._retry(
            lambda attempt: self._complete_once(session_id), f"complete {session_id}"
        )

        self.skills.record_quiz(
            state.user_id,
            session_id,
            [TopicResult(t.skill_topic, t.correct, t.total, t.competency_area) for t in tallies],
        )

        if state.quiz_type == QuizType.POOL and state.quiz_id:
            percentage = state.score.get("percentage", 0)
            self.pool.mark_completed(
                state.user_id,
                state.quiz_id,
                score=percentage,
                percentage=percentage,
                duration_minutes=round((state.total_duration_seconds or 0) / 60, 2),
                session_id=session_id,
            )

        logger.info(
            "Completed session {} for {}: {}%",
            session_id,
            state.user_id,
            state.score.get("percentage", 0),
        )
        return state.results or {}

    def _complete_once(self, session_id: str):
        with self.db.session_scope() as session:
            row = self._load(session, session_id)
            state = _to_state(row)
            previous = QuizSessionRepository(session).completed_percentages(
                state.user_id, exclude_session_id=session_id
            )
            historical = sum(previous) / len(previous) if previous else None
            machine = QuizSessionMachine(state, self.clock)
            machine.complete(historical)
            _apply_state(row, state)
            return state, machine.topic_tallies()

    def _transition(
        self, session_id: str, action: str, apply: Callable[[QuizSessionMachine], None]
    ) -> SessionState:
        def _once(attempt: int) -> SessionState:
            with self.db.session_scope() as session:
                row = self._load(session, session_id)
                state = _to_state(row)
                apply(QuizSessionMachine(state, self.clock))
                _apply_state(row, state)
                return state

        state = self._retry(_once, f"{action} {session_id}")
        logger.info("Session {} {} ({})", session_id, action, state.status)
        return state

    # ========================================
    # Queries
    # ========================================

    def status(self, session_id: str) -> SessionState:
        with self.db.session_scope() as session:
            return _to_state(self._load(session, session_id))

    def current_session(self, user_id: str) -> SessionState | None:
        """The user's active or paused session, if any."""
        with self.db.session_scope() as session:
            row = QuizSessionRepository(session).open_for_user(user_id)
            return _to_state(row) if row else None

    def recent_sessions(self, user_id: str, limit: int = 10) -> list[SessionState]:
        with self.db.session_scope() as session:
            return [_to_state(r) for r in QuizSessionRepository(session).recent_for_user(user_id, limit)]

    # ========================================
    # Reaper
    # ========================================

    def reap_inactive(self, now: datetime | None = None) -> list[str]:
        """Abandon active sessions idle for longer than the inactivity window."""
        now = now or self.clock()
        cutoff = now - timedelta(hours=self.inactivity_hours)
        with self.db.session_scope() as session:
            candidates = QuizSessionRepository(session).inactive_since(cutoff)

        reaped = []
        for session_id in candidates:
            try:
                state = self._retry(
                    lambda attempt, sid=session_id: self._reap_once(sid, cutoff),
                    f"reap {session_id}",
                )
            except InvalidTransition:
                continue
            if state is not None:
                reaped.append(session_id)

        if reaped:
            logger.info("Auto-abandoned {} inactive sessions", len(reaped))
        return reaped

    def _reap_once(self, session_id: str, cutoff: datetime) -> SessionState | None:
        with self.db.session_scope() as session:
            row = self._load(session, session_id)
            # Activity since the candidate query wins over the reaper
            if row.status != SessionStatus.ACTIVE.value or row.last_activity_at >= cutoff:
                return None
            state = _to_state(row)
            QuizSessionMachine(state, self.clock).abandon(INACTIVITY_REASON)
            _apply_state(row, state)
            return state

    @staticmethod
    def _load(session: Session, session_id: str) -> QuizSession:
        row = QuizSessionRepository(session).get(session_id)
        if row is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return row
