"""
Quiz Module - Quiz assembly, the shared pool and session lifecycle.

Components:
- selection_engine: Personalized, scored question selection with shortfall reporting
- pool_manager: Shared blueprints, fair assignment, completion ledger, retirement
- history: Per-user history projection replayed from the completion ledger
- session_machine: Pure session state transitions
- session_service: Persistence and side effects around the state machine
"""

from certprep.quiz.pool_manager import PoolConfig, PoolHealth, QuizAssignment, QuizPoolManager
from certprep.quiz.selection_engine import (
    SelectedQuestion,
    SelectionEngine,
    SelectionPreferences,
    SelectionReason,
    SelectionResult,
    SelectionWeights,
)
from certprep.quiz.session_machine import (
    AnswerOutcome,
    QuizSessionMachine,
    SessionState,
    SessionStatus,
)
from certprep.quiz.session_service import QuizSessionService, QuizType

__all__ = [
    # Selection
    "SelectedQuestion",
    "SelectionEngine",
    "SelectionPreferences",
    "SelectionReason",
    "SelectionResult",
    "SelectionWeights",
    # Pool
    "PoolConfig",
    "PoolHealth",
    "QuizAssignment",
    "QuizPoolManager",
    # Sessions
    "AnswerOutcome",
    "QuizSessionMachine",
    "QuizSessionService",
    "QuizType",
    "SessionState",
    "SessionStatus",
]
