"""
Error taxonomy for the quiz engine.

Recoverable conditions (PoolExhausted, GenerationFailed) are caught by the
selection engine and turned into reported shortfalls. A duplicate answer is
not an error at all: QuizSessionMachine reports it through
``AnswerOutcome.duplicate``.
"""

from __future__ import annotations


class CertPrepError(Exception):
    """Base class for all engine errors."""


class ServiceInitializationError(CertPrepError):
    """Raised when a service object cannot be constructed at process start."""


class PoolExhausted(CertPrepError):
    """A topic bucket has no candidates left after replenishment."""

    def __init__(self, topic: str, requested: int):
        super().__init__(f"No candidates available for '{topic}' ({requested} requested)")
        self.topic = topic
        self.requested = requested


class GenerationFailed(CertPrepError):
    """The content generator failed after exhausting its retries."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class MalformedGeneratedContent(CertPrepError):
    """Generated content could not be parsed or failed validation."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class VersionConflict(CertPrepError):
    """A concurrent write changed an aggregate between read and write."""

    def __init__(self, entity: str, key: str | None = None):
        detail = f" ({key})" if key else ""
        super().__init__(f"Version conflict on {entity}{detail}")
        self.entity = entity
        self.key = key


class SessionNotFound(CertPrepError):
    """No quiz session exists with the given id."""


class SessionNotActive(CertPrepError):
    """A mutating call was made on a session that is not active."""

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is {status}, not active")
        self.session_id = session_id
        self.status = status


class InvalidTransition(CertPrepError):
    """A lifecycle transition is not allowed from the session's current state."""

    def __init__(self, session_id: str, status: str, action: str):
        super().__init__(f"Cannot {action} session {session_id} while {status}")
        self.session_id = session_id
        self.status = status
        self.action = action


class ActiveSessionExists(CertPrepError):
    """The user already has an active or paused session."""

    def __init__(self, user_id: str, session_id: str):
        super().__init__(f"User {user_id} already has open session {session_id}")
        self.user_id = user_id
        self.session_id = session_id


class QuestionNotInSession(CertPrepError):
    """An answer referenced a question that is not part of the session."""

    def __init__(self, session_id: str, question_id: str):
        super().__init__(f"Question {question_id} is not part of session {session_id}")
        self.session_id = session_id
        self.question_id = question_id
