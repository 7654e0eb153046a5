"""
Core Module - Shared taxonomy, errors and concurrency helpers.

Components:
- taxonomy: Fixed exam enumerations and repair tables
- exceptions: Error taxonomy shared by every service
- concurrency: retry_with_backoff and SingleFlight
- ids: Public identifier formats

Design Principle:
Domain modules (learning/, quiz/, generation/) import shared concepts from
certprep.core rather than redefining them.
"""

from certprep.core.concurrency import SingleFlight, retry_with_backoff
from certprep.core.exceptions import (
    ActiveSessionExists,
    CertPrepError,
    GenerationFailed,
    InvalidTransition,
    MalformedGeneratedContent,
    PoolExhausted,
    QuestionNotInSession,
    ServiceInitializationError,
    SessionNotActive,
    SessionNotFound,
    VersionConflict,
)
from certprep.core.taxonomy import CompetencyArea, Difficulty, QuestionStatus

__all__ = [
    # Concurrency
    "SingleFlight",
    "retry_with_backoff",
    # Errors
    "ActiveSessionExists",
    "CertPrepError",
    "GenerationFailed",
    "InvalidTransition",
    "MalformedGeneratedContent",
    "PoolExhausted",
    "QuestionNotInSession",
    "ServiceInitializationError",
    "SessionNotActive",
    "SessionNotFound",
    "VersionConflict",
    # Taxonomy
    "CompetencyArea",
    "Difficulty",
    "QuestionStatus",
]
