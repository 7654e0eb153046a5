"""Repositories: one per owned aggregate, each bound to a SQLAlchemy Session."""

from certprep.db.repositories.progress import ProgressRepository
from certprep.db.repositories.questions import QuestionPoolStats, QuestionRepository
from certprep.db.repositories.quiz_pool import QuizPoolRepository
from certprep.db.repositories.sessions import QuizSessionRepository
from certprep.db.repositories.skill_progress import SkillProgressRepository

__all__ = [
    "ProgressRepository",
    "QuestionPoolStats",
    "QuestionRepository",
    "QuizPoolRepository",
    "QuizSessionRepository",
    "SkillProgressRepository",
]
