# SQLAlchemy models
from .base import Base
from .history import QuizCompletion, UserQuizHistory
from .progress import UserQuestionProgress
from .question import Question
from .quiz_pool import QuizPoolEntry, QuizPoolUsage
from .session import OPEN_STATUSES, QuizSession
from .skill_progress import UserSkillProgress

__all__ = [
    # Base
    "Base",
    # Catalog
    "Question",
    # Learning
    "UserQuestionProgress",
    "UserSkillProgress",
    # Quiz pool
    "QuizPoolEntry",
    "QuizPoolUsage",
    "QuizCompletion",
    "UserQuizHistory",
    # Sessions
    "OPEN_STATUSES",
    "QuizSession",
]
