"""
Learning Module - Per-user progress tracking.

Components:
- spaced_repetition: SM-2 review scheduling per (user, question)
- skill_progress: Rolling accuracy and strength per skill topic
"""

from certprep.learning.skill_progress import SkillProgressService, TopicResult
from certprep.learning.spaced_repetition import (
    Attempt,
    ProgressState,
    SM2Config,
    SpacedRepetitionTracker,
    apply_attempt,
)

__all__ = [
    "Attempt",
    "ProgressState",
    "SM2Config",
    "SkillProgressService",
    "SpacedRepetitionTracker",
    "TopicResult",
    "apply_attempt",
]
