"""
Service container.

Every service object is built once at process start from Settings and passed
explicitly to whoever needs it. Nothing in the package reaches for a global.
"""
from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from certprep.config import Settings, get_settings
from certprep.core.clock import Clock, utcnow
from certprep.core.concurrency import SingleFlight
from certprep.core.exceptions import ServiceInitializationError
from certprep.db.database import Database
from certprep.generation.knowledge_client import KnowledgeClient
from certprep.generation.orchestrator import (
    ContentGenerationOrchestrator,
    GeminiQuestionModel,
    QuestionModel,
)
from certprep.learning.skill_progress import SkillProgressService
from certprep.learning.spaced_repetition import SM2Config, SpacedRepetitionTracker
from certprep.quiz.pool_manager import PoolConfig, QuizPoolManager
from certprep.quiz.selection_engine import SelectionEngine, SelectionPreferences, SelectionWeights
from certprep.quiz.session_service import QuizSessionService


@dataclass
class Services:
    settings: Settings
    db: Database
    tracker: SpacedRepetitionTracker
    skills: SkillProgressService
    orchestrator: ContentGenerationOrchestrator
    engine: SelectionEngine
    pool: QuizPoolManager
    sessions: QuizSessionService
    knowledge: KnowledgeClient | None = None

    def close(self) -> None:
        if self.knowledge is not None:
            self.knowledge.close()
        self.db.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    db: Database | None = None,
    model: QuestionModel | None = None,
    clock: Clock = utcnow,
) -> Services:
    """
    Wire every service from settings.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        db: Pre-built Database (tests pass an in-memory one)
        model: Question model override (defaults to Gemini when a key is configured)
        clock: Time source shared by all services

    Raises:
        ServiceInitializationError: Any component failed to construct
    """
    settings = settings or get_settings()
    try:
        db = db or Database.from_settings(settings)
        retry = {
            "retry_attempts": settings.retry_attempts,
            "retry_base_delay": settings.retry_base_delay_seconds,
        }

        tracker = SpacedRepetitionTracker(db, SM2Config.from_settings(settings), clock=clock)
        skills = SkillProgressService(db, clock=clock, **retry)

        knowledge = KnowledgeClient.from_settings(settings)
        orchestrator = ContentGenerationOrchestrator(
            db,
            model if model is not None else GeminiQuestionModel.from_settings(settings),
            knowledge=knowledge,
            max_retries=settings.generation_max_retries,
            backoff_seconds=settings.generation_backoff_seconds,
            flight=SingleFlight(),
        )
        engine = SelectionEngine(
            db,
            tracker,
            orchestrator,
            weights=SelectionWeights(
                new_question=settings.selection_new_question_weight,
                weak_area=settings.selection_weak_area_weight,
                spaced_repetition=settings.selection_spaced_repetition_weight,
                random=settings.selection_random_weight,
                quality_factor=settings.selection_quality_factor,
            ),
            candidate_multiplier=settings.selection_candidate_multiplier,
            min_generation_count=settings.selection_min_generation_count,
            clock=clock,
        )
        pool = QuizPoolManager(db, engine, PoolConfig.from_settings(settings), clock=clock, **retry)
        sessions = QuizSessionService(
            db,
            engine,
            pool,
            tracker,
            skills,
            default_question_count=settings.default_question_count,
            inactivity_hours=settings.session_inactivity_hours,
            default_preferences=SelectionPreferences.from_settings(settings),
            clock=clock,
            **retry,
        )
    except Exception as exc:  # Intentionally broad - any wiring failure is fatal at startup
        logger.error("Service initialization failed: {}", exc)
        raise ServiceInitializationError(str(exc)) from exc

    logger.debug(
        "Services ready (generation {}, knowledge {})",
        "enabled" if orchestrator.available else "disabled",
        "enabled" if knowledge else "disabled",
    )
    return Services(
        settings=settings,
        db=db,
        tracker=tracker,
        skills=skills,
        orchestrator=orchestrator,
        engine=engine,
        pool=pool,
        sessions=sessions,
        knowledge=knowledge,
    )
