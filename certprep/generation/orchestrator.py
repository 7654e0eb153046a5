"""
Content Generation Orchestrator: replenishes the question catalog.

Pipeline:
1. Context: optional knowledge-retrieval snippets for the competency area
2. Generation: Gemini call with bounded retries (backoff attempt x 1s)
3. Parsing: tolerant JSON chain (json_repair)
4. Sanitizing: structure fix, taxonomy repair, validation (sanitizer)
5. Persistence: insert surviving questions into the catalog

Concurrent requests for the same (competency area, skill category,
difficulty) share one in-flight generation. No database session is held
while the model is called.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from certprep.config import Settings
from certprep.core.concurrency import SingleFlight, retry_with_backoff
from certprep.core.exceptions import GenerationFailed, MalformedGeneratedContent
from certprep.core.taxonomy import ADAPTIVE, DIFFICULTY_FALLBACK, default_skill_category
from certprep.db.database import Database
from certprep.db.repositories.questions import QuestionRepository
from certprep.generation.json_repair import parse_question_array
from certprep.generation.knowledge_client import KnowledgeClient, format_for_prompt
from certprep.generation.prompts import SYSTEM_PROMPT, build_question_prompt
from certprep.generation.sanitizer import QuestionDefaults, sanitize_questions

GENERATED_QUALITY_SCORE = 70


class GenerationMethod(str, Enum):
    RAG_ENHANCED = "rag-enhanced"
    AI_GENERATED = "ai-generated"


@dataclass(frozen=True)
class GenerationRequest:
    """What to generate."""

    competency_area: str
    skill_category: str
    difficulty: str
    count: int
    knowledge_context: str | None = None

    @property
    def flight_key(self) -> tuple[str, str, str]:
        return (self.competency_area, self.skill_category, self.difficulty)


@dataclass
class GenerationResult:
    """Outcome of one generation run."""

    request: GenerationRequest
    method: GenerationMethod
    attempts: int
    question_ids: list[str] = field(default_factory=list)
    discarded: int = 0


class QuestionModel(Protocol):
    """Anything that turns a prompt into raw text."""

    def generate(self, prompt: str) -> str: ...


class GeminiQuestionModel:
    """Gemini-backed text generator."""

    def __init__(self, api_key: str, model_name: str, temperature: float = 0.7):
        if not api_key:
            raise ValueError("Gemini API key required")
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self._client = None

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiQuestionModel | None:
        if not settings.gemini_api_key:
            return None
        return cls(settings.gemini_api_key, settings.ai_model)

    @property
    def client(self):
        """Lazy-load Gemini client."""
        if self._client is None:
            import google.generativeai as genai

            genai.configure(api_key=self.api_key)
            self._client = genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=SYSTEM_PROMPT,
            )
        return self._client

    def generate(self, prompt: str) -> str:
        try:
            response = self.client.generate_content(
                prompt,
                generation_config={
                    "temperature": self.temperature,
                    "top_p": 0.8,
                    "max_output_tokens": 8192,
                },
            )
        except Exception as e:
            raise GenerationFailed(f"Gemini API error: {e}") from e

        text = getattr(response, "text", None)
        if not text:
            raise GenerationFailed("Empty response from Gemini")
        return text.strip()


class ContentGenerationOrchestrator:
    """Generates, sanitizes and stores catalog questions."""

    def __init__(
        self,
        db: Database,
        model: QuestionModel | None,
        knowledge: KnowledgeClient | None = None,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        flight: SingleFlight | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.model = model
        self.knowledge = knowledge
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.flight = flight or SingleFlight()
        self._sleep = sleep

    @property
    def available(self) -> bool:
        return self.model is not None

    # =========================================================================
    # Public API
    # =========================================================================

    def replenish(
        self,
        competency_area: str,
        difficulty: str | None,
        count: int,
        skill_category: str | None = None,
    ) -> GenerationResult:
        """
        Generate ``count`` questions for a bucket and insert them into the catalog.

        Concurrent calls with the same key wait for the first and share its result.

        Raises:
            GenerationFailed: No usable questions after all retries
        """
        request = GenerationRequest(
            competency_area=competency_area,
            skill_category=skill_category or default_skill_category(competency_area),
            difficulty=difficulty if difficulty and difficulty != ADAPTIVE else DIFFICULTY_FALLBACK,
            count=count,
        )
        return self.flight.do(request.flight_key, lambda: self._run(request))

    def generate(self, request: GenerationRequest) -> tuple[list[dict[str, Any]], int]:
        """
        Call the model until it yields at least one valid question.

        Returns:
            (sanitized questions, attempts used)
        """
        if self.model is None:
            raise GenerationFailed("No question model configured")

        prompt = build_question_prompt(
            request.competency_area,
            request.skill_category,
            request.difficulty,
            request.count,
            request.knowledge_context,
        )
        defaults = QuestionDefaults(
            competency_area=request.competency_area,
            skill_category=request.skill_category,
            difficulty=request.difficulty,
        )
        used = 0

        def _attempt(attempt: int) -> list[dict[str, Any]]:
            nonlocal used
            used = attempt
            logger.info(
                "Generating {} questions for {} / {} (attempt {}/{})",
                request.count,
                request.competency_area,
                request.skill_category,
                attempt,
                self.max_retries,
            )
            raw = self.model.generate(prompt)
            questions = sanitize_questions(parse_question_array(raw)[: request.count], defaults)
            if not questions:
                raise MalformedGeneratedContent("No valid questions in generated content", raw=raw)
            return questions

        try:
            questions = retry_with_backoff(
                _attempt,
                attempts=self.max_retries,
                base_delay=self.backoff_seconds,
                retry_on=(GenerationFailed, MalformedGeneratedContent),
                label=f"generation {request.competency_area}/{request.difficulty}",
                sleep=self._sleep,
            )
        except (GenerationFailed, MalformedGeneratedContent) as exc:
            raise GenerationFailed(
                f"Generation failed for {request.competency_area}: {exc}", attempts=used
            ) from exc
        return questions, used

    # =========================================================================
    # Internals
    # =========================================================================

    def _run(self, request: GenerationRequest) -> GenerationResult:
        if request.knowledge_context is None and self.knowledge is not None:
            context = format_for_prompt(self.knowledge.content_for_domain(request.competency_area))
            if context:
                request = GenerationRequest(
                    competency_area=request.competency_area,
                    skill_category=request.skill_category,
                    difficulty=request.difficulty,
                    count=request.count,
                    knowledge_context=context,
                )

        method = (
            GenerationMethod.RAG_ENHANCED if request.knowledge_context else GenerationMethod.AI_GENERATED
        )
        questions, attempts = self.generate(request)

        for question in questions:
            question["quality_score"] = GENERATED_QUALITY_SCORE

        with self.db.session_scope() as session:
            rows = QuestionRepository(session).add_many(questions, method.value)
            ids = [row.question_id for row in rows]

        logger.info(
            "Generated and saved {} questions for {} ({}, {} attempts)",
            len(ids),
            request.competency_area,
            method.value,
            attempts,
        )
        return GenerationResult(
            request=request,
            method=method,
            attempts=attempts,
            question_ids=ids,
            discarded=max(0, request.count - len(ids)),
        )
