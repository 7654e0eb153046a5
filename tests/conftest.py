"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import json
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from certprep.config import Settings  # noqa: E402
from certprep.core.exceptions import GenerationFailed  # noqa: E402
from certprep.core.taxonomy import CompetencyArea  # noqa: E402
from certprep.db.database import Database  # noqa: E402
from certprep.db.repositories.questions import QuestionRepository  # noqa: E402
from certprep.services import build_services  # noqa: E402

# Keep test output clean
logger.remove()

AREA_TAXONOMY = {
    CompetencyArea.PHYSICAL_CARE.value: ("Basic Nursing Skills", "Infection Control", "Infection control"),
    CompetencyArea.PSYCHOSOCIAL_CARE.value: (
        "Emotional and Mental Health Needs",
        "Psychological Support",
        "Mental health and social service needs",
    ),
    CompetencyArea.ROLE_OF_NURSE_AIDE.value: (
        "Communication",
        "Resident Interaction",
        "Communication and interpersonal skills",
    ),
}


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 3, 3, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeQuestionModel:
    """Question model that returns canned responses (or raises) in order."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise GenerationFailed("No canned response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def generated_question(area: str, n: int = 1, **overrides) -> dict:
    """A well-formed question as a model would emit it (camelCase keys)."""
    category, topic, subject = AREA_TAXONOMY[area]
    question = {
        "question": f"Generated question {n} about {topic.lower()}?",
        "options": {"A": "First", "B": "Second", "C": "Third", "D": "Fourth"},
        "correctAnswer": "B",
        "explanation": "Second is correct.",
        "competencyArea": area,
        "skillCategory": category,
        "skillTopic": topic,
        "testSubject": subject,
        "difficulty": "intermediate",
    }
    question.update(overrides)
    return question


def model_response(area: str, count: int) -> str:
    return json.dumps([generated_question(area, i) for i in range(1, count + 1)])


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        log_file=None,
        gemini_api_key="",
        knowledge_api_url=None,
        retry_base_delay_seconds=0.0,
        generation_backoff_seconds=0.0,
        pool_min_size=3,
        pool_target_size=5,
        pool_max_generation_per_run=3,
    )


@pytest.fixture
def db():
    """Fresh in-memory SQLite database with all tables."""
    database = Database("sqlite://")
    database.init_db()
    yield database
    database.dispose()


@pytest.fixture
def add_questions(db, clock):
    """
    Factory that seeds the catalog.

    Usage:
        ids = add_questions("Physical Care Skills", 5, difficulty="beginner")
    """

    def _add(area: str, count: int, difficulty: str = "intermediate", quality: int = 80, answer: str = "A"):
        category, topic, subject = AREA_TAXONOMY[area]
        questions = [
            {
                "content": f"{area} question {i}",
                "options": {"A": "Alpha", "B": "Beta", "C": "Gamma", "D": "Delta"},
                "correct_answer": answer,
                "explanation": "Because.",
                "competency_area": area,
                "skill_category": category,
                "skill_topic": topic,
                "test_subject": subject,
                "difficulty": difficulty,
                "quality_score": quality,
            }
            for i in range(count)
        ]
        with db.session_scope() as session:
            rows = QuestionRepository(session).add_many(questions, "seed")
            return [row.question_id for row in rows]

    return _add


@pytest.fixture
def seeded_catalog(add_questions):
    """Enough questions in every area for a default 30-question quiz."""
    return {
        CompetencyArea.PHYSICAL_CARE.value: add_questions(CompetencyArea.PHYSICAL_CARE.value, 25),
        CompetencyArea.PSYCHOSOCIAL_CARE.value: add_questions(CompetencyArea.PSYCHOSOCIAL_CARE.value, 6),
        CompetencyArea.ROLE_OF_NURSE_AIDE.value: add_questions(CompetencyArea.ROLE_OF_NURSE_AIDE.value, 12),
    }


@pytest.fixture
def fake_model():
    return FakeQuestionModel()


@pytest.fixture
def services(settings, db, clock, fake_model):
    """Fully wired services over the in-memory database."""
    return build_services(settings, db=db, model=fake_model, clock=clock)


@pytest.fixture
def make_model():
    """Factory for canned question models: ``make_model([response, ...])``."""
    return FakeQuestionModel


@pytest.fixture
def raw_question():
    """Factory for one model-shaped question dict."""
    return generated_question


@pytest.fixture
def question_json():
    """Factory for a model response holding ``count`` questions."""
    return model_response
