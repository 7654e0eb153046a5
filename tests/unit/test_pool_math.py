"""
Unit tests for quiz pool scoring helpers.

Tests:
- Blueprint quality from distribution and completeness
- Difficulty rating from average score
- Client-safe blueprint formatting
"""

import pytest

from certprep.db.models import QuizPoolEntry
from certprep.quiz.pool_manager import (
    blueprint_quality_score,
    difficulty_rating,
    format_for_user,
    low_usage_reason,
)


def _question(area: str, **overrides) -> dict:
    question = {
        "question_id": f"q_{area[:4]}",
        "competency_area": area,
        "content": "Question?",
        "options": {"A": "a", "B": "b", "C": "c", "D": "d"},
        "correct_answer": "A",
        "explanation": "Because.",
    }
    question.update(overrides)
    return question


def _blueprint(physical: int, psychosocial: int, role: int) -> list[dict]:
    return (
        [_question("Physical Care Skills") for _ in range(physical)]
        + [_question("Psychosocial Care Skills") for _ in range(psychosocial)]
        + [_question("Role of the Nurse Aide") for _ in range(role)]
    )


class TestBlueprintQuality:
    def test_ideal_distribution(self):
        # 16/2.5/6.5 of 25 cannot be hit exactly; 64/10/26 of 50 can
        questions = _blueprint(32, 5, 13)
        assert blueprint_quality_score(questions) == 85

    def test_skewed_distribution_scores_lower(self):
        ideal = blueprint_quality_score(_blueprint(32, 5, 13))
        skewed = blueprint_quality_score(_blueprint(50, 0, 0))

        assert skewed < ideal

    def test_incomplete_questions_penalized(self):
        questions = _blueprint(32, 5, 13)
        questions[0] = _question("Physical Care Skills", explanation="")
        questions[1] = _question("Physical Care Skills", options={"A": "a", "B": "b", "C": "c"})

        # completeness 100 - 10 - 5 = 85, distribution 70
        assert blueprint_quality_score(questions) == 78

    def test_empty_blueprint(self):
        assert blueprint_quality_score([]) == 0


class TestDifficultyRating:
    @pytest.mark.parametrize(
        "average,rating",
        [(70, 4), (100, 1), (0, 10), (55, 5), (30, 8), (65, 4), (45, 6)],
    )
    def test_rating(self, average, rating):
        assert difficulty_rating(average) == rating

    def test_two_completions_average_seventy(self):
        average = (80 + 60) / 2
        assert average == 70
        assert difficulty_rating(average) == 4


def test_format_for_user_strips_answers():
    entry = QuizPoolEntry(
        quiz_id="quiz_1",
        questions=[_question("Physical Care Skills")],
        difficulty="beginner",
        total_questions=1,
    )
    view = format_for_user(entry)

    assert view["quiz_id"] == "quiz_1"
    assert "correct_answer" not in view["questions"][0]
    assert "explanation" not in view["questions"][0]
    assert view["questions"][0]["content"] == "Question?"


@pytest.mark.parametrize(
    "age_days,reason",
    [
        (180, "Low usage after 6 months"),
        (30, "Low usage after 1 month"),
        (45, "Low usage after 45 days"),
    ],
)
def test_low_usage_reason_follows_configured_age(age_days, reason):
    assert low_usage_reason(age_days) == reason
