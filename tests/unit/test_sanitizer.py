"""
Unit tests for generated-question sanitizing.

Tests:
- Structure fix (fields nested in options, missing explanation)
- Taxonomy and difficulty repair
- Validation and per-question discard
"""

import pytest

from certprep.core.taxonomy import SKILL_TOPIC_FALLBACK, TEST_SUBJECT_FALLBACK
from certprep.generation.sanitizer import (
    DEFAULT_EXPLANATION,
    QuestionDefaults,
    fix_structure,
    repair_difficulty,
    repair_skill_topic,
    repair_test_subject,
    sanitize_question,
    sanitize_questions,
)

DEFAULTS = QuestionDefaults(
    competency_area="Physical Care Skills",
    skill_category="Basic Nursing Skills",
    difficulty="beginner",
)


def _raw(**overrides):
    raw = {
        "question": "What should the aide do first?",
        "options": {"A": "Wash hands", "B": "Leave", "C": "Call", "D": "Wait"},
        "correctAnswer": "A",
        "explanation": "Hand hygiene comes first.",
        "competencyArea": "Physical Care Skills",
        "skillCategory": "Basic Nursing Skills",
        "skillTopic": "Infection Control",
        "testSubject": "Infection control",
        "difficulty": "beginner",
    }
    raw.update(overrides)
    return raw


class TestFixStructure:
    def test_moves_fields_out_of_options(self):
        raw = _raw(
            options={
                "A": "Wash hands",
                "B": "Leave",
                "C": "Call",
                "D": "Wait",
                "correctAnswer": "A",
                "explanation": "Nested.",
            },
            correctAnswer=None,
            explanation=None,
        )
        fixed = fix_structure(raw)

        assert sorted(fixed["options"]) == ["A", "B", "C", "D"]
        assert fixed["correct_answer"] == "A"
        assert fixed["explanation"] == "Nested."

    def test_top_level_value_wins_over_nested(self):
        raw = _raw(options={"A": "1", "B": "2", "C": "3", "D": "4", "correctAnswer": "D"})
        assert fix_structure(raw)["correct_answer"] == "A"

    def test_missing_explanation_gets_placeholder(self):
        assert fix_structure(_raw(explanation=""))["explanation"] == DEFAULT_EXPLANATION

    def test_content_key_accepted(self):
        raw = _raw()
        raw["content"] = raw.pop("question")
        assert fix_structure(raw)["content"] == "What should the aide do first?"


class TestRepairs:
    @pytest.mark.parametrize(
        "value,expected",
        [("Easy", "beginner"), ("hard", "advanced"), ("intermediate", "intermediate"), ("weird", "beginner"), (None, "beginner")],
    )
    def test_difficulty(self, value, expected):
        assert repair_difficulty(value, "beginner") == expected

    def test_skill_topic_mapping_and_fallback(self):
        assert repair_skill_topic("Personal Hygiene") == "Hygiene"
        assert repair_skill_topic("Hygiene") == "Hygiene"
        assert repair_skill_topic("Underwater Basket Weaving") == SKILL_TOPIC_FALLBACK

    def test_test_subject_mapping_and_fallback(self):
        assert repair_test_subject("Emergency Situations") == "Safety and emergency procedures"
        assert repair_test_subject(None) == TEST_SUBJECT_FALLBACK


class TestSanitize:
    def test_valid_question(self):
        question = sanitize_question(_raw(correctAnswer=" a "), DEFAULTS)

        assert question["correct_answer"] == "A"
        assert question["content"] == "What should the aide do first?"
        assert question["skill_topic"] == "Infection Control"

    def test_competency_area_case_insensitive_with_default(self):
        assert sanitize_question(_raw(competencyArea="physical care skills"), DEFAULTS)["competency_area"] == (
            "Physical Care Skills"
        )
        assert sanitize_question(_raw(competencyArea="Cooking"), DEFAULTS)["competency_area"] == (
            DEFAULTS.competency_area
        )

    @pytest.mark.parametrize(
        "overrides",
        [
            {"question": ""},
            {"options": {"A": "1", "B": "2", "C": "3"}},
            {"options": {"A": "1", "B": "2", "C": "3", "D": " "}},
            {"correctAnswer": "E"},
        ],
    )
    def test_invalid_questions_discarded(self, overrides):
        assert sanitize_question(_raw(**overrides), DEFAULTS) is None

    def test_batch_keeps_valid_ones(self):
        batch = [_raw(), _raw(correctAnswer="Z"), _raw(question="Another?")]
        kept = sanitize_questions(batch, DEFAULTS)

        assert [q["content"] for q in kept] == ["What should the aide do first?", "Another?"]
