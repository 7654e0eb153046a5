"""
Sanitize generated questions before they reach the catalog.

Pipeline per question:
    fix_structure -> repair taxonomy / difficulty -> validate

Questions that still fail validation are dropped individually; the rest of
the batch is kept.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from certprep.core.taxonomy import (
    COMPETENCY_AREAS,
    CORRECT_ANSWERS,
    DIFFICULTIES,
    DIFFICULTY_FALLBACK,
    DIFFICULTY_MAPPINGS,
    SKILL_CATEGORIES,
    SKILL_TOPIC_FALLBACK,
    SKILL_TOPIC_MAPPINGS,
    SKILL_TOPICS,
    TEST_SUBJECT_FALLBACK,
    TEST_SUBJECT_MAPPINGS,
    TEST_SUBJECTS,
)

DEFAULT_EXPLANATION = "Please review this question for explanation completeness."

# Fields models sometimes nest inside "options"; (output name, accepted input keys)
_MISPLACED_FIELDS: list[tuple[str, tuple[str, ...]]] = [
    ("correct_answer", ("correctAnswer", "correct_answer")),
    ("explanation", ("explanation",)),
    ("competency_area", ("competencyArea", "competency_area")),
    ("skill_category", ("skillCategory", "skill_category")),
    ("skill_topic", ("skillTopic", "skill_topic")),
    ("test_subject", ("testSubject", "test_subject")),
    ("difficulty", ("difficulty",)),
]


@dataclass(frozen=True)
class QuestionDefaults:
    """Values from the generation request used when the model omits or garbles them."""

    competency_area: str
    skill_category: str
    difficulty: str = DIFFICULTY_FALLBACK


def fix_structure(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Normalize a raw model question to snake_case keys.

    Fields found inside ``options`` are moved to the top level unless the top
    level already has them; a missing explanation gets a placeholder.
    """
    options = raw.get("options")
    options = dict(options) if isinstance(options, dict) else {}

    fixed: dict[str, Any] = {
        "content": raw.get("question") or raw.get("content") or "",
    }
    for name, keys in _MISPLACED_FIELDS:
        value = next((raw[k] for k in keys if raw.get(k) not in (None, "")), None)
        for key in keys:
            nested = options.pop(key, None)
            if value is None and nested not in (None, ""):
                logger.debug("Moving {} out of options", key)
                value = nested
        fixed[name] = value

    fixed["options"] = options
    if not fixed["explanation"]:
        fixed["explanation"] = DEFAULT_EXPLANATION
    return fixed


def repair_difficulty(value: Any, default: str = DIFFICULTY_FALLBACK) -> str:
    if not isinstance(value, str):
        return default
    key = value.strip().lower()
    if key in DIFFICULTIES:
        return key
    return DIFFICULTY_MAPPINGS.get(key, default)


def _lookup(value: Any, valid: list[str], mappings: dict[str, str], fallback: str, axis: str) -> str:
    if value in valid:
        return value
    if isinstance(value, str) and value in mappings:
        logger.debug("Mapped {} '{}' to '{}'", axis, value, mappings[value])
        return mappings[value]
    logger.warning("Invalid {} '{}', using fallback '{}'", axis, value, fallback)
    return fallback


def repair_skill_topic(value: Any) -> str:
    return _lookup(value, SKILL_TOPICS, SKILL_TOPIC_MAPPINGS, SKILL_TOPIC_FALLBACK, "skill topic")


def repair_test_subject(value: Any) -> str:
    return _lookup(value, TEST_SUBJECTS, TEST_SUBJECT_MAPPINGS, TEST_SUBJECT_FALLBACK, "test subject")


def _match_case_insensitive(value: Any, valid: list[str], default: str) -> str:
    if isinstance(value, str):
        wanted = value.strip().lower()
        for candidate in valid:
            if candidate.lower() == wanted:
                return candidate
    return default


def validation_errors(question: dict[str, Any]) -> list[str]:
    """Problems that make a sanitized question unusable (empty when valid)."""
    errors = []
    if not str(question.get("content", "")).strip():
        errors.append("empty content")
    options = question.get("options") or {}
    if sorted(options) != CORRECT_ANSWERS:
        errors.append(f"options must be exactly A-D, got {sorted(options)}")
    elif any(not str(text).strip() for text in options.values()):
        errors.append("empty option text")
    if question.get("correct_answer") not in CORRECT_ANSWERS:
        errors.append(f"invalid correct answer {question.get('correct_answer')!r}")
    return errors


def sanitize_question(raw: dict[str, Any], defaults: QuestionDefaults) -> dict[str, Any] | None:
    """Repair one generated question; None when it cannot be made valid."""
    question = fix_structure(raw)

    answer = question.get("correct_answer")
    question["correct_answer"] = answer.strip().upper() if isinstance(answer, str) else answer
    question["options"] = {
        str(key).strip().upper(): str(text).strip() for key, text in question["options"].items()
    }
    question["content"] = str(question["content"]).strip()
    question["difficulty"] = repair_difficulty(question.get("difficulty"), defaults.difficulty)
    question["skill_topic"] = repair_skill_topic(question.get("skill_topic"))
    question["test_subject"] = repair_test_subject(question.get("test_subject"))
    question["competency_area"] = _match_case_insensitive(
        question.get("competency_area"), COMPETENCY_AREAS, defaults.competency_area
    )
    question["skill_category"] = _match_case_insensitive(
        question.get("skill_category"), SKILL_CATEGORIES, defaults.skill_category
    )

    errors = validation_errors(question)
    if errors:
        logger.warning("Discarding generated question: {}", "; ".join(errors))
        return None
    return question


def sanitize_questions(raw_questions: list[dict[str, Any]], defaults: QuestionDefaults) -> list[dict[str, Any]]:
    sanitized = [sanitize_question(raw, defaults) for raw in raw_questions]
    kept = [q for q in sanitized if q is not None]
    if len(kept) < len(raw_questions):
        logger.info("Kept {}/{} generated questions", len(kept), len(raw_questions))
    return kept
