"""
Exam taxonomy: the fixed enumerations every question is classified against.

Four overlapping axes classify content (competency area, skill category,
skill topic, test subject). Each question carries exactly one value per axis.
The *_MAPPINGS tables translate the near-miss labels generators tend to
produce into valid values; the *_FALLBACK constants are used when no mapping
exists.
"""

from __future__ import annotations

from enum import Enum

from certprep.core.rounding import round_half_up


class CompetencyArea(str, Enum):
    """Top-level exam competency areas."""

    PHYSICAL_CARE = "Physical Care Skills"
    PSYCHOSOCIAL_CARE = "Psychosocial Care Skills"
    ROLE_OF_NURSE_AIDE = "Role of the Nurse Aide"


class Difficulty(str, Enum):
    """Authored difficulty of a question or blueprint."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class QuestionStatus(str, Enum):
    """Catalog lifecycle status."""

    ACTIVE = "active"
    REVIEW = "review"
    RETIRED = "retired"
    DRAFT = "draft"


# Preference value meaning "any difficulty"
ADAPTIVE = "adaptive"

COMPETENCY_AREAS: list[str] = [c.value for c in CompetencyArea]

SKILL_CATEGORIES_BY_AREA: dict[str, list[str]] = {
    CompetencyArea.PHYSICAL_CARE.value: [
        "Activities of Daily Living",
        "Basic Nursing Skills",
        "Restorative Skills",
    ],
    CompetencyArea.PSYCHOSOCIAL_CARE.value: [
        "Emotional and Mental Health Needs",
        "Spiritual and Cultural Needs",
    ],
    CompetencyArea.ROLE_OF_NURSE_AIDE.value: [
        "Communication",
        "Client Rights",
        "Legal and Ethical Behavior",
        "Member of the Health Care Team",
    ],
}

SKILL_CATEGORIES: list[str] = [
    category for categories in SKILL_CATEGORIES_BY_AREA.values() for category in categories
]

SKILL_TOPICS: list[str] = [
    # Activities of Daily Living
    "Hygiene",
    "Dressing and Grooming",
    "Nutrition and Hydration",
    "Elimination",
    "Rest/Sleep/Comfort",
    # Basic Nursing Skills
    "Infection Control",
    "Safety and Emergency Procedures",
    "Therapeutic and Technical Procedures",
    "Data Collection/Reporting",
    # Restorative Skills
    "Prevention",
    "Self-Care",
    "Independence for the Client",
    # Emotional and Mental Health Needs
    "Psychological Support",
    "Handling Confusion and Dementia",
    "Managing Emotional Distress",
    # Spiritual and Cultural Needs
    "Cultural Beliefs Respect",
    "Spiritual Values in Caregiving",
    # Communication
    "Resident Interaction",
    "Family Communication",
    "Healthcare Team Communication",
    # Client Rights
    "Privacy Rights",
    "Dignity and Respect",
    "Resident Autonomy",
    # Legal and Ethical Behavior
    "Confidentiality",
    "Ethical Conduct",
    "Regulatory Compliance",
    # Member of the Health Care Team
    "Team Collaboration",
    "CNA Responsibilities",
    "Professional Boundaries",
]

TEST_SUBJECTS: list[str] = [
    "Resident care and daily living activities",
    "Infection control",
    "Safety and emergency procedures",
    "Communication and interpersonal skills",
    "Legal/ethical principles",
    "Resident's rights",
    "Mental health and social service needs",
    "Personal care skills",
    "Data collection/reporting",
]

DIFFICULTIES: list[str] = [d.value for d in Difficulty]

CORRECT_ANSWERS: list[str] = ["A", "B", "C", "D"]

# =============================================================================
# Repair tables for generated content
# =============================================================================

SKILL_TOPIC_MAPPINGS: dict[str, str] = {
    "Reporting and Observation": "Data Collection/Reporting",
    "Observation and Reporting": "Data Collection/Reporting",
    "Data Collection and Reporting": "Data Collection/Reporting",
    "Emergency Procedures": "Safety and Emergency Procedures",
    "Emergency Response": "Safety and Emergency Procedures",
    "Personal Hygiene": "Hygiene",
    "Basic Hygiene": "Hygiene",
    "Nutritional Support": "Nutrition and Hydration",
    "Feeding and Nutrition": "Nutrition and Hydration",
    "Communication Skills": "Resident Interaction",
    "Resident Communication": "Resident Interaction",
}

TEST_SUBJECT_MAPPINGS: dict[str, str] = {
    "Emergency Situations": "Safety and emergency procedures",
    "Emergency Response": "Safety and emergency procedures",
    "Personal Care": "Personal care skills",
    "Daily Living Activities": "Resident care and daily living activities",
    "Resident Care": "Resident care and daily living activities",
    "Communication Skills": "Communication and interpersonal skills",
    "Legal and Ethical": "Legal/ethical principles",
    "Mental Health": "Mental health and social service needs",
    # Generators confuse the skill-topic and test-subject axes
    "CNA Responsibilities": "Personal care skills",
    "Team Collaboration": "Communication and interpersonal skills",
    "Professional Boundaries": "Legal/ethical principles",
}

DIFFICULTY_MAPPINGS: dict[str, str] = {
    "easy": "beginner",
    "basic": "beginner",
    "simple": "beginner",
    "medium": "intermediate",
    "normal": "intermediate",
    "standard": "intermediate",
    "hard": "advanced",
    "difficult": "advanced",
    "expert": "advanced",
    "challenging": "advanced",
}

SKILL_TOPIC_FALLBACK = "Data Collection/Reporting"
TEST_SUBJECT_FALLBACK = "Personal care skills"
DIFFICULTY_FALLBACK = Difficulty.INTERMEDIATE.value

# =============================================================================
# Quiz composition
# =============================================================================

# Exam blueprint share (%) per competency area
DEFAULT_COMPETENCY_RATIOS: dict[str, int] = {
    CompetencyArea.PHYSICAL_CARE.value: 64,
    CompetencyArea.PSYCHOSOCIAL_CARE.value: 10,
    CompetencyArea.ROLE_OF_NURSE_AIDE.value: 26,
}

DIFFICULTY_ROTATION: list[str] = DIFFICULTIES

DEFAULT_SKILL_CATEGORY: dict[str, str] = {
    CompetencyArea.PHYSICAL_CARE.value: "Basic Nursing Skills",
    CompetencyArea.PSYCHOSOCIAL_CARE.value: "Emotional and Mental Health Needs",
    CompetencyArea.ROLE_OF_NURSE_AIDE.value: "Communication",
}


def distribution_from_ratios(
    question_count: int,
    ratios: dict[str, int] | None = None,
) -> dict[str, int]:
    """
    Split a question count across competency areas.

    Each share is rounded independently, so the total can differ from
    ``question_count`` by one in either direction.

    Args:
        question_count: Total questions wanted
        ratios: Percent share per area (defaults to the exam blueprint)

    Returns:
        Requested count per competency area
    """
    ratios = ratios or DEFAULT_COMPETENCY_RATIOS
    return {
        area: round_half_up(share * question_count / 100)
        for area, share in ratios.items()
    }


def default_skill_category(competency_area: str) -> str:
    """Skill category assumed when a generation request names none."""
    return DEFAULT_SKILL_CATEGORY.get(competency_area, "Basic Nursing Skills")
