"""Prompt templates for question generation."""

from __future__ import annotations

from certprep.core.taxonomy import SKILL_TOPICS, TEST_SUBJECTS

# Knowledge context is truncated to keep prompts within model limits
MAX_CONTEXT_CHARS = 2000

SYSTEM_PROMPT = (
    "You write certification exam practice questions for nurse aide (CNA) "
    "candidates. Questions are realistic workplace scenarios with one correct "
    "answer and plausible distractors. You always answer with a JSON array only."
)


def _bullets(values: list[str]) -> str:
    return "\n".join(f"- {value}" for value in values)


def build_question_prompt(
    competency_area: str,
    skill_category: str,
    difficulty: str,
    count: int,
    knowledge_context: str | None = None,
) -> str:
    """Prompt asking for ``count`` questions in the strict JSON shape the parser expects."""
    prompt = (
        f'Generate exactly {count} CNA certification exam questions for the "{competency_area}" '
        f'competency area, specifically focusing on "{skill_category}".'
    )

    if knowledge_context:
        prompt += (
            "\n\nBase the questions on the following training content:\n"
            f"{knowledge_context[:MAX_CONTEXT_CHARS]}"
        )

    prompt += f"""

REQUIREMENTS:
- Each question must be multiple choice with exactly 4 options (A, B, C, D)
- Questions should be realistic scenarios that CNAs encounter
- Difficulty level: {difficulty}
- One correct answer per question
- Include detailed explanations
- Questions must relate to specific skill topics within {skill_category}

CRITICAL REQUIREMENTS - You must use ONLY these exact values (case-sensitive):

skillTopic (specific nursing skill within the category - choose ONE):
{_bullets(SKILL_TOPICS)}

testSubject (broader exam category for certification - choose ONE):
{_bullets(TEST_SUBJECTS)}

IMPORTANT NOTES:
- skillTopic is a SPECIFIC skill (like "Hygiene" or "Data Collection/Reporting")
- testSubject is a BROAD exam category (like "Personal care skills")
- "CNA Responsibilities" goes in skillTopic, NOT testSubject

STRICT JSON FORMAT - Return ONLY a valid JSON array:
[
  {{
    "question": "Question text here",
    "options": {{"A": "Option A text", "B": "Option B text", "C": "Option C text", "D": "Option D text"}},
    "correctAnswer": "A",
    "competencyArea": "{competency_area}",
    "skillCategory": "{skill_category}",
    "skillTopic": "one of the skillTopic values above",
    "testSubject": "one of the testSubject values above",
    "difficulty": "{difficulty}",
    "explanation": "Detailed explanation of the correct answer"
  }}
]

Generate exactly {count} questions. Return ONLY the JSON array, no other text."""
    return prompt
