"""Unit tests for the exam taxonomy and id formats."""

import re

import pytest

from certprep.core.ids import new_question_id, new_quiz_id, new_session_id, to_base36
from certprep.core.rounding import round_half_up
from certprep.core.taxonomy import (
    COMPETENCY_AREAS,
    DEFAULT_COMPETENCY_RATIOS,
    SKILL_CATEGORIES,
    SKILL_CATEGORIES_BY_AREA,
    SKILL_TOPIC_FALLBACK,
    SKILL_TOPIC_MAPPINGS,
    SKILL_TOPICS,
    TEST_SUBJECT_FALLBACK,
    TEST_SUBJECT_MAPPINGS,
    TEST_SUBJECTS,
    default_skill_category,
    distribution_from_ratios,
)


class TestTaxonomy:
    def test_ratios_cover_every_area(self):
        assert set(DEFAULT_COMPETENCY_RATIOS) == set(COMPETENCY_AREAS)
        assert sum(DEFAULT_COMPETENCY_RATIOS.values()) == 100

    def test_mappings_target_valid_values(self):
        assert set(SKILL_TOPIC_MAPPINGS.values()) <= set(SKILL_TOPICS)
        assert set(TEST_SUBJECT_MAPPINGS.values()) <= set(TEST_SUBJECTS)
        assert SKILL_TOPIC_FALLBACK in SKILL_TOPICS
        assert TEST_SUBJECT_FALLBACK in TEST_SUBJECTS

    def test_default_skill_category_belongs_to_area(self):
        for area in COMPETENCY_AREAS:
            assert default_skill_category(area) in SKILL_CATEGORIES_BY_AREA[area]
        assert len(SKILL_CATEGORIES) == len(set(SKILL_CATEGORIES))

    @pytest.mark.parametrize(
        "count,expected",
        [
            (30, [19, 3, 8]),
            (10, [6, 1, 3]),
            (50, [32, 5, 13]),
        ],
    )
    def test_distribution_from_ratios(self, count, expected):
        distribution = distribution_from_ratios(count)
        assert [distribution[area] for area in COMPETENCY_AREAS] == expected

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (6.5, 7), (0.5, 1), (2.4, 2), (62.5, 63), (0, 0)])
    def test_halves_round_up(self, value, expected):
        assert round_half_up(value) == expected


class TestIds:
    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_formats(self):
        assert re.fullmatch(r"q_[0-9a-z]+_[0-9a-f]{8}", new_question_id())
        assert re.fullmatch(r"quiz_[0-9a-z]+_[0-9a-f]{8}", new_quiz_id())
        assert re.fullmatch(r"session_[0-9a-z]+_[0-9a-z]{6}", new_session_id())

    def test_ids_are_unique(self):
        assert len({new_question_id() for _ in range(200)}) == 200
