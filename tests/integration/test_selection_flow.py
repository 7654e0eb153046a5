"""
Integration tests for SelectionEngine against the in-memory catalog.

Covers distribution filling, shortfall reporting, recent-question exclusion,
difficulty filtering and replenishment of empty buckets.
"""

from collections import Counter

from certprep.core.taxonomy import COMPETENCY_AREAS, CompetencyArea, distribution_from_ratios
from certprep.quiz.selection_engine import SelectionPreferences

PHYSICAL = CompetencyArea.PHYSICAL_CARE.value
PSYCHOSOCIAL = CompetencyArea.PSYCHOSOCIAL_CARE.value
ROLE = CompetencyArea.ROLE_OF_NURSE_AIDE.value


def _areas(result):
    return Counter(q.competency_area for q in result.selected)


class TestDistribution:
    def test_default_quiz_is_filled(self, services, seeded_catalog):
        result = services.engine.select("nurse-1", distribution_from_ratios(30))

        assert result.total_selected == 30
        assert not result.is_degraded
        assert [_areas(result)[area] for area in COMPETENCY_AREAS] == [19, 3, 8]
        assert len({q.question_id for q in result.selected}) == 30
        assert [q.position for q in result.selected] == list(range(1, 31))
        assert {q.selection_reason for q in result.selected} == {"new_question"}

    def test_thin_bucket_reports_shortfall(self, services, add_questions):
        add_questions(PHYSICAL, 15)
        add_questions(PSYCHOSOCIAL, 6)
        add_questions(ROLE, 12)

        result = services.engine.select("nurse-1", distribution_from_ratios(30))

        assert result.total_selected == 26
        assert result.shortfall == {PHYSICAL: 4}
        assert len({q.question_id for q in result.selected}) == 26

    def test_zero_buckets_are_skipped(self, services, seeded_catalog):
        result = services.engine.select("nurse-1", {PHYSICAL: 0, ROLE: 2})

        assert result.total_requested == 2
        assert _areas(result) == {ROLE: 2}


class TestFiltering:
    def test_recently_answered_questions_are_excluded(self, services, add_questions):
        ids = add_questions(PHYSICAL, 5)
        for question_id in ids[:2]:
            services.tracker.record_attempt("nurse-1", question_id, selected_answer="A", is_correct=True)

        result = services.engine.select("nurse-1", {PHYSICAL: 5})

        assert {q.question_id for q in result.selected} == set(ids[2:])
        assert result.shortfall == {PHYSICAL: 2}

    def test_recent_window_can_be_disabled(self, services, add_questions):
        ids = add_questions(PHYSICAL, 3)
        services.tracker.record_attempt("nurse-1", ids[0], selected_answer="B", is_correct=False)

        result = services.engine.select("nurse-1", {PHYSICAL: 3}, SelectionPreferences(avoid_recent=False))

        assert result.total_selected == 3
        reasons = {q.question_id: q.selection_reason for q in result.selected}
        assert reasons[ids[0]] == "weak_area_focus"

    def test_difficulty_filter(self, services, add_questions):
        beginner = add_questions(ROLE, 4, difficulty="beginner")
        add_questions(ROLE, 4, difficulty="advanced")

        result = services.engine.select("nurse-1", {ROLE: 4}, SelectionPreferences(difficulty="beginner"))

        assert {q.question_id for q in result.selected} == set(beginner)

    def test_other_users_history_does_not_matter(self, services, add_questions):
        ids = add_questions(PHYSICAL, 2)
        services.tracker.record_attempt("nurse-2", ids[0], selected_answer="A", is_correct=True)

        assert services.engine.select("nurse-1", {PHYSICAL: 2}).total_selected == 2


class TestReplenishment:
    def test_empty_bucket_is_generated(self, services, fake_model, add_questions, question_json):
        low_quality = add_questions(PSYCHOSOCIAL, 3, quality=40)
        fake_model.responses = [question_json(PSYCHOSOCIAL, 10)]

        result = services.engine.select("nurse-1", {PSYCHOSOCIAL: 4})

        assert result.total_selected == 4
        assert not result.is_degraded
        assert not {q.question_id for q in result.selected} & set(low_quality)
        assert len(fake_model.prompts) == 1

    def test_failed_generation_leaves_shortfall(self, services, seeded_catalog):
        # fake model has no responses, so every generation attempt fails
        result = services.engine.select("nurse-1", {PHYSICAL: 2, "Unknown Area": 3})

        assert _areas(result) == {PHYSICAL: 2}
        assert result.shortfall == {"Unknown Area": 3}
