"""
Integration tests for QuizPoolManager.

Covers blueprint creation, assignment fairness and reuse, the completion
ledger with its projections, retirement, health and replenishment.
"""

from dataclasses import replace

import pytest

from certprep.core.exceptions import PoolExhausted
from certprep.core.taxonomy import COMPETENCY_AREAS, DIFFICULTIES
from certprep.db.models import QuizPoolEntry, QuizPoolUsage
from certprep.db.repositories.questions import health_status
from certprep.quiz.pool_manager import blueprint_quality_score


@pytest.fixture
def blueprint(services, seeded_catalog):
    """One 10-question intermediate blueprint."""
    return services.pool.create_blueprint("intermediate", question_count=10)


def _entry(db, quiz_id):
    with db.session_scope() as session:
        entry = session.get(QuizPoolEntry, quiz_id)
        session.expunge(entry)
        return entry


class TestBlueprints:
    def test_snapshot_holds_full_questions(self, services, db, blueprint):
        stored = services.pool.get_blueprint(blueprint)
        entry = _entry(db, blueprint)

        assert stored["total_questions"] == 10
        assert all(q["correct_answer"] == "A" and q["content"] for q in stored["questions"])
        assert [q["position"] for q in stored["questions"]] == list(range(1, 11))
        assert entry.quality_score == blueprint_quality_score(stored["questions"])
        assert entry.is_active and entry.total_uses == 0

    def test_empty_catalog_gives_no_blueprint(self, services):
        assert services.pool.create_blueprint("beginner", question_count=5) is None

    def test_unknown_blueprint(self, services):
        assert services.pool.get_blueprint("quiz_missing") is None


class TestAssignment:
    def test_assignment_hides_answers_and_is_reused(self, services, blueprint):
        first = services.pool.assign_quiz("nurse-1")
        again = services.pool.assign_quiz("nurse-1")

        assert first.quiz_id == blueprint
        assert not first.reused
        assert again.reused and again.quiz_id == blueprint
        assert first.total_questions == 10
        assert all("correct_answer" not in q and "explanation" not in q for q in first.questions)

    def test_expired_assignment_is_replaced(self, services, clock, blueprint):
        services.pool.assign_quiz("nurse-1")
        clock.advance(hours=25)

        assert not services.pool.assign_quiz("nurse-1").reused

    def test_completed_blueprint_is_never_assigned_again(self, services, blueprint):
        other = services.pool.create_blueprint("intermediate", question_count=5)
        assigned = services.pool.assign_quiz("nurse-1").quiz_id
        assert services.pool.mark_completed("nurse-1", assigned, score=90)

        following = services.pool.assign_quiz("nurse-1")
        assert following.quiz_id != assigned
        assert following.quiz_id in {blueprint, other}

        services.pool.mark_completed("nurse-1", following.quiz_id, score=70)
        assert services.pool.assign_quiz("nurse-1") is None

    def test_difficulty_filter(self, services, blueprint):
        assert services.pool.assign_quiz("nurse-1", "advanced") is None
        assert services.pool.assign_quiz("nurse-1", "intermediate").quiz_id == blueprint


class TestCompletion:
    def test_duplicate_completion_is_ignored(self, services, blueprint):
        assert services.pool.mark_completed("nurse-1", blueprint, score=80)
        assert not services.pool.mark_completed("nurse-1", blueprint, score=20)

        history = services.pool.user_history("nurse-1")
        assert history["total_quizzes_taken"] == 1
        assert history["average_score"] == 80

    def test_unknown_blueprint_is_ignored(self, services):
        assert not services.pool.mark_completed("nurse-1", "quiz_missing", score=50)

    def test_aggregates_across_users(self, services, db, blueprint):
        services.pool.mark_completed("nurse-1", blueprint, score=80, duration_minutes=20)
        services.pool.mark_completed("nurse-2", blueprint, score=60, duration_minutes=30)

        entry = _entry(db, blueprint)
        assert entry.total_uses == 2
        assert entry.average_score == 70.0
        assert entry.difficulty_rating == 4
        assert entry.average_completion_time == 25.0

    def test_history_projection(self, services, clock, blueprint):
        services.pool.assign_quiz("nurse-1")
        services.pool.mark_completed("nurse-1", blueprint, score=100, percentage=100)

        history = services.pool.user_history("nurse-1")
        assert history["assignment_completed"]
        assert history["current_streak"] == 1
        assert {a["type"] for a in history["achievements"]} == {"first_quiz", "perfect_score"}

    def test_reconcile_restores_projections(self, services, db, blueprint):
        services.pool.mark_completed("nurse-1", blueprint, score=75)
        with db.session_scope() as session:
            for usage in session.query(QuizPoolUsage).all():
                session.delete(usage)

        report = services.pool.reconcile("nurse-1")

        assert (report.completions, report.usage_added, report.usage_removed) == (1, 1, 0)
        assert _entry(db, blueprint).total_uses == 1
        assert services.pool.reconcile("nurse-1").usage_added == 0


class TestMaintenance:
    def test_old_unused_blueprints_retire(self, services, clock, db, blueprint):
        clock.advance(days=181)

        retired = services.pool.retire_stale()

        assert retired == [(blueprint, "Low usage after 6 months")]
        assert services.pool.retire_stale() == []
        entry = _entry(db, blueprint)
        assert not entry.is_active
        assert services.pool.assign_quiz("nurse-1") is None

    def test_retirement_age_is_configurable(self, services, clock, blueprint):
        services.pool.config = replace(services.pool.config, retire_age_days=90)
        clock.advance(days=91)

        assert services.pool.retire_stale() == [(blueprint, "Low usage after 3 months")]

    def test_low_quality_blueprints_retire(self, services, db, blueprint):
        with db.session_scope() as session:
            session.get(QuizPoolEntry, blueprint).quality_score = 10

        assert services.pool.retire_stale() == [(blueprint, "Quality score below threshold")]

    def test_health_of_small_pool(self, services, blueprint):
        health = services.pool.health()

        assert health.active == 1
        assert health.needs_replenishment
        assert health.health_score == 70
        assert health.status == health_status(70)
        assert health.by_difficulty == {"intermediate": 1}

    def test_health_of_empty_pool(self, services):
        health = services.pool.health()

        assert health.active == 0
        assert health.average_quality is None
        assert health.health_score == 70

    def test_replenish_rotates_difficulty(self, services, add_questions):
        for difficulty in DIFFICULTIES:
            for area in COMPETENCY_AREAS:
                add_questions(area, 5, difficulty=difficulty)

        report = services.pool.maintain()

        assert len(report.created) == 3
        assert report.health.by_difficulty == {d: 1 for d in DIFFICULTIES}
        assert services.pool.replenish() == []


class TestPoolSessions:
    def test_pool_session_records_completion(self, services, db, blueprint):
        state = services.sessions.start_quiz("nurse-1", quiz_type="pool")
        assert state.quiz_id == blueprint
        for question in state.questions:
            services.sessions.answer(state.session_id, question["question_id"], "A", 8)

        results = services.sessions.complete(state.session_id)

        assert results["final_score"]["percentage"] == 100
        history = services.pool.user_history("nurse-1")
        assert history["total_quizzes_taken"] == 1
        assert history["best_score"] == 100
        assert _entry(db, blueprint).total_uses == 1

        with pytest.raises(PoolExhausted):
            services.sessions.start_quiz("nurse-1", quiz_type="pool")
