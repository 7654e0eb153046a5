"""
Unit tests for QuizSessionMachine.

Tests:
- Answer bookkeeping and duplicate answers
- Pause / resume timing
- Completion results
- Illegal transitions
"""

from datetime import datetime

import pytest

from certprep.core.exceptions import InvalidTransition, QuestionNotInSession, SessionNotActive
from certprep.quiz.session_machine import QuizSessionMachine, SessionState

START = datetime(2025, 3, 3, 9, 0, 0)


class Clock:
    def __init__(self):
        self.now = START

    def __call__(self):
        return self.now


def _questions():
    return [
        {"question_id": "q1", "position": 1, "competency_area": "Physical Care Skills", "skill_topic": "Hygiene"},
        {"question_id": "q2", "position": 2, "competency_area": "Physical Care Skills", "skill_topic": "Hygiene"},
        {"question_id": "q3", "position": 3, "competency_area": "Role of the Nurse Aide", "skill_topic": "Confidentiality"},
    ]


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def machine(clock):
    state = SessionState(
        session_id="s1",
        user_id="u1",
        questions=_questions(),
        question_count=3,
        started_at=START,
        last_activity_at=START,
    )
    return QuizSessionMachine(state, clock)


class TestAnswers:
    def test_answer_updates_score_and_position(self, machine, clock):
        clock.now = START.replace(minute=1)
        outcome = machine.answer_question("q1", "A", 12, True)

        assert outcome.duplicate is False
        assert outcome.position == 1
        assert outcome.remaining_questions == 2
        assert machine.state.current_position == 1
        assert machine.state.score == {"correct": 1, "total": 1, "percentage": 100}
        assert machine.state.last_activity_at == START.replace(minute=1)

    def test_competency_rollup(self, machine):
        machine.answer_question("q1", "A", 10, True)
        machine.answer_question("q2", "C", 10, False)

        assert machine.state.competency_performance["Physical Care Skills"] == {
            "correct": 1,
            "total": 2,
            "percentage": 50,
        }

    def test_duplicate_answer_changes_nothing(self, machine):
        machine.answer_question("q1", "A", 10, True)
        before = (list(machine.state.answers), dict(machine.state.score))

        outcome = machine.answer_question("q1", "B", 5, False)

        assert outcome.duplicate is True
        assert outcome.is_correct is True
        assert (machine.state.answers, machine.state.score) == before

    def test_unknown_question_rejected(self, machine):
        with pytest.raises(QuestionNotInSession):
            machine.answer_question("nope", "A", 1, True)

    def test_answer_while_paused_rejected(self, machine):
        machine.pause()
        with pytest.raises(SessionNotActive):
            machine.answer_question("q1", "A", 1, True)

    def test_last_answer_flags_is_last(self, machine):
        machine.answer_question("q1", "A", 1, True)
        machine.answer_question("q2", "A", 1, True)
        outcome = machine.answer_question("q3", "A", 1, True)

        assert outcome.is_last is True


class TestPauseResume:
    def test_ten_minute_pause_accumulates_600_seconds(self, machine, clock):
        machine.answer_question("q1", "A", 10, True)
        clock.now = START.replace(minute=5)
        machine.pause()
        clock.now = START.replace(minute=15)
        machine.resume()

        assert machine.state.total_pause_seconds == pytest.approx(600)
        assert machine.state.current_position == 1
        assert machine.state.status == "active"
        assert machine.state.paused_at is None

    def test_resume_when_active_rejected(self, machine):
        with pytest.raises(InvalidTransition):
            machine.resume()

    def test_pause_twice_rejected(self, machine):
        machine.pause()
        with pytest.raises(InvalidTransition):
            machine.pause()


class TestComplete:
    def test_results(self, machine, clock):
        machine.answer_question("q1", "A", 10, True)
        machine.answer_question("q2", "B", 10, True)
        machine.answer_question("q3", "C", 10, False)
        clock.now = START.replace(minute=10)

        results = machine.complete(historical_average=50)

        assert machine.state.status == "completed"
        assert results["final_score"] == {"correct": 2, "total": 3, "percentage": 67}
        assert results["strong_areas"] == ["Physical Care Skills"]
        assert results["weak_areas"] == ["Role of the Nurse Aide"]
        assert results["questions_for_review"] == ["q3"]
        assert results["improvement_from_average"] == pytest.approx(17)
        assert results["total_duration_seconds"] == pytest.approx(600)
        assert results["average_time_per_question"] == pytest.approx(200)

    def test_duration_excludes_pause(self, machine, clock):
        clock.now = START.replace(minute=2)
        machine.pause()
        clock.now = START.replace(minute=12)
        machine.resume()
        clock.now = START.replace(minute=20)

        machine.complete()

        assert machine.state.total_duration_seconds == pytest.approx(600)

    def test_complete_from_paused_rejected(self, machine):
        machine.pause()
        with pytest.raises(InvalidTransition):
            machine.complete()

    def test_topic_tallies(self, machine):
        machine.answer_question("q1", "A", 10, True)
        machine.answer_question("q2", "B", 10, False)
        machine.answer_question("q3", "C", 10, True)

        tallies = {t.skill_topic: (t.correct, t.total) for t in machine.topic_tallies()}

        assert tallies == {"Hygiene": (1, 2), "Confidentiality": (1, 1)}


class TestAbandon:
    def test_abandon_from_paused(self, machine):
        machine.pause()
        machine.abandon("Closed the app")

        assert machine.state.status == "abandoned"
        assert machine.state.abandon_reason == "Closed the app"

    def test_abandon_completed_rejected(self, machine):
        machine.complete()
        with pytest.raises(InvalidTransition):
            machine.abandon()

    def test_abandon_twice_rejected(self, machine):
        machine.abandon()
        with pytest.raises(InvalidTransition):
            machine.abandon()
