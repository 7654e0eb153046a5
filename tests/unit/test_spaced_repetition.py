"""
Unit tests for the SM-2 scheduler and progress rollups.

Tests:
- Interval progression 1 -> 6 -> round(prev x ease)
- Ease factor steps and bounds
- Strict mastery (one wrong answer clears it)
- Trend and review-priority buckets
"""

from datetime import datetime, timedelta

import pytest

from certprep.learning.spaced_repetition import (
    Attempt,
    ProgressState,
    SM2Config,
    apply_attempt,
    compute_trend,
    next_review_recommendation,
)

NOW = datetime(2025, 3, 3, 9, 0, 0)


def _attempt(is_correct: bool, at: datetime = NOW, answer: str = "A") -> Attempt:
    return Attempt(
        attempted_at=at,
        selected_answer=answer,
        is_correct=is_correct,
        time_spent=10,
        difficulty="intermediate",
    )


def _run(results: list[bool], config: SM2Config | None = None) -> list[ProgressState]:
    state = ProgressState(user_id="u1", question_id="q1")
    states = []
    for i, correct in enumerate(results):
        state = apply_attempt(state, _attempt(correct, NOW + timedelta(days=i)), config)
        states.append(state)
    return states


class TestSchedule:
    """Tests for SM-2 interval and ease updates."""

    def test_three_correct_answers_give_1_6_16(self):
        states = _run([True, True, True])

        assert [s.interval_days for s in states] == [1, 6, 16]
        assert [s.ease_factor for s in states] == pytest.approx([2.6, 2.7, 2.8])
        assert [s.review_count for s in states] == [1, 2, 3]

    def test_due_date_follows_interval(self):
        state = _run([True, True])[-1]

        assert state.due_date == NOW + timedelta(days=1) + timedelta(days=6)
        assert state.is_due is False

    def test_incorrect_resets_interval_and_keeps_review_count(self):
        states = _run([True, True, False])

        assert states[-1].interval_days == 1
        assert states[-1].review_count == 2
        assert states[-1].ease_factor == pytest.approx(2.5)

    def test_half_day_interval_rounds_up(self):
        # Third correct answer after a reset: 1 day x 2.5 ease
        state = _run([True, True, False, True])[-1]

        assert state.review_count == 3
        assert state.interval_days == 3

    def test_ease_never_exceeds_maximum(self):
        state = _run([True] * 12)[-1]
        assert state.ease_factor == pytest.approx(3.0)

    def test_ease_never_drops_below_minimum(self):
        state = _run([False] * 10)[-1]
        assert state.ease_factor == pytest.approx(1.3)

    def test_custom_config_bounds(self):
        config = SM2Config(default_ease=2.0, min_ease=1.5, max_ease=2.2, ease_bonus=0.1, ease_penalty=0.3)
        state = ProgressState(user_id="u1", question_id="q1", ease_factor=config.default_ease)
        state = apply_attempt(state, _attempt(False), config)
        state = apply_attempt(state, _attempt(False), config)

        assert state.ease_factor == pytest.approx(1.5)

    def test_input_state_is_not_modified(self):
        state = ProgressState(user_id="u1", question_id="q1")
        apply_attempt(state, _attempt(True))

        assert state.total_attempts == 0
        assert state.attempts == []


class TestRollups:
    """Tests for accuracy, streaks and mistake tracking."""

    def test_accuracy_and_streaks(self):
        state = _run([True, False, True, True])[-1]

        assert state.total_attempts == 4
        assert state.correct_attempts == 3
        assert state.accuracy == 75
        assert state.current_streak == 2
        assert state.best_streak == 2
        assert state.first_attempt_at == NOW

    def test_common_mistakes_count_wrong_answers(self):
        state = ProgressState(user_id="u1", question_id="q1")
        state = apply_attempt(state, _attempt(False, answer="C"))
        state = apply_attempt(state, _attempt(False, answer="C"))
        state = apply_attempt(state, _attempt(False, answer="D"))

        assert state.common_mistakes == {"C": 2, "D": 1}

    def test_difficulty_performance(self):
        state = _run([True, False])[-1]
        assert state.difficulty_performance["intermediate"] == {"attempts": 2, "correct": 1, "accuracy": 50}


class TestMastery:
    """Mastery needs 5+ attempts, 90%+ accuracy and the last three correct."""

    def test_mastered_after_five_correct(self):
        states = _run([True] * 5)

        assert [s.is_mastered for s in states] == [False, False, False, False, True]

    def test_single_wrong_answer_clears_mastery(self):
        states = _run([True] * 10 + [False])

        assert states[-2].is_mastered is True
        assert states[-1].is_mastered is False

    def test_low_accuracy_blocks_mastery(self):
        state = _run([False, False, True, True, True])[-1]
        assert state.is_mastered is False


class TestTrendAndPriority:
    @pytest.mark.parametrize(
        "results,expected",
        [
            ([True] * 5, "insufficient_data"),
            ([False, False, False, True, True, True], "improving"),
            ([True, True, True, False, False, False], "declining"),
            ([True, False, True, True, False, True], "stable"),
        ],
    )
    def test_trend(self, results, expected):
        attempts = [{"is_correct": r} for r in results]
        assert compute_trend(attempts) == expected

    @pytest.mark.parametrize(
        "accuracy,streak,priority,days",
        [
            (40, 0, "critical", 1),
            (65, 1, "high", 3),
            (95, 3, "low", 30),
            (85, 1, "medium", 7),
        ],
    )
    def test_review_recommendation(self, accuracy, streak, priority, days):
        bucket, when = next_review_recommendation(accuracy, streak, NOW)

        assert bucket == priority
        assert when == NOW + timedelta(days=days)

    def test_due_at_uses_flag_or_date(self):
        state = ProgressState(user_id="u1", question_id="q1", is_due=False, due_date=NOW)

        assert state.due_at(NOW) is True
        assert state.due_at(NOW - timedelta(seconds=1)) is False
