"""Tests for profile.py: ability vector, bounded history, topic trackers, patterns, goals."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from teps_coach.errors import ValidationFailure
from teps_coach.models import HistoryEntry, Question, QuestionStats, StrongTopic, WeakTopic
from teps_coach.profile import (
    HISTORY_LIMIT,
    TOPIC_LIMIT,
    apply_response,
    consistency_score,
    current_score,
    detect_learning_patterns,
    new_profile,
    set_goal,
    time_of_day,
    update_strong_topics,
    update_weak_topics,
)

NOW = datetime(2026, 3, 2, 19, 0, tzinfo=timezone.utc)


def _question(question_id: int = 1, section: str = "vocabulary", topic: str = "collocations") -> Question:
    return Question(
        id=question_id,
        question_type=f"{section}_context" if section == "vocabulary" else "grammar_blank_filling",
        section=section,
        difficulty_level=3,
        question_text="Pick the best word.",
        options={"A": "a", "B": "b", "C": "c", "D": "d"},
        correct_answer="A",
        topic=topic,
        stats=QuestionStats(difficulty=0.0, discrimination=1.0, guessing=0.25),
    )


def _entry(day_offset: int = 0, is_correct: bool = True, hour: int = 9) -> HistoryEntry:
    return HistoryEntry(
        section="grammar",
        question_id=day_offset + 1,
        is_correct=is_correct,
        time_spent=60,
        difficulty=0.0,
        answered_at=datetime(2026, 3, 1, hour, tzinfo=timezone.utc) + timedelta(days=day_offset),
    )


class TestApplyResponse:
    def test_new_profile_starts_at_zero(self):
        profile = new_profile("u1")
        assert set(profile.abilities) == {"listening", "vocabulary", "grammar", "reading"}
        assert current_score(profile) == 300

    def test_correct_answer_raises_section_and_overall(self):
        profile = apply_response(new_profile("u1"), _question(), True, 30, now=NOW)
        assert profile.abilities["vocabulary"] > 0
        assert profile.abilities["grammar"] == 0
        assert profile.overall_ability == pytest.approx(profile.abilities["vocabulary"] / 4)

    def test_counters_accumulate(self):
        profile = new_profile("u1")
        profile = apply_response(profile, _question(1), True, 30, now=NOW)
        profile = apply_response(profile, _question(2), False, 45, now=NOW)
        assert profile.questions_answered == 2
        assert profile.study_seconds == 75
        assert [e.question_id for e in profile.history] == [1, 2]

    def test_history_is_bounded(self):
        profile = new_profile("u1")
        for question_id in range(1, HISTORY_LIMIT + 2):
            profile = apply_response(profile, _question(question_id, topic=""), True, 1, now=NOW)
        assert len(profile.history) == HISTORY_LIMIT
        assert profile.history[0].question_id == 2
        assert profile.history[-1].question_id == HISTORY_LIMIT + 1
        assert profile.questions_answered == HISTORY_LIMIT + 1

    def test_input_profile_is_not_mutated(self):
        profile = new_profile("u1")
        apply_response(profile, _question(), True, 30, now=NOW)
        assert profile.history == ()
        assert profile.abilities["vocabulary"] == 0.0


class TestWeakTopics:
    def test_wrong_answer_starts_tracking(self):
        topics = update_weak_topics((), "grammar", "tenses", False)
        assert topics == (WeakTopic("grammar", "tenses", 1.0, 1),)

    def test_correct_answer_does_not_start_tracking(self):
        assert update_weak_topics((), "grammar", "tenses", True) == ()

    def test_recovered_topic_is_pruned(self):
        start = (WeakTopic("grammar", "tenses", 3 / 11, 11),)
        assert update_weak_topics(start, "grammar", "tenses", True) == ()

    def test_rolling_rate(self):
        start = (WeakTopic("grammar", "tenses", 1.0, 1),)
        (topic,) = update_weak_topics(start, "grammar", "tenses", True)
        assert topic.error_rate == pytest.approx(0.5)
        assert topic.attempts == 2

    def test_capped_and_sorted(self):
        topics: tuple[WeakTopic, ...] = tuple(
            WeakTopic("reading", f"topic-{i}", 0.4 + i * 0.01, 2) for i in range(TOPIC_LIMIT)
        )
        topics = update_weak_topics(topics, "reading", "new-topic", False)
        assert len(topics) == TOPIC_LIMIT
        assert topics[0].topic == "new-topic"
        rates = [t.error_rate for t in topics]
        assert rates == sorted(rates, reverse=True)


class TestStrongTopics:
    def test_correct_answer_starts_tracking(self):
        topics = update_strong_topics((), "reading", "inference", True)
        assert topics == (StrongTopic("reading", "inference", 1.0, 1),)

    def test_slipping_topic_is_pruned(self):
        start = (StrongTopic("reading", "inference", 7 / 11, 11),)
        assert update_strong_topics(start, "reading", "inference", False) == ()


class TestPatterns:
    def test_needs_ten_entries(self):
        assert detect_learning_patterns([_entry(i) for i in range(9)], 0.0) is None

    def test_patterns_from_history(self):
        history = [_entry(i, hour=8) for i in range(12)]
        patterns = detect_learning_patterns(history, 1.0)
        assert patterns is not None
        assert patterns.optimal_study_time == "morning"
        assert patterns.preferred_difficulty == 4
        assert patterns.consistency_score == 100.0
        assert patterns.average_session_minutes == 1

    def test_consistency_counts_gaps(self):
        entries = [_entry(0), _entry(3)]
        assert consistency_score(entries) == 50.0

    @pytest.mark.parametrize(
        "hour, bucket",
        [(7, "morning"), (13, "afternoon"), (18, "evening"), (23, "night"), (3, "night")],
    )
    def test_time_of_day(self, hour, bucket):
        assert time_of_day(datetime(2026, 1, 1, hour)) == bucket


class TestGoal:
    def test_set_goal_derives_daily_gain(self):
        profile = set_goal(new_profile("u1"), 400, date(2026, 4, 10), today=date(2026, 3, 1))
        assert profile.goal is not None
        assert profile.goal.required_daily_gain == 2.5
        assert profile.goal.progress_pct == 75.0

    def test_goal_must_be_in_future(self):
        with pytest.raises(ValidationFailure):
            set_goal(new_profile("u1"), 400, date(2026, 3, 1), today=date(2026, 3, 1))

    def test_goal_score_range(self):
        with pytest.raises(ValidationFailure):
            set_goal(new_profile("u1"), 700, date(2026, 5, 1), today=date(2026, 3, 1))
