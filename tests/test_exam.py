"""Tests for exam.py: attempt state machine guards, expiry and integrity counters."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from teps_coach import exam
from teps_coach.errors import InvalidStateError, NotFoundError
from teps_coach.models import ExamAttempt, ExamConfig, ExamRules, SectionConfig, UserAnswer

T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _config(allow_pause: bool = True) -> ExamConfig:
    return ExamConfig(
        id=1,
        name="Grammar Practice",
        exam_type="section_practice",
        difficulty="intermediate",
        sections=(SectionConfig(section="grammar", question_count=3, time_limit=3),),
        total_time_limit=3,
        rules=ExamRules(allow_pause=allow_pause),
    )


def _attempt(**overrides) -> ExamAttempt:
    data = dict(
        id=7,
        user_id="u1",
        config_id=1,
        exam_type="section_practice",
        status="not_started",
        question_ids=(11, 12, 13),
        expires_at="2026-03-02T10:00:00+00:00",
    )
    data.update(overrides)
    return ExamAttempt(**data)


def _answer(question_id: int, is_correct: bool = True, answer: str = "A") -> UserAnswer:
    return UserAnswer(
        question_id=question_id,
        section="grammar",
        answer=answer,
        is_correct=is_correct,
        time_spent=20,
        answered_at="2026-03-01T10:01:00+00:00",
    )


class TestTransitions:
    def test_start(self):
        started = exam.start(_attempt(), now=T0)
        assert started.status == "in_progress"
        assert started.started_at == "2026-03-01T10:00:00+00:00"

    def test_cannot_start_twice(self):
        started = exam.start(_attempt(), now=T0)
        with pytest.raises(InvalidStateError):
            exam.start(started, now=T0)

    def test_pause_and_resume_accumulate_paused_time(self):
        started = exam.start(_attempt(), now=T0)
        paused = exam.pause(started, _config(), now=T0 + timedelta(minutes=1))
        assert paused.status == "paused"
        resumed = exam.resume(paused, now=T0 + timedelta(minutes=3))
        assert resumed.status == "in_progress"
        assert resumed.paused_seconds == 120
        assert resumed.paused_at is None

    def test_pause_requires_rule(self):
        started = exam.start(_attempt(), now=T0)
        with pytest.raises(InvalidStateError):
            exam.pause(started, _config(allow_pause=False), now=T0)

    def test_resume_requires_pause(self):
        started = exam.start(_attempt(), now=T0)
        with pytest.raises(InvalidStateError):
            exam.resume(started, now=T0)

    def test_pause_before_start_is_rejected(self):
        with pytest.raises(InvalidStateError):
            exam.pause(_attempt(), _config(), now=T0)

    def test_abandon_from_any_live_state(self):
        assert exam.abandon(_attempt()).status == "abandoned"
        paused = exam.pause(exam.start(_attempt(), now=T0), _config(), now=T0)
        assert exam.abandon(paused).status == "abandoned"

    def test_abandon_terminal_is_rejected(self):
        with pytest.raises(InvalidStateError):
            exam.abandon(_attempt(status="completed"))


class TestAnswers:
    def test_submit_records_answer(self):
        started = exam.start(_attempt(), now=T0)
        updated = exam.submit_answer(started, _answer(12))
        assert [a.question_id for a in updated.answers] == [12]
        assert updated.current_index == 2

    def test_resubmit_replaces(self):
        started = exam.start(_attempt(), now=T0)
        updated = exam.submit_answer(started, _answer(11, is_correct=False, answer="B"))
        updated = exam.submit_answer(updated, _answer(11, is_correct=True, answer="A"))
        assert len(updated.answers) == 1
        assert updated.answers[0].is_correct

    def test_submit_requires_in_progress(self):
        with pytest.raises(InvalidStateError):
            exam.submit_answer(_attempt(), _answer(11))
        paused = exam.pause(exam.start(_attempt(), now=T0), _config(), now=T0)
        with pytest.raises(InvalidStateError):
            exam.submit_answer(paused, _answer(11))

    def test_submit_unknown_question(self):
        started = exam.start(_attempt(), now=T0)
        with pytest.raises(NotFoundError):
            exam.submit_answer(started, _answer(99))


class TestComplete:
    def test_complete_scores_attempt(self):
        started = exam.start(_attempt(), now=T0)
        updated = exam.submit_answer(started, _answer(11))
        updated = exam.submit_answer(updated, _answer(12))
        done = exam.complete(updated, _config(), now=T0 + timedelta(minutes=2))
        assert done.status == "completed"
        assert done.result is not None
        assert done.result.total_score == 100
        assert exam.elapsed_seconds(done) == 120

    def test_complete_from_paused_counts_pause(self):
        started = exam.start(_attempt(), now=T0)
        paused = exam.pause(started, _config(), now=T0 + timedelta(minutes=1))
        done = exam.complete(paused, _config(), now=T0 + timedelta(minutes=4))
        assert done.paused_seconds == 180
        assert exam.elapsed_seconds(done) == 60

    def test_no_transitions_after_completion(self):
        done = exam.complete(exam.start(_attempt(), now=T0), _config(), now=T0)
        with pytest.raises(InvalidStateError):
            exam.submit_answer(done, _answer(11))
        with pytest.raises(InvalidStateError):
            exam.complete(done, _config(), now=T0)
        with pytest.raises(InvalidStateError):
            exam.pause(done, _config(), now=T0)


class TestExpiry:
    def test_expires_after_deadline(self):
        started = exam.start(_attempt(), now=T0)
        assert exam.expire_if_due(started, now=T0 + timedelta(hours=1)).status == "in_progress"
        assert exam.expire_if_due(started, now=T0 + timedelta(hours=25)).status == "expired"

    def test_pause_overrun_expires(self):
        paused = exam.pause(exam.start(_attempt(), now=T0), _config(), now=T0)
        assert exam.expire_if_due(paused, max_pause_minutes=5, now=T0 + timedelta(minutes=4)).status == "paused"
        assert exam.expire_if_due(paused, max_pause_minutes=5, now=T0 + timedelta(minutes=6)).status == "expired"

    def test_terminal_attempts_never_expire(self):
        done = _attempt(status="completed")
        assert not exam.is_expired(done, now=T0 + timedelta(days=10))


class TestActivity:
    def test_tab_switch_threshold(self):
        attempt = exam.start(_attempt(), now=T0)
        for _ in range(exam.TAB_SWITCH_LIMIT - 1):
            attempt = exam.report_activity(attempt, "tab_switch")
        assert not attempt.suspicious
        attempt = exam.report_activity(attempt, "tab_switch")
        assert attempt.suspicious
        assert attempt.tab_switches == exam.TAB_SWITCH_LIMIT

    def test_fullscreen_threshold(self):
        attempt = exam.start(_attempt(), now=T0)
        for _ in range(exam.FULLSCREEN_EXIT_LIMIT):
            attempt = exam.report_activity(attempt, "fullscreen_exit")
        assert attempt.suspicious
        assert attempt.status == "in_progress"

    def test_rejected_on_terminal_attempt(self):
        with pytest.raises(InvalidStateError):
            exam.report_activity(_attempt(status="abandoned"), "tab_switch")
