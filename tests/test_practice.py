"""Tests for practice.py: adaptive next question, free-practice answers, suggested sets."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    """Use a temp file DB for each test."""
    from teps_coach import db
    db_path = tmp_path / "test.db"
    db.DB_PATH = db_path
    db.init_db()
    yield
    if db_path.exists():
        db_path.unlink()


from teps_coach.errors import NotFoundError, ValidationFailure
from teps_coach.practice import answer_practice_question, next_practice_question, suggested_sets
from teps_coach.profile_db import get_profile
from teps_coach.question_bank import get_question, insert_question


def _seed(section: str = "listening", question_type: str = "listening_short_talk", topic: str = "announcements"):
    return insert_question(
        {
            "question_type": question_type,
            "section": section,
            "difficulty_level": 3,
            "question_text": "What is the speaker mainly doing?",
            "options": {"A": "Apologising", "B": "Announcing a delay", "C": "Selling tickets", "D": "Asking directions"},
            "correct_answer": "B",
            "explanation": "The speaker *announces* a delay.",
            "topic": topic,
        },
        review_status="approved",
    )


class TestNextQuestion:
    def test_new_learner_starts_with_listening(self):
        question = _seed()
        _seed("grammar", "grammar_blank_filling", "tenses")
        assert next_practice_question("u1").id == question.id

    def test_empty_section(self):
        _seed("grammar", "grammar_blank_filling", "tenses")
        with pytest.raises(NotFoundError):
            next_practice_question("u1")


class TestAnswer:
    def test_correct_answer_updates_profile_and_stats(self):
        question = _seed()
        result, profile = answer_practice_question("u1", question.id, "b", 20)
        assert result.is_correct
        assert result.correct_answer == "B"
        assert "<em>announces</em>" in result.explanation_html
        assert result.section_ability > 0
        assert profile.questions_answered == 1
        assert get_profile("u1").questions_answered == 1
        assert get_question(question.id).stats.times_correct == 1

    def test_wrong_answer_tracks_weak_topic(self):
        question = _seed()
        result, profile = answer_practice_question("u1", question.id, "A", 20)
        assert not result.is_correct
        assert profile.weak_topics[0].topic == "announcements"
        assert result.estimated_score < 300

    def test_rejects_bad_answer(self):
        question = _seed()
        with pytest.raises(ValidationFailure):
            answer_practice_question("u1", question.id, "Z", 20)

    def test_unknown_question(self):
        with pytest.raises(NotFoundError):
            answer_practice_question("u1", 404, "A", 20)


class TestSuggestedSets:
    def test_weak_topic_set_excludes_recent(self):
        answered = _seed()
        fresh = _seed()
        answer_practice_question("u1", answered.id, "A", 20)
        sets = suggested_sets("u1")
        weak = sets[0]
        assert weak.recommendation.kind == "weak_topic"
        assert [q.id for q in weak.questions] == [fresh.id]
