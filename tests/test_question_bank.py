"""Tests for question_bank.py: validation, search, adaptive ranking, statistics, import."""

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
from teps_coach.models import AdaptiveCriteria, QuestionQuery
from teps_coach.question_bank import (
    RECALIBRATE_AFTER,
    bank_statistics,
    bulk_import,
    get_question,
    get_questions,
    insert_question,
    matching_questions,
    official_patterns,
    rank_by_information,
    record_question_usage,
    search,
    select_adaptive,
    set_review_status,
    update_question_statistics,
    validate_question_record,
)


def _record(**overrides):
    record = {
        "question_type": "grammar_blank_filling",
        "section": "grammar",
        "difficulty_level": 3,
        "question_text": "If I ___ you, I would apologise.",
        "options": {"A": "am", "B": "were", "C": "be", "D": "was being"},
        "correct_answer": "B",
        "explanation": "Second conditional uses **were**.",
        "topic": "conditionals",
        "tags": ["subjunctive"],
    }
    record.update(overrides)
    return record


def _approved(**overrides):
    return insert_question(_record(**overrides), review_status="approved")


class TestValidation:
    def test_valid_record_is_normalised(self):
        data = validate_question_record(_record(correct_answer="b", tags="mood"))
        assert data["correct_answer"] == "B"
        assert data["tags"] == ["mood"]
        assert data["stats"].guessing == 0.25

    def test_missing_fields_are_listed(self):
        with pytest.raises(ValidationFailure) as excinfo:
            validate_question_record({"section": "grammar"})
        assert "missing field: question_type" in excinfo.value.errors
        assert "missing field: correct_answer" in excinfo.value.errors

    def test_type_must_match_section(self):
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(section="reading"))

    def test_correct_answer_must_be_an_option(self):
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(options={"A": "x", "C": "y"}, correct_answer="B"))

    def test_difficulty_range(self):
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(difficulty_level=6))

    def test_irt_values_must_be_numbers(self):
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(irt={"difficulty": "hard"}))

    def test_tags_must_be_text_or_list(self):
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(tags=5))

    def test_audio_and_passage_must_be_objects(self):
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(audio="clip.mp3"))
        with pytest.raises(ValidationFailure):
            validate_question_record(_record(passage={"content": object()}))

    def test_irt_values_are_clamped(self):
        data = validate_question_record(_record(irt={"difficulty": 9, "discrimination": 0, "guessing": 0.9}))
        assert data["stats"].difficulty == 3.0
        assert data["stats"].discrimination == 0.1
        assert data["stats"].guessing == 0.25


class TestCrud:
    def test_insert_and_get(self):
        question = insert_question(_record())
        fetched = get_question(question.id)
        assert fetched.question_text.startswith("If I")
        assert fetched.review_status == "pending"
        assert fetched.tags == ("subjunctive",)

    def test_get_unknown_raises(self):
        with pytest.raises(NotFoundError):
            get_question(999)

    def test_get_questions_skips_unknown(self):
        question = insert_question(_record())
        assert set(get_questions([question.id, 999])) == {question.id}

    def test_review_status(self):
        question = insert_question(_record())
        updated = set_review_status(question.id, "approved", reviewer="editor")
        assert updated.review_status == "approved"

    def test_review_status_rejects_unknown(self):
        question = insert_question(_record())
        with pytest.raises(ValidationFailure):
            set_review_status(question.id, "published")


class TestSearch:
    def test_defaults_to_approved(self):
        insert_question(_record())
        approved = _approved()
        questions, total = search(QuestionQuery())
        assert total == 1
        assert questions[0].id == approved.id

    def test_facets(self):
        _approved(topic="conditionals", difficulty_level=2)
        _approved(topic="articles", difficulty_level=4, tags=["determiners"])
        _approved(
            section="reading",
            question_type="reading_main_idea",
            topic="science",
        )

        by_section, _ = search(QuestionQuery(section="grammar"))
        assert len(by_section) == 2
        by_level, _ = search(QuestionQuery(difficulty=(4, 5)))
        assert [q.topic for q in by_level] == ["articles"]
        by_topic, _ = search(QuestionQuery(topic="COND"))
        assert [q.topic for q in by_topic] == ["conditionals"]
        by_tag, _ = search(QuestionQuery(tags=("Determiners",)))
        assert [q.topic for q in by_tag] == ["articles"]

    def test_exclude_and_paging(self):
        ids = [_approved().id for _ in range(5)]
        page, total = search(QuestionQuery(exclude_ids=frozenset(ids[:2])), limit=2)
        assert total == 3
        assert [q.id for q in page] == [ids[4], ids[3]]


class TestAdaptive:
    def test_prefers_items_near_ability(self):
        easy = _approved(irt={"difficulty": -2.5})
        matched = _approved(irt={"difficulty": 1.0})
        picked = select_adaptive(AdaptiveCriteria(section="grammar", ability=1.0), 1)
        assert [q.id for q in picked] == [matched.id]
        assert easy.id != matched.id

    def test_recent_questions_are_excluded(self):
        first = _approved()
        second = _approved()
        criteria = AdaptiveCriteria(section="grammar", ability=0.0, recent_question_ids=(first.id,))
        assert [q.id for q in select_adaptive(criteria, 5)] == [second.id]

    def test_ranks_the_whole_section_pool(self):
        ideal = _approved(irt={"difficulty": 0.0, "discrimination": 2.0, "guessing": 0.0})
        weak = _record(irt={"difficulty": 3.0, "discrimination": 0.5})
        report = bulk_import([weak] * 519, source="official")
        assert report.imported == 519
        assert len(matching_questions(QuestionQuery(section="grammar"))) == 520
        picked = select_adaptive(AdaptiveCriteria(section="grammar", ability=0.0), 1)
        assert [q.id for q in picked] == [ideal.id]

    def test_weak_topic_boost(self):
        plain = _approved(topic="articles", irt={"difficulty": 0.7})
        weak = _approved(topic="conditionals", irt={"difficulty": -0.5})
        unboosted = AdaptiveCriteria(section="grammar", ability=0.0)
        assert rank_by_information([plain, weak], unboosted, 2)[0].id == plain.id
        criteria = AdaptiveCriteria(section="grammar", ability=0.0, weak_topics=("conditionals",))
        ranked = rank_by_information([plain, weak], criteria, 2)
        assert ranked[0].id == weak.id


class TestStatistics:
    def test_counters(self):
        question = _approved()
        updated = record_question_usage(question.id, True, 40, 320)
        updated = record_question_usage(question.id, False, 20, 320)
        assert updated.stats.times_used == 2
        assert updated.stats.times_correct == 1
        assert updated.stats.times_incorrect == 1
        assert updated.stats.average_time_spent == 30
        assert get_question(question.id).stats.times_used == 2

    def test_performance_by_level(self):
        question = _approved()
        question = update_question_statistics(question, True, 10, 250)
        question = update_question_statistics(question, False, 10, 250)
        question = update_question_statistics(question, True, 10, 450)
        levels = {p.level: p for p in question.stats.performance_by_level}
        assert levels["201-300"].correct_rate == pytest.approx(0.5)
        assert levels["201-300"].sample_size == 2
        assert levels["401-500"].sample_size == 1

    def test_recalibrates_after_enough_answers(self):
        question = _approved()
        for _ in range(RECALIBRATE_AFTER):
            question = update_question_statistics(question, False, 10, 300)
        assert question.stats.difficulty == 3.0

    def test_discrimination_floor(self):
        question = _approved()
        for score in (150, 250, 350) * 4:
            question = update_question_statistics(question, True, 10, score)
        assert question.stats.discrimination == pytest.approx(0.1)


class TestBulkImport:
    def test_counts_and_errors(self):
        report = bulk_import([_record(), {"section": "grammar"}, "nonsense", _record(topic="articles")])
        assert report.imported == 2
        assert report.failed == 2
        assert len(report.errors) == 2
        assert len(report.question_ids) == 2

    def test_malformed_record_does_not_abort_batch(self):
        report = bulk_import(
            [_record(), _record(tags=5), _record(passage={"content": {1, 2}}), _record()],
            source="official",
        )
        assert report.imported == 2
        assert report.failed == 2
        assert report.errors[0].startswith("record 2")
        assert report.errors[1].startswith("record 3")

    def test_official_source_is_approved(self):
        report = bulk_import([_record()], source="official")
        question = get_question(report.question_ids[0])
        assert question.is_official
        assert question.review_status == "approved"
        assert question.quality_score == 95

    def test_unknown_source(self):
        with pytest.raises(ValidationFailure):
            bulk_import([_record()], source="scraped")


class TestReporting:
    def test_bank_statistics(self):
        insert_question(_record())
        _approved(difficulty_level=4)
        stats = bank_statistics()
        assert stats["total"] == 2
        assert stats["by_section"] == {"grammar": 2}
        assert stats["by_review_status"] == {"approved": 1, "pending": 1}
        assert stats["by_difficulty"] == {"3": 1, "4": 1}

    def test_official_patterns(self):
        bulk_import([_record(), _record(topic="articles"), _record(difficulty_level=5)], source="official")
        _approved()
        patterns = official_patterns("grammar")
        assert patterns["total"] == 3
        assert patterns["type_distribution"] == {"grammar_blank_filling": 3}
        assert patterns["common_topics"][0] == "conditionals"
        assert patterns["difficulty_distribution"] == {"3": 2, "5": 1}
