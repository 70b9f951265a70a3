"""Tests for question_ai.py using a stub chat client; no network calls are made."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    from teps_coach import db
    db_path = tmp_path / "test.db"
    db.DB_PATH = db_path
    db.init_db()
    yield
    if db_path.exists():
        db_path.unlink()


from teps_coach.errors import AIUnavailableError, ValidationFailure
from teps_coach.question_ai import (
    GenerationRequest,
    ai_available,
    build_prompt,
    generate_questions,
    parse_request,
    record_from_response,
)
from teps_coach.question_bank import bank_statistics


class StubClient:
    """Mimics ``client.chat.completions.create`` with canned contents."""

    def __init__(self, contents: list[str]):
        self._contents = list(contents)
        self.calls: list[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        content = self._contents.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


LISTENING = {
    "question_text": "Why is the man calling?",
    "options": {"A": "To cancel", "B": "To book", "C": "To complain", "D": "To thank"},
    "correct_answer": "B",
    "explanation": "He asks to **book** a table.",
    "tags": ["phone"],
    "transcript": "M: Hello, I would like to book a table for two tonight. W: Certainly.",
    "speakers": 2,
}


def _request(**overrides) -> GenerationRequest:
    data = {
        "section": "listening",
        "question_type": "listening_short_conversation",
        "difficulty_level": 2,
        "topic": "restaurants",
    }
    data.update(overrides)
    return parse_request(data)


class TestAvailability:
    def test_disabled_under_pytest(self):
        assert not ai_available()

    def test_generate_without_client_raises(self):
        with pytest.raises(AIUnavailableError):
            generate_questions(_request())


class TestParseRequest:
    def test_missing_fields(self):
        with pytest.raises(ValidationFailure) as excinfo:
            parse_request({"section": "grammar"})
        assert "missing field: topic" in excinfo.value.errors

    def test_count_range(self):
        with pytest.raises(ValidationFailure):
            _request(count=11)

    def test_prompt_mentions_specifications(self):
        prompt = build_prompt(_request())
        assert "listening_short_conversation" in prompt
        assert "restaurants" in prompt
        assert "transcript" in prompt


class TestRecordFromResponse:
    def test_listening_audio(self):
        record = record_from_response(LISTENING, _request())
        assert record["audio"]["speakers"] == 2
        assert record["audio"]["duration"] == round(len(LISTENING["transcript"].split()) / 2.5)
        assert record["topic"] == "restaurants"

    def test_reading_passage(self):
        request = _request(section="reading", question_type="reading_detail")
        record = record_from_response(
            {**LISTENING, "passage": {"content": "one two three", "genre": "news"}},
            request,
        )
        assert record["passage"]["word_count"] == 3
        assert "audio" not in record


class TestGenerate:
    def test_stores_pending_ai_questions(self):
        client = StubClient([json.dumps(LISTENING), "```json\n" + json.dumps(LISTENING) + "\n```"])
        questions = generate_questions(_request(count=2), client=client)
        assert len(questions) == 2
        question = questions[0]
        assert question.source == "ai"
        assert question.review_status == "pending"
        assert question.quality_score == 75
        assert question.generation["is_ai_generated"] is True
        assert client.calls[0]["response_format"] == {"type": "json_object"}

    def test_malformed_items_are_discarded(self):
        client = StubClient(["not json", json.dumps({**LISTENING, "correct_answer": "E"}), json.dumps(LISTENING)])
        questions = generate_questions(_request(count=3), client=client)
        assert len(questions) == 1
        stats = bank_statistics()
        assert stats["total"] == 1
        assert stats["ai_generated"] == 1
