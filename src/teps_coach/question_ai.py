"""OpenAI-backed question generation. Generated items enter the bank pending review."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .db import now_iso
from .errors import AIUnavailableError, ValidationFailure
from .models import Question, QuestionType, Section, ensure_difficulty_level, ensure_question_type, ensure_section
from .question_bank import insert_question

logger = logging.getLogger(__name__)

AI_MODEL = os.environ.get("TEPS_COACH_AI_MODEL", "gpt-4o-mini")
AI_TEMPERATURE = 0.7
AI_QUALITY = 75
MAX_BATCH = 10
WORDS_PER_SECOND = 2.5

SECTION_GUIDANCE: dict[str, str] = {
    "listening": (
        "For listening questions:\n"
        "- Provide a realistic conversation or talk transcript\n"
        "- Specify number of speakers and accent type\n"
        "- Keep the audio between 30 and 60 seconds long\n"
    ),
    "reading": (
        "For reading questions:\n"
        "- Provide a complete passage of 150-300 words\n"
        "- Specify genre, reading level and word count\n"
    ),
    "vocabulary": (
        "For vocabulary questions:\n"
        "- Use academic and professional vocabulary\n"
        "- Keep all options at a similar difficulty level\n"
    ),
    "grammar": (
        "For grammar questions:\n"
        "- Focus on grammar points commonly tested in TEPS\n"
        "- Explain the grammatical rule clearly\n"
    ),
}

RESPONSE_SHAPE = """{
  "question_text": "string",
  "options": {"A": "string", "B": "string", "C": "string", "D": "string"},
  "correct_answer": "A|B|C|D",
  "explanation": "string (Markdown allowed)",
  "tags": ["string"],
  "transcript": "string (listening only)",
  "speakers": 2,
  "passage": {"content": "string", "genre": "string", "reading_level": "B2"}
}"""


@dataclass(slots=True)
class GenerationRequest:
    section: Section
    question_type: QuestionType
    difficulty_level: int
    topic: str
    count: int = 1
    style: str = "official"


def ai_available() -> bool:
    """Return True if an OpenAI API key is configured."""
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return bool(os.environ.get("OPENAI_API_KEY"))


def _get_client() -> Any:
    """Lazy-load the OpenAI client."""
    from openai import OpenAI

    return OpenAI()


def parse_request(data: Mapping[str, Any]) -> GenerationRequest:
    required = ("section", "question_type", "difficulty_level", "topic")
    missing = [name for name in required if not data.get(name)]
    if missing:
        raise ValidationFailure(
            f"Missing required fields: {', '.join(missing)}",
            [f"missing field: {name}" for name in missing],
        )
    count = int(data.get("count") or 1)
    if not 1 <= count <= MAX_BATCH:
        raise ValidationFailure(f"Count must be between 1 and {MAX_BATCH}")
    return GenerationRequest(
        section=ensure_section(data["section"]),
        question_type=ensure_question_type(data["question_type"]),
        difficulty_level=ensure_difficulty_level(data["difficulty_level"]),
        topic=str(data["topic"]).strip(),
        count=count,
        style=str(data.get("style") or "official"),
    )


def system_prompt(section: Section) -> str:
    return (
        f"You are an expert TEPS item writer for the {section} section. "
        "Write questions that match the official exam's format and difficulty. "
        "Respond with a single JSON object only."
    )


def build_prompt(request: GenerationRequest) -> str:
    return (
        f"Generate a TEPS {request.section} question with the following specifications:\n\n"
        f"- Question Type: {request.question_type}\n"
        f"- Difficulty Level: {request.difficulty_level} (1=Very Easy, 5=Very Hard)\n"
        f"- Topic: {request.topic}\n"
        f"- Style: {request.style}\n\n"
        "Requirements:\n"
        "1. Four options (A, B, C, D) with exactly one correct answer\n"
        "2. Plausible distractors\n"
        "3. A detailed explanation of the correct answer\n\n"
        f"{SECTION_GUIDANCE.get(request.section, '')}\n"
        f"Return JSON with these fields:\n{RESPONSE_SHAPE}"
    )


def _strip_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[-1]
        if content.endswith("```"):
            content = content[:-3]
    return content.strip()


def record_from_response(data: Mapping[str, Any], request: GenerationRequest) -> dict[str, Any]:
    """Turn the model's JSON object into a question record for the bank."""

    record: dict[str, Any] = {
        "question_type": request.question_type,
        "section": request.section,
        "difficulty_level": request.difficulty_level,
        "question_text": data.get("question_text"),
        "options": data.get("options"),
        "correct_answer": data.get("correct_answer"),
        "explanation": data.get("explanation", ""),
        "topic": request.topic,
        "tags": data.get("tags") or [],
    }
    if request.section == "listening":
        transcript = str(data.get("transcript") or "")
        record["audio"] = {
            "url": "",
            "duration": round(len(transcript.split()) / WORDS_PER_SECOND),
            "transcript": transcript,
            "speakers": int(data.get("speakers") or 1),
        }
    if request.section == "reading" and isinstance(data.get("passage"), Mapping):
        passage = dict(data["passage"])
        passage.setdefault("word_count", len(str(passage.get("content", "")).split()))
        passage.setdefault("topic", request.topic)
        record["passage"] = passage
    return record


def generate_questions(request: GenerationRequest, *, client: Any = None) -> list[Question]:
    """Ask the model for ``request.count`` questions and store the valid ones."""

    if client is None:
        if not ai_available():
            raise AIUnavailableError("OpenAI API key is not configured")
        client = _get_client()

    prompt = build_prompt(request)
    questions: list[Question] = []
    for _ in range(request.count):
        response = client.chat.completions.create(
            model=AI_MODEL,
            messages=[
                {"role": "system", "content": system_prompt(request.section)},
                {"role": "user", "content": prompt},
            ],
            temperature=AI_TEMPERATURE,
            response_format={"type": "json_object"},
        )
        content = _strip_fences(response.choices[0].message.content or "")
        try:
            data = json.loads(content)
            if not isinstance(data, Mapping):
                raise ValidationFailure("Model response is not a JSON object")
            question = insert_question(
                record_from_response(data, request),
                source="ai",
                review_status="pending",
                quality_score=AI_QUALITY,
                is_official=False,
                generation={
                    "is_ai_generated": True,
                    "method": "openai",
                    "model": AI_MODEL,
                    "prompt": prompt,
                    "generated_at": now_iso(),
                },
            )
        except (json.JSONDecodeError, ValidationFailure) as exc:
            logger.warning("Discarded generated %s question: %s", request.section, exc)
            continue
        questions.append(question)

    logger.info("Generated %d/%d %s questions on %s", len(questions), request.count, request.section, request.topic)
    return questions


__all__ = [
    "AI_MODEL",
    "GenerationRequest",
    "ai_available",
    "build_prompt",
    "generate_questions",
    "parse_request",
    "record_from_response",
]
