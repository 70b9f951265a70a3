"""FastAPI routes for the question bank."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, status

from . import question_ai, question_bank
from .api_support import ok
from .errors import ValidationFailure
from .models import QuestionQuery, ensure_difficulty_level, ensure_question_type, ensure_review_status, ensure_section
from .schemas import BulkImportRequest, CreateQuestionRequest, GenerateQuestionsRequest, ReviewStatusRequest

router = APIRouter(prefix="/questions", tags=["questions"])


@router.get("")
async def search_questions(
    section: str | None = None,
    question_type: str | None = None,
    difficulty: list[int] = Query(default=[]),
    topic: str | None = None,
    tags: list[str] = Query(default=[]),
    official_only: bool = False,
    review_status: str | None = None,
    min_quality: int | None = Query(None, ge=0, le=100),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    query = QuestionQuery(
        section=ensure_section(section) if section else None,
        question_type=ensure_question_type(question_type) if question_type else None,
        difficulty=tuple(ensure_difficulty_level(level) for level in difficulty),
        topic=topic,
        tags=tuple(tags),
        official_only=official_only,
        review_status=ensure_review_status(review_status) if review_status else None,
        min_quality=min_quality,
    )
    questions, total = question_bank.search(query, limit=limit, offset=offset)
    return ok({"questions": questions, "total": total, "limit": limit, "offset": offset})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_question(body: CreateQuestionRequest) -> dict[str, Any]:
    source = body.source.strip().lower()
    if source not in ("manual", "official"):
        raise ValidationFailure(f"Unsupported question source: {body.source}")
    official = source == "official"
    question = question_bank.insert_question(
        body.question,
        source=source,  # type: ignore[arg-type]
        review_status="approved" if official else "pending",
        quality_score=question_bank.OFFICIAL_QUALITY if official else question_bank.DEFAULT_QUALITY,
        is_official=official,
    )
    return ok(question)


@router.get("/stats")
async def bank_stats() -> dict[str, Any]:
    return ok(question_bank.bank_statistics())


@router.get("/official-patterns")
async def official_patterns(section: str | None = None) -> dict[str, Any]:
    return ok(question_bank.official_patterns(section))


@router.post("/import")
async def bulk_import(body: BulkImportRequest) -> dict[str, Any]:
    return ok(question_bank.bulk_import(body.questions, source=body.source))


@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_questions(body: GenerateQuestionsRequest) -> dict[str, Any]:
    request = question_ai.parse_request(body.model_dump())
    questions = question_ai.generate_questions(request)
    return ok({"questions": questions, "requested": request.count, "generated": len(questions)})


@router.get("/{question_id}")
async def get_question(question_id: int) -> dict[str, Any]:
    return ok(question_bank.get_question(question_id))


@router.patch("/{question_id}/review")
async def review_question(question_id: int, body: ReviewStatusRequest) -> dict[str, Any]:
    question = question_bank.set_review_status(
        question_id,
        body.status,
        reviewer=body.reviewer,
        notes=body.notes,
    )
    return ok(question)
