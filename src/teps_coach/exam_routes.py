"""FastAPI routes for exam attempts."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from . import exam_service
from .api_support import current_user_id, ok
from .schemas import ActivityRequest, CreateExamRequest, SubmitAnswerRequest

router = APIRouter(prefix="/exams", tags=["exams"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_exam(body: CreateExamRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    attempt = exam_service.create_exam(
        user_id,
        body.exam_type,
        difficulty=body.difficulty,
        section=body.section,
        question_count=body.question_count,
        duration=body.duration,
    )
    return ok(attempt)


@router.get("/history")
async def exam_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    attempts, total = exam_service.exam_history(user_id, limit=limit, offset=offset)
    return ok({"attempts": attempts, "total": total, "limit": limit, "offset": offset})


@router.get("/statistics")
async def exam_statistics(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.exam_statistics(user_id))


@router.get("/{attempt_id}")
async def get_attempt(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.load_attempt(attempt_id, user_id))


@router.post("/{attempt_id}/start")
async def start_exam(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.start_exam(attempt_id, user_id))


@router.get("/{attempt_id}/questions")
async def exam_questions(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.get_exam_questions(attempt_id, user_id))


@router.post("/{attempt_id}/answers")
async def submit_answer(
    attempt_id: int,
    body: SubmitAnswerRequest,
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    outcome = exam_service.submit_answer(
        attempt_id,
        user_id,
        body.question_id,
        body.answer,
        body.time_spent,
    )
    return ok(
        {
            "is_correct": outcome.is_correct,
            "answered": outcome.answered,
            "total": outcome.total,
            "auto_completed": outcome.auto_completed,
            "status": outcome.attempt.status,
            "current_index": outcome.attempt.current_index,
        }
    )


@router.post("/{attempt_id}/pause")
async def pause_exam(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.pause_exam(attempt_id, user_id))


@router.post("/{attempt_id}/resume")
async def resume_exam(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.resume_exam(attempt_id, user_id))


@router.post("/{attempt_id}/complete")
async def complete_exam(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.complete_exam(attempt_id, user_id))


@router.post("/{attempt_id}/abandon")
async def abandon_exam(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.abandon_exam(attempt_id, user_id))


@router.post("/{attempt_id}/activity")
async def report_activity(
    attempt_id: int,
    body: ActivityRequest,
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    attempt = exam_service.report_activity(attempt_id, user_id, body.kind)
    return ok(
        {
            "tab_switches": attempt.tab_switches,
            "fullscreen_exits": attempt.fullscreen_exits,
            "suspicious": attempt.suspicious,
        }
    )


@router.get("/{attempt_id}/review")
async def review_exam(attempt_id: int, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(exam_service.review_exam(attempt_id, user_id))
