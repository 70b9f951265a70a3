"""Pydantic request bodies for the HTTP API."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field


class CreateExamRequest(BaseModel):
    exam_type: str
    difficulty: str = "adaptive"
    section: str | None = None
    question_count: int | None = Field(default=None, gt=0, le=200)
    duration: int | None = None


class SubmitAnswerRequest(BaseModel):
    question_id: int
    answer: str = Field(min_length=1, max_length=1)
    time_spent: int = Field(default=0, ge=0)


class ActivityRequest(BaseModel):
    kind: str


class GoalRequest(BaseModel):
    target_score: int = Field(gt=0, le=600)
    target_date: date


class PracticeAnswerRequest(BaseModel):
    question_id: int
    answer: str = Field(min_length=1, max_length=1)
    time_spent: int = Field(default=0, ge=0)


class CreateQuestionRequest(BaseModel):
    question: dict[str, Any]
    source: str = "manual"


class BulkImportRequest(BaseModel):
    questions: list[dict[str, Any]]
    source: str = "import"


class GenerateQuestionsRequest(BaseModel):
    section: str
    question_type: str
    difficulty_level: int = Field(ge=1, le=5)
    topic: str = Field(min_length=1)
    count: int = Field(default=1, ge=1, le=10)
    style: str = "official"


class ReviewStatusRequest(BaseModel):
    status: str
    reviewer: str | None = None
    notes: str | None = None


__all__ = [
    "ActivityRequest",
    "BulkImportRequest",
    "CreateExamRequest",
    "CreateQuestionRequest",
    "GenerateQuestionsRequest",
    "GoalRequest",
    "PracticeAnswerRequest",
    "ReviewStatusRequest",
    "SubmitAnswerRequest",
]
