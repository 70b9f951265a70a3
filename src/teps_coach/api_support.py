"""Shared pieces of the HTTP layer: caller identity, response envelope, error mapping."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import (
    AIUnavailableError,
    InsufficientDataError,
    InvalidStateError,
    NotFoundError,
    TepsCoachError,
    ValidationFailure,
)
from .models import Question

logger = logging.getLogger(__name__)

ERROR_STATUS: tuple[tuple[type[TepsCoachError], int], ...] = (
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ValidationFailure, 422),
    (InsufficientDataError, 422),
    (AIUnavailableError, 503),
)


def current_user_id(x_user_id: str = Header(...)) -> str:
    """Learner id from the X-User-Id header."""
    user_id = x_user_id.strip()
    if not user_id:
        raise ValidationFailure("X-User-Id header must not be empty")
    return user_id


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data)}


def public_question(question: Question) -> dict[str, Any]:
    """Question payload without the answer key."""
    return {
        "id": question.id,
        "question_type": question.question_type,
        "section": question.section,
        "difficulty_level": question.difficulty_level,
        "question_text": question.question_text,
        "options": dict(question.options),
        "topic": question.topic,
        "tags": list(question.tags),
        "audio": dict(question.audio) if question.audio else None,
        "passage": dict(question.passage) if question.passage else None,
        "image_url": question.image_url,
    }


# ── Error envelope ────────────────────────────────────────────────────────────


def error_response(
    *,
    code: str,
    message: str,
    status_code: int,
    details: Any = None,
) -> JSONResponse:
    payload = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def status_for(exc: TepsCoachError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def domain_exception_handler(request: Request, exc: TepsCoachError) -> JSONResponse:
    status_code = status_for(exc)
    details = exc.errors if isinstance(exc, ValidationFailure) else None
    logger.info("%s %s -> %d %s: %s", request.method, request.url.path, status_code, exc.code, exc)
    return error_response(code=exc.code, message=str(exc), status_code=status_code, details=details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(code="http_error", message=str(exc.detail), status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        code="validation_error",
        message="Request validation failed",
        status_code=422,
        details=exc.errors(),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(code="internal_error", message="Internal server error", status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TepsCoachError, domain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "current_user_id",
    "error_response",
    "ok",
    "public_question",
    "register_error_handlers",
    "status_for",
]
