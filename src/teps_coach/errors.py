"""Exception types raised by the exam, profile and analytics services."""

from __future__ import annotations

from typing import Sequence


class TepsCoachError(Exception):
    """Base class for domain errors."""

    code = "error"


class NotFoundError(TepsCoachError, LookupError):
    """Unknown question, attempt, config or learner id."""

    code = "not_found"


class InvalidStateError(TepsCoachError, RuntimeError):
    """An exam state-machine guard rejected the requested transition."""

    code = "invalid_state"


class ValidationFailure(TepsCoachError, ValueError):
    """Input record is missing required fields or carries bad values."""

    code = "validation_failed"

    def __init__(self, message: str, errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors) or [message]


class InsufficientDataError(TepsCoachError):
    """Not enough history to fit a trend."""

    code = "insufficient_data"


class AIUnavailableError(TepsCoachError):
    """Question generation was requested but no OpenAI client is configured."""

    code = "ai_unavailable"


__all__ = [
    "AIUnavailableError",
    "InsufficientDataError",
    "InvalidStateError",
    "NotFoundError",
    "TepsCoachError",
    "ValidationFailure",
]
