"""TEPS Coach: adaptive TEPS exam practice with IRT ability tracking and score analytics."""

from .db import init_db
from .errors import (
    AIUnavailableError,
    InsufficientDataError,
    InvalidStateError,
    NotFoundError,
    TepsCoachError,
    ValidationFailure,
)

__all__ = [
    "AIUnavailableError",
    "InsufficientDataError",
    "InvalidStateError",
    "NotFoundError",
    "TepsCoachError",
    "ValidationFailure",
    "init_db",
]
