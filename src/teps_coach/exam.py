"""Exam attempt state machine.

not_started -> in_progress <-> paused -> completed, with abandoned/expired
reachable from any non-terminal state. Transitions return new snapshots and
raise InvalidStateError when a guard rejects them.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Mapping

from .db import now_iso, parse_iso
from .errors import InvalidStateError, NotFoundError
from .models import (
    TERMINAL_STATUSES,
    ActivityKind,
    ExamAttempt,
    ExamConfig,
    ExamStatus,
    Section,
    UserAnswer,
)
from .scoring import score_attempt

TAB_SWITCH_LIMIT = 5
FULLSCREEN_EXIT_LIMIT = 3


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _require(attempt: ExamAttempt, allowed: tuple[ExamStatus, ...], action: str) -> None:
    if attempt.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} attempt {attempt.id} while it is {attempt.status}"
        )


def is_terminal(attempt: ExamAttempt) -> bool:
    return attempt.status in TERMINAL_STATUSES


def start(attempt: ExamAttempt, *, now: datetime | None = None) -> ExamAttempt:
    _require(attempt, ("not_started",), "start")
    return replace(attempt, status="in_progress", started_at=now_iso(_now(now)))


def pause(attempt: ExamAttempt, config: ExamConfig, *, now: datetime | None = None) -> ExamAttempt:
    _require(attempt, ("in_progress",), "pause")
    if not config.rules.allow_pause:
        raise InvalidStateError(f"Exam config {config.id} does not allow pausing")
    return replace(attempt, status="paused", paused_at=now_iso(_now(now)))


def _pause_seconds(attempt: ExamAttempt, moment: datetime) -> int:
    if attempt.paused_at is None:
        return 0
    return max(0, int((moment - parse_iso(attempt.paused_at)).total_seconds()))


def resume(attempt: ExamAttempt, *, now: datetime | None = None) -> ExamAttempt:
    _require(attempt, ("paused",), "resume")
    moment = _now(now)
    return replace(
        attempt,
        status="in_progress",
        paused_at=None,
        paused_seconds=attempt.paused_seconds + _pause_seconds(attempt, moment),
    )


def submit_answer(attempt: ExamAttempt, answer: UserAnswer) -> ExamAttempt:
    """Record an answer, replacing any earlier answer to the same question."""

    _require(attempt, ("in_progress",), "submit an answer to")
    if answer.question_id not in attempt.question_ids:
        raise NotFoundError(f"Question {answer.question_id} is not part of attempt {attempt.id}")

    answers = list(attempt.answers)
    for index, existing in enumerate(answers):
        if existing.question_id == answer.question_id:
            answers[index] = answer
            break
    else:
        answers.append(answer)

    position = attempt.question_ids.index(answer.question_id) + 1
    return replace(
        attempt,
        answers=tuple(answers),
        current_index=min(max(attempt.current_index, position), len(attempt.question_ids)),
    )


def complete(
    attempt: ExamAttempt,
    config: ExamConfig,
    *,
    section_totals: Mapping[Section, int] | None = None,
    now: datetime | None = None,
) -> ExamAttempt:
    """Finish the attempt and attach its scored result."""

    _require(attempt, ("in_progress", "paused"), "complete")
    moment = _now(now)
    paused_seconds = attempt.paused_seconds
    if attempt.status == "paused":
        paused_seconds += _pause_seconds(attempt, moment)
    return replace(
        attempt,
        status="completed",
        paused_at=None,
        paused_seconds=paused_seconds,
        completed_at=now_iso(moment),
        result=score_attempt(attempt.answers, config, section_totals),
    )


def abandon(attempt: ExamAttempt) -> ExamAttempt:
    if is_terminal(attempt):
        raise InvalidStateError(f"Attempt {attempt.id} is already {attempt.status}")
    return replace(attempt, status="abandoned", paused_at=None)


def is_expired(attempt: ExamAttempt, *, now: datetime | None = None) -> bool:
    if is_terminal(attempt) or attempt.expires_at is None:
        return False
    return _now(now) > parse_iso(attempt.expires_at)


def pause_overrun(attempt: ExamAttempt, max_pause_minutes: int | None, *, now: datetime | None = None) -> bool:
    if attempt.status != "paused" or max_pause_minutes is None:
        return False
    return _pause_seconds(attempt, _now(now)) > max_pause_minutes * 60


def expire_if_due(
    attempt: ExamAttempt,
    *,
    max_pause_minutes: int | None = None,
    now: datetime | None = None,
) -> ExamAttempt:
    """Lazily move an overdue or over-paused attempt to expired."""
    if is_expired(attempt, now=now) or pause_overrun(attempt, max_pause_minutes, now=now):
        return replace(attempt, status="expired", paused_at=None)
    return attempt


def report_activity(attempt: ExamAttempt, kind: ActivityKind) -> ExamAttempt:
    """Count an integrity event; the suspicious flag is advisory only."""

    _require(attempt, ("not_started", "in_progress", "paused"), "report activity on")
    tab_switches = attempt.tab_switches + (1 if kind == "tab_switch" else 0)
    fullscreen_exits = attempt.fullscreen_exits + (1 if kind == "fullscreen_exit" else 0)
    suspicious = (
        attempt.suspicious
        or tab_switches >= TAB_SWITCH_LIMIT
        or fullscreen_exits >= FULLSCREEN_EXIT_LIMIT
    )
    return replace(
        attempt,
        tab_switches=tab_switches,
        fullscreen_exits=fullscreen_exits,
        suspicious=suspicious,
    )


def elapsed_seconds(attempt: ExamAttempt, *, now: datetime | None = None) -> int:
    """Wall-clock exam time excluding pauses."""
    if attempt.started_at is None:
        return 0
    moment = _now(now)
    if attempt.completed_at is not None:
        moment = parse_iso(attempt.completed_at)
    total = int((moment - parse_iso(attempt.started_at)).total_seconds())
    paused = attempt.paused_seconds
    if attempt.status == "paused":
        paused += _pause_seconds(attempt, moment)
    return max(0, total - paused)


def reported_seconds(attempt: ExamAttempt) -> int:
    """Client-reported time: the sum of per-answer time spent."""
    return sum(answer.time_spent for answer in attempt.answers)


__all__ = [
    "FULLSCREEN_EXIT_LIMIT",
    "TAB_SWITCH_LIMIT",
    "abandon",
    "complete",
    "elapsed_seconds",
    "expire_if_due",
    "is_expired",
    "is_terminal",
    "pause",
    "pause_overrun",
    "report_activity",
    "reported_seconds",
    "resume",
    "start",
    "submit_answer",
]
