"""Exam orchestration: build configs, fill sections, drive attempts through the state machine."""

from __future__ import annotations

import logging
import random
import threading
import weakref
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import markdown

from . import exam, exam_db, exam_formats
from .db import now_iso
from .errors import InvalidStateError, NotFoundError, ValidationFailure
from .models import (
    OPTION_KEYS,
    SECTIONS,
    AdaptiveCriteria,
    ExamAttempt,
    ExamConfig,
    ExamDifficulty,
    ExamType,
    Question,
    QuestionQuery,
    Section,
    SectionConfig,
    UserAnswer,
    ensure_activity_kind,
    ensure_exam_difficulty,
    ensure_exam_type,
    ensure_section,
)
from .profile import apply_response, current_score, recent_question_ids, weak_topic_names
from .profile_db import get_or_create_profile, save_profile
from .question_bank import (
    get_question,
    get_questions,
    matching_questions,
    rank_by_information,
    record_question_usage,
    search,
    select_adaptive,
)

logger = logging.getLogger(__name__)

STATISTICS_PAGE_SIZE = 200

_locks_guard = threading.Lock()
# Entries vanish once no caller holds the lock.
_attempt_locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()


def _attempt_lock(attempt_id: int) -> threading.Lock:
    with _locks_guard:
        lock = _attempt_locks.get(attempt_id)
        if lock is None:
            lock = _attempt_locks[attempt_id] = threading.Lock()
        return lock


@dataclass(slots=True)
class ExamQuestionView:
    """A question as shown to the learner: no answer key, options possibly reordered."""

    position: int
    question_id: int
    section: Section
    question_type: str
    question_text: str
    options: dict[str, str]
    audio: dict[str, Any] | None = None
    passage: dict[str, Any] | None = None
    image_url: str | None = None
    answered: bool = False


@dataclass(slots=True)
class SubmitOutcome:
    attempt: ExamAttempt
    is_correct: bool
    answered: int
    total: int
    auto_completed: bool = False


@dataclass(slots=True)
class ReviewItem:
    question_id: int
    section: Section
    question_text: str
    options: dict[str, str]
    your_answer: str | None
    is_correct: bool
    correct_answer: str | None = None
    explanation_html: str | None = None


@dataclass(slots=True)
class ExamStatistics:
    total_attempts: int = 0
    completed: int = 0
    average_score: float = 0.0
    best_score: int = 0
    average_time_seconds: float = 0.0
    section_accuracy: dict[str, float] = field(default_factory=dict)


def _utcnow(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


# ── Config resolution ─────────────────────────────────────────────────────────


def _official_config(difficulty: ExamDifficulty) -> ExamConfig:
    existing = exam_db.find_config("official_simulation", difficulty, is_official_format=True)
    if existing is not None:
        return existing
    layout = exam_formats.exam_format("official_simulation")
    return exam_db.create_config(
        name=f"{layout['name']} ({difficulty})",
        exam_type="official_simulation",
        difficulty=difficulty,
        sections=exam_formats.official_sections(),
        total_time_limit=int(layout["total_time_limit"]),
        rules=exam_formats.rules_for("official_simulation"),
        is_official_format=True,
    )


def _practice_config(section: Section, difficulty: ExamDifficulty, question_count: int | None) -> ExamConfig:
    layout = exam_formats.exam_format("section_practice")
    count = int(question_count or layout["default_question_count"])
    if count <= 0:
        raise ValidationFailure("Question count must be positive")
    minutes = count * int(layout.get("minutes_per_question", 1))
    return exam_db.create_config(
        name=layout["name"].format(section=section.title()),
        exam_type="section_practice",
        difficulty=difficulty,
        sections=(SectionConfig(section=section, question_count=count, time_limit=minutes),),
        total_time_limit=minutes,
        rules=exam_formats.rules_for("section_practice"),
    )


def _micro_config(section: Section, difficulty: ExamDifficulty, duration: int) -> ExamConfig:
    layout = exam_formats.exam_format("micro_session")
    count = duration * int(layout.get("questions_per_minute", 1))
    return exam_db.create_config(
        name=layout["name"].format(minutes=duration, section=section.title()),
        exam_type="micro_session",
        difficulty=difficulty,
        sections=(SectionConfig(section=section, question_count=count, time_limit=duration),),
        total_time_limit=duration,
        rules=exam_formats.rules_for("micro_session"),
    )


# ── Section filling ───────────────────────────────────────────────────────────


def _pick_by_band(
    section: Section,
    levels: Sequence[int],
    count: int,
    exclude: set[int],
    rng: random.Random,
) -> list[Question]:
    min_quality, oversample = exam_formats.selection_settings()
    candidates, _ = search(
        QuestionQuery(
            section=section,
            difficulty=tuple(levels),
            min_quality=min_quality,
            exclude_ids=frozenset(exclude),
        ),
        limit=count * oversample,
    )
    rng.shuffle(candidates)
    return candidates[:count]


def _pick_adaptive(
    section_config: SectionConfig,
    criteria: AdaptiveCriteria,
    used: set[int],
    rng: random.Random,
) -> list[Question]:
    count = section_config.question_count
    fresh = matching_questions(QuestionQuery(section=section_config.section, exclude_ids=frozenset(used)))
    picked = rank_by_information(fresh, criteria, count)
    if len(picked) < count:
        taken = {q.id for q in picked}
        for question in select_adaptive(criteria, count):
            if len(picked) >= count:
                break
            if question.id not in taken:
                picked.append(question)
                taken.add(question.id)
    if len(picked) < count:
        taken = {q.id for q in picked}
        levels = exam_formats.ability_levels(criteria.ability)
        picked.extend(_pick_by_band(section_config.section, levels, count - len(picked), taken, rng))
    return picked


def _fill_sections(
    config: ExamConfig,
    user_id: str,
    rng: random.Random,
) -> list[int]:
    profile = get_or_create_profile(user_id)
    used = exam_db.used_question_ids(user_id)
    question_ids: list[int] = []
    for section_config in config.sections:
        section = section_config.section
        count = section_config.question_count
        if config.difficulty == "adaptive":
            criteria = AdaptiveCriteria(
                section=section,
                ability=profile.abilities.get(section, 0.0),
                weak_topics=weak_topic_names(profile, section),
                recent_question_ids=recent_question_ids(profile),
            )
            picked = _pick_adaptive(section_config, criteria, used, rng)
        else:
            levels = exam_formats.difficulty_levels(config.difficulty)
            picked = _pick_by_band(section, levels, count, used, rng)
            if len(picked) < count:
                taken = {q.id for q in picked}
                picked.extend(_pick_by_band(section, levels, count - len(picked), taken, rng))
        ids = [q.id for q in picked]
        if config.rules.shuffle_questions:
            rng.shuffle(ids)
        if len(ids) < count:
            logger.warning("Section %s filled with %d of %d questions", section, len(ids), count)
        question_ids.extend(ids)
    return question_ids


# ── Public operations ─────────────────────────────────────────────────────────


def create_exam(
    user_id: str,
    exam_type: str,
    *,
    difficulty: str = "adaptive",
    section: str | None = None,
    question_count: int | None = None,
    duration: int | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> ExamAttempt:
    """Resolve or build a config of the requested flavour and open a new attempt on it."""

    kind: ExamType = ensure_exam_type(exam_type)
    level = ensure_exam_difficulty(difficulty)
    chosen = ensure_section(section) if section else None

    if kind == "official_simulation":
        config = _official_config(level)
    elif kind == "section_practice":
        if chosen is None:
            raise ValidationFailure("Section practice requires a section")
        config = _practice_config(chosen, level, question_count)
    else:
        minutes = int(duration or 0)
        if minutes not in exam_formats.micro_durations():
            raise ValidationFailure(
                f"Micro session duration must be one of {list(exam_formats.micro_durations())}"
            )
        if chosen is None:
            profile = get_or_create_profile(user_id)
            if profile.weak_topics:
                chosen = profile.weak_topics[0].section
            else:
                chosen = ensure_section(exam_formats.exam_format("micro_session")["default_section"])
        config = _micro_config(chosen, level, minutes)

    question_ids = _fill_sections(config, user_id, rng or random.Random())
    if not question_ids:
        raise NotFoundError(f"No approved questions available for {config.name}")

    expires = _utcnow(now) + timedelta(hours=exam_formats.expiry_hours(kind))
    attempt = exam_db.create_attempt(
        user_id=user_id,
        config=config,
        question_ids=question_ids,
        expires_at=now_iso(expires),
    )
    logger.info(
        "Created %s attempt %s for %s with %d questions", kind, attempt.id, user_id, len(question_ids)
    )
    return attempt


def load_attempt(attempt_id: int, user_id: str, *, now: datetime | None = None) -> ExamAttempt:
    """Fetch an attempt owned by ``user_id``, expiring it first if its deadline passed."""

    attempt = exam_db.get_attempt(attempt_id)
    if attempt.user_id != user_id:
        raise NotFoundError(f"Exam attempt {attempt_id} not found")
    config = exam_db.get_config(attempt.config_id)
    checked = exam.expire_if_due(attempt, max_pause_minutes=config.rules.max_pause_minutes, now=now)
    if checked.status != attempt.status:
        exam_db.save_attempt_state(checked)
        logger.info("Attempt %s expired", attempt_id)
    return checked


def start_exam(attempt_id: int, user_id: str, *, now: datetime | None = None) -> ExamAttempt:
    with _attempt_lock(attempt_id):
        attempt = exam.start(load_attempt(attempt_id, user_id, now=now), now=now)
        exam_db.save_attempt_state(attempt)
    logger.info("Attempt %s started", attempt_id)
    return attempt


def _option_order(attempt_id: int, question: Question, shuffle: bool) -> list[str]:
    keys = [key for key in OPTION_KEYS if key in question.options]
    if shuffle:
        random.Random(f"{attempt_id}:{question.id}").shuffle(keys)
    return keys


def _displayed_options(order: Sequence[str], question: Question) -> dict[str, str]:
    return {OPTION_KEYS[index]: question.options[key] for index, key in enumerate(order)}


def _to_original_key(order: Sequence[str], shown: str) -> str:
    key = shown.strip().upper()
    if key not in OPTION_KEYS[: len(order)]:
        raise ValidationFailure(f"Answer must be one of {', '.join(OPTION_KEYS[: len(order)])}")
    return order[OPTION_KEYS.index(key)]


def get_exam_questions(
    attempt_id: int,
    user_id: str,
    *,
    now: datetime | None = None,
) -> list[ExamQuestionView]:
    attempt = load_attempt(attempt_id, user_id, now=now)
    if attempt.status != "in_progress":
        raise InvalidStateError(f"Attempt {attempt_id} is {attempt.status}; questions are only served in progress")
    config = exam_db.get_config(attempt.config_id)
    questions = get_questions(attempt.question_ids)
    answered = {answer.question_id for answer in attempt.answers}
    views: list[ExamQuestionView] = []
    for position, question_id in enumerate(attempt.question_ids):
        question = questions.get(question_id)
        if question is None:
            continue
        order = _option_order(attempt.id, question, config.rules.shuffle_options)
        views.append(
            ExamQuestionView(
                position=position,
                question_id=question.id,
                section=question.section,
                question_type=question.question_type,
                question_text=question.question_text,
                options=_displayed_options(order, question),
                audio=dict(question.audio) if question.audio else None,
                passage=dict(question.passage) if question.passage else None,
                image_url=question.image_url,
                answered=question.id in answered,
            )
        )
    return views


def submit_answer(
    attempt_id: int,
    user_id: str,
    question_id: int,
    answer: str,
    time_spent: int,
    *,
    now: datetime | None = None,
) -> SubmitOutcome:
    """Score and record one answer; re-submitting a question overwrites the earlier answer."""

    if time_spent < 0:
        raise ValidationFailure("Time spent cannot be negative")
    moment = _utcnow(now)
    with _attempt_lock(attempt_id):
        attempt = load_attempt(attempt_id, user_id, now=moment)
        config = exam_db.get_config(attempt.config_id)
        question = get_question(question_id)
        order = _option_order(attempt.id, question, config.rules.shuffle_options)
        chosen = _to_original_key(order, answer)
        is_correct = chosen == question.correct_answer

        user_answer = UserAnswer(
            question_id=question.id,
            section=question.section,
            answer=chosen,
            is_correct=is_correct,
            time_spent=int(time_spent),
            answered_at=now_iso(moment),
        )
        updated = exam.submit_answer(attempt, user_answer)
        first = exam_db.upsert_answer(attempt.id, user_answer, updated.current_index)

        if first:
            profile = get_or_create_profile(user_id)
            record_question_usage(question.id, is_correct, int(time_spent), current_score(profile))
            save_profile(apply_response(profile, question, is_correct, int(time_spent), now=moment))

        auto_completed = False
        if config.rules.auto_submit and exam.reported_seconds(updated) >= config.total_time_limit * 60:
            updated = _complete(updated, config, now=moment)
            auto_completed = True
            logger.info("Attempt %s auto-submitted at the time limit", attempt_id)

    return SubmitOutcome(
        attempt=updated,
        is_correct=is_correct,
        answered=len(updated.answers),
        total=len(updated.question_ids),
        auto_completed=auto_completed,
    )


def pause_exam(attempt_id: int, user_id: str, *, now: datetime | None = None) -> ExamAttempt:
    with _attempt_lock(attempt_id):
        attempt = load_attempt(attempt_id, user_id, now=now)
        config = exam_db.get_config(attempt.config_id)
        attempt = exam.pause(attempt, config, now=now)
        exam_db.save_attempt_state(attempt)
    return attempt


def resume_exam(attempt_id: int, user_id: str, *, now: datetime | None = None) -> ExamAttempt:
    with _attempt_lock(attempt_id):
        attempt = exam.resume(load_attempt(attempt_id, user_id, now=now), now=now)
        exam_db.save_attempt_state(attempt)
    return attempt


def _complete(attempt: ExamAttempt, config: ExamConfig, *, now: datetime | None) -> ExamAttempt:
    questions = get_questions(attempt.question_ids)
    totals = Counter(q.section for q in questions.values())
    completed = exam.complete(attempt, config, section_totals=dict(totals), now=now)
    exam_db.save_attempt_state(completed)
    if completed.result is not None:
        exam_db.record_config_usage(
            config.id,
            completed.result.total_score,
            exam.elapsed_seconds(completed, now=now),
        )
        logger.info("Attempt %s completed with %d points", attempt.id, completed.result.total_score)
    return completed


def complete_exam(attempt_id: int, user_id: str, *, now: datetime | None = None) -> ExamAttempt:
    with _attempt_lock(attempt_id):
        attempt = load_attempt(attempt_id, user_id, now=now)
        config = exam_db.get_config(attempt.config_id)
        return _complete(attempt, config, now=now)


def abandon_exam(attempt_id: int, user_id: str, *, now: datetime | None = None) -> ExamAttempt:
    with _attempt_lock(attempt_id):
        attempt = exam.abandon(load_attempt(attempt_id, user_id, now=now))
        exam_db.save_attempt_state(attempt)
    logger.info("Attempt %s abandoned", attempt_id)
    return attempt


def report_activity(attempt_id: int, user_id: str, kind: str, *, now: datetime | None = None) -> ExamAttempt:
    activity = ensure_activity_kind(kind)
    with _attempt_lock(attempt_id):
        before = load_attempt(attempt_id, user_id, now=now)
        attempt = exam.report_activity(before, activity)
        exam_db.save_attempt_state(attempt)
    if attempt.suspicious and not before.suspicious:
        logger.warning(
            "Attempt %s flagged suspicious (tab switches=%d, fullscreen exits=%d)",
            attempt_id,
            attempt.tab_switches,
            attempt.fullscreen_exits,
        )
    return attempt


def review_exam(attempt_id: int, user_id: str) -> list[ReviewItem]:
    """Answer sheet for a completed attempt, honouring the config's show flags."""

    attempt = load_attempt(attempt_id, user_id)
    if attempt.status != "completed":
        raise InvalidStateError(f"Attempt {attempt_id} must be completed before review")
    config = exam_db.get_config(attempt.config_id)
    if not config.rules.allow_review:
        raise InvalidStateError(f"Exam config {config.id} does not allow review")

    questions = get_questions(attempt.question_ids)
    answers = {answer.question_id: answer for answer in attempt.answers}
    items: list[ReviewItem] = []
    for question_id in attempt.question_ids:
        question = questions.get(question_id)
        if question is None:
            continue
        answer = answers.get(question_id)
        items.append(
            ReviewItem(
                question_id=question.id,
                section=question.section,
                question_text=question.question_text,
                options=dict(question.options),
                your_answer=answer.answer if answer else None,
                is_correct=bool(answer and answer.is_correct),
                correct_answer=question.correct_answer if config.rules.show_correct_answers else None,
                explanation_html=markdown.markdown(question.explanation)
                if config.rules.show_explanations and question.explanation
                else None,
            )
        )
    return items


def exam_history(user_id: str, *, limit: int = 20, offset: int = 0) -> tuple[list[ExamAttempt], int]:
    return exam_db.list_attempts(user_id, limit=limit, offset=offset)


def _all_attempts(user_id: str) -> tuple[list[ExamAttempt], int]:
    attempts: list[ExamAttempt] = []
    while True:
        page, total = exam_db.list_attempts(user_id, limit=STATISTICS_PAGE_SIZE, offset=len(attempts))
        attempts.extend(page)
        if not page or len(attempts) >= total:
            return attempts, total


def exam_statistics(user_id: str) -> ExamStatistics:
    attempts, total = _all_attempts(user_id)
    completed = [a for a in attempts if a.status == "completed" and a.result is not None]
    stats = ExamStatistics(total_attempts=total, completed=len(completed))
    if not completed:
        return stats

    scores = [a.result.total_score for a in completed if a.result]
    stats.average_score = round(sum(scores) / len(scores), 1)
    stats.best_score = max(scores)
    durations = [exam.elapsed_seconds(a) for a in completed]
    stats.average_time_seconds = round(sum(durations) / len(durations), 1)

    correct: Counter[str] = Counter()
    seen: Counter[str] = Counter()
    for attempt in completed:
        for section_result in attempt.result.sections if attempt.result else ():
            correct[section_result.section] += section_result.correct
            seen[section_result.section] += section_result.total
    stats.section_accuracy = {
        section: round(correct[section] / seen[section] * 100, 1)
        for section in SECTIONS
        if seen[section]
    }
    return stats


__all__ = [
    "ExamQuestionView",
    "ExamStatistics",
    "ReviewItem",
    "SubmitOutcome",
    "abandon_exam",
    "complete_exam",
    "create_exam",
    "exam_history",
    "exam_statistics",
    "get_exam_questions",
    "load_attempt",
    "pause_exam",
    "report_activity",
    "resume_exam",
    "review_exam",
    "start_exam",
    "submit_answer",
]
