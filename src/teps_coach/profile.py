"""Learner profile maintenance: ability vector, bounded history, topic trackers, patterns.

Every function here takes a profile snapshot and returns a new one; nothing is
mutated in place and nothing touches the database.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Iterable, Sequence

from .errors import ValidationFailure
from .irt import ability_to_difficulty, ability_to_score, update_ability
from .models import (
    SECTIONS,
    Goal,
    HistoryEntry,
    LearnerProfile,
    LearningPatterns,
    LearningSpeed,
    Question,
    Section,
    StrongTopic,
    TimeOfDay,
    WeakTopic,
)

HISTORY_LIMIT = 500
TOPIC_LIMIT = 20
TOPIC_MIN_ATTEMPTS = 10
WEAK_PRUNE_BELOW = 0.3
STRONG_PRUNE_BELOW = 0.7

PATTERN_WINDOW = 100
MIN_PATTERN_ENTRIES = 10
MIN_BUCKET_SAMPLES = 5
SPEED_WINDOW = 30
FAST_GAIN = 0.5
AVERAGE_GAIN = 0.2


def new_profile(user_id: str) -> LearnerProfile:
    return LearnerProfile(user_id=user_id, abilities={section: 0.0 for section in SECTIONS})


def current_score(profile: LearnerProfile) -> int:
    """Estimated 0-600 score from overall ability."""
    return ability_to_score(profile.overall_ability)


def recent_question_ids(profile: LearnerProfile, limit: int = 50) -> tuple[int, ...]:
    return tuple(entry.question_id for entry in profile.history[-limit:])


def weak_topic_names(profile: LearnerProfile, section: Section | None = None) -> tuple[str, ...]:
    return tuple(
        topic.topic for topic in profile.weak_topics if section is None or topic.section == section
    )


# ── Per-answer update ─────────────────────────────────────────────────────────


def apply_response(
    profile: LearnerProfile,
    question: Question,
    is_correct: bool,
    time_spent: int,
    *,
    now: datetime | None = None,
) -> LearnerProfile:
    """Fold one answered question into the profile."""

    moment = now or datetime.now(timezone.utc)
    entry = HistoryEntry(
        section=question.section,
        question_id=question.id,
        is_correct=is_correct,
        time_spent=max(0, int(time_spent)),
        difficulty=question.stats.difficulty,
        answered_at=moment,
    )
    history = (*profile.history, entry)[-HISTORY_LIMIT:]

    abilities = dict(profile.abilities)
    abilities[question.section] = update_ability(
        abilities.get(question.section, 0.0), question, is_correct
    )
    overall = sum(abilities.get(section, 0.0) for section in SECTIONS) / len(SECTIONS)

    weak_topics = profile.weak_topics
    strong_topics = profile.strong_topics
    if question.topic:
        weak_topics = update_weak_topics(weak_topics, question.section, question.topic, is_correct)
        strong_topics = update_strong_topics(strong_topics, question.section, question.topic, is_correct)

    patterns = detect_learning_patterns(history, overall) or profile.patterns

    return replace(
        profile,
        abilities=abilities,
        overall_ability=overall,
        history=history,
        weak_topics=weak_topics,
        strong_topics=strong_topics,
        patterns=patterns,
        questions_answered=profile.questions_answered + 1,
        study_seconds=profile.study_seconds + entry.time_spent,
    )


def _rolling(rate: float, attempts: int, outcome: float) -> float:
    return (rate * attempts + outcome) / (attempts + 1)


def update_weak_topics(
    topics: Sequence[WeakTopic],
    section: Section,
    topic: str,
    is_correct: bool,
) -> tuple[WeakTopic, ...]:
    """Track error rate per topic; only a wrong answer starts tracking."""

    error = 0.0 if is_correct else 1.0
    updated: list[WeakTopic] = []
    seen = False
    for item in topics:
        if item.section == section and item.topic == topic:
            seen = True
            item = WeakTopic(
                section=section,
                topic=topic,
                error_rate=_rolling(item.error_rate, item.attempts, error),
                attempts=item.attempts + 1,
            )
            if item.attempts >= TOPIC_MIN_ATTEMPTS and item.error_rate < WEAK_PRUNE_BELOW:
                continue
        updated.append(item)
    if not seen and not is_correct:
        updated.append(WeakTopic(section=section, topic=topic, error_rate=1.0, attempts=1))
    updated.sort(key=lambda item: item.error_rate, reverse=True)
    return tuple(updated[:TOPIC_LIMIT])


def update_strong_topics(
    topics: Sequence[StrongTopic],
    section: Section,
    topic: str,
    is_correct: bool,
) -> tuple[StrongTopic, ...]:
    """Track success rate per topic; only a correct answer starts tracking."""

    success = 1.0 if is_correct else 0.0
    updated: list[StrongTopic] = []
    seen = False
    for item in topics:
        if item.section == section and item.topic == topic:
            seen = True
            item = StrongTopic(
                section=section,
                topic=topic,
                success_rate=_rolling(item.success_rate, item.attempts, success),
                attempts=item.attempts + 1,
            )
            if item.attempts >= TOPIC_MIN_ATTEMPTS and item.success_rate < STRONG_PRUNE_BELOW:
                continue
        updated.append(item)
    if not seen and is_correct:
        updated.append(StrongTopic(section=section, topic=topic, success_rate=1.0, attempts=1))
    updated.sort(key=lambda item: item.success_rate, reverse=True)
    return tuple(updated[:TOPIC_LIMIT])


# ── Learning patterns ─────────────────────────────────────────────────────────


def time_of_day(moment: datetime) -> TimeOfDay:
    hour = moment.hour
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "night"


def _best_time_of_day(entries: Sequence[HistoryEntry]) -> TimeOfDay:
    buckets: dict[TimeOfDay, list[bool]] = defaultdict(list)
    for entry in entries:
        buckets[time_of_day(entry.answered_at)].append(entry.is_correct)

    best: TimeOfDay = "evening"
    best_rate = -1.0
    for bucket in ("morning", "afternoon", "evening", "night"):
        outcomes = buckets.get(bucket, [])
        if len(outcomes) < MIN_BUCKET_SAMPLES:
            continue
        rate = sum(outcomes) / len(outcomes)
        if rate > best_rate:
            best, best_rate = bucket, rate
    return best


def _average_session_minutes(entries: Sequence[HistoryEntry]) -> int:
    per_day: dict[date, int] = defaultdict(int)
    for entry in entries:
        per_day[entry.answered_at.date()] += entry.time_spent
    if not per_day:
        return 0
    return round(sum(per_day.values()) / len(per_day) / 60)


def _weighted_correctness(entries: Iterable[HistoryEntry]) -> float:
    values = [entry.difficulty if entry.is_correct else entry.difficulty - 1 for entry in entries]
    return sum(values) / len(values) if values else 0.0


def _learning_speed(entries: Sequence[HistoryEntry]) -> LearningSpeed:
    gain = _weighted_correctness(entries[-SPEED_WINDOW:]) - _weighted_correctness(entries[:SPEED_WINDOW])
    if gain > FAST_GAIN:
        return "fast"
    if gain > AVERAGE_GAIN:
        return "average"
    return "slow"


def consistency_score(entries: Sequence[HistoryEntry]) -> float:
    """Distinct study days over the calendar-day span, as a percentage."""
    if not entries:
        return 0.0
    days = {entry.answered_at.date() for entry in entries}
    span = (max(days) - min(days)).days + 1
    return round(len(days) / span * 100, 1)


def detect_learning_patterns(
    history: Sequence[HistoryEntry],
    overall_ability: float,
) -> LearningPatterns | None:
    """Summarise the latest window of history; None while there is too little of it."""

    window = list(history[-PATTERN_WINDOW:])
    if len(window) < MIN_PATTERN_ENTRIES:
        return None
    return LearningPatterns(
        optimal_study_time=_best_time_of_day(window),
        average_session_minutes=_average_session_minutes(window),
        preferred_difficulty=ability_to_difficulty(overall_ability),
        learning_speed=_learning_speed(window),
        consistency_score=consistency_score(window),
    )


# ── Goals ─────────────────────────────────────────────────────────────────────


def set_goal(
    profile: LearnerProfile,
    target_score: int,
    target_date: date,
    *,
    today: date | None = None,
) -> LearnerProfile:
    """Attach a score goal, deriving the daily gain it needs."""

    if not 0 < target_score <= 600:
        raise ValidationFailure(f"Target score must be between 1 and 600, got {target_score}")
    reference = today or datetime.now(timezone.utc).date()
    days = (target_date - reference).days
    if days <= 0:
        raise ValidationFailure("Target date must be in the future")

    score = current_score(profile)
    goal = Goal(
        target_score=target_score,
        target_date=target_date,
        required_daily_gain=round(max(0, target_score - score) / days, 2),
        progress_pct=round(min(100.0, score / target_score * 100), 1),
    )
    return replace(profile, goal=goal)


__all__ = [
    "HISTORY_LIMIT",
    "TOPIC_LIMIT",
    "apply_response",
    "consistency_score",
    "current_score",
    "detect_learning_patterns",
    "new_profile",
    "recent_question_ids",
    "set_goal",
    "time_of_day",
    "update_strong_topics",
    "update_weak_topics",
    "weak_topic_names",
]
