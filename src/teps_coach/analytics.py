"""Score trends, regression forecasts, peer standing, goals and milestones.

The snapshot is rebuilt from the learner profile and completed attempts on
every refresh; nothing here is patched incrementally.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

from . import exam_db
from .db import now_iso, parse_iso
from .errors import InsufficientDataError
from .models import SECTIONS, Goal, HistoryEntry, LearnerProfile, LearningPatterns, Section
from .profile import current_score
from .profile_db import get_or_create_profile, list_milestones, record_milestone, save_profile
from .scoring import SECTION_MAX_SCORE

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 600
TREND_LIMIT = 50
REGRESSION_WINDOW = 10
MIN_TREND_POINTS = 3
FALLBACK_INTERVAL = 50
SIMILAR_SCORE_BAND = 20
IMPROVEMENT_WINDOW = 20
DAILY_QUESTION_TARGET = 20
ACCURACY_TARGET = 70.0

PEER_RANGES: tuple[tuple[str, int, int], ...] = (
    ("0-200", 0, 200),
    ("201-300", 201, 300),
    ("301-400", 301, 400),
    ("401-500", 401, 500),
    ("501-600", 501, 600),
)
WEEKDAYS: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

MILESTONE_THRESHOLDS: dict[str, tuple[int, ...]] = {
    "score": (300, 400, 500, 600),
    "streak": (7, 30, 100, 365),
    "questions": (100, 500, 1000, 5000, 10000),
    "time": (10, 50, 100, 500, 1000),
}
MILESTONE_LABELS: dict[str, str] = {
    "score": "Reached {value} points",
    "streak": "{value}-day study streak",
    "questions": "Answered {value} questions",
    "time": "Studied {value} hours",
}


@dataclass(slots=True, frozen=True)
class TrendPoint:
    day: date
    score: int
    attempt_id: int
    exam_type: str


@dataclass(slots=True, frozen=True)
class SectionPerformance:
    section: Section
    accuracy: float
    average_score: float
    improvement: float
    questions: int
    time_spent: int
    rank: int


@dataclass(slots=True, frozen=True)
class StudyDay:
    weekday: str
    hours: float
    productivity: float


@dataclass(slots=True, frozen=True)
class LearningVelocity:
    questions_per_day: float
    accuracy_trend: float
    score_velocity: float


@dataclass(slots=True, frozen=True)
class ScoreRange:
    label: str
    count: int
    percentage: float


@dataclass(slots=True, frozen=True)
class PeerComparison:
    user_score: int
    percentile: float
    average_score: float
    similar_learners: int
    total_learners: int
    distribution: tuple[ScoreRange, ...]


@dataclass(slots=True, frozen=True)
class GoalProgress:
    target_score: int
    target_date: date
    current_score: int
    days_remaining: int
    required_daily_gain: float
    progress_pct: float
    on_track: bool
    estimated_days_to_goal: int | None


@dataclass(slots=True, frozen=True)
class PredictionFactor:
    factor: str
    impact: int


@dataclass(slots=True, frozen=True)
class ScorePrediction:
    target_days: int
    predicted_score: int
    lower_bound: float
    upper_bound: float
    probability: float
    based_on: str
    factors: tuple[PredictionFactor, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class Milestone:
    kind: str
    value: int
    label: str
    achieved_at: str


@dataclass(slots=True, frozen=True)
class AnalyticsSnapshot:
    user_id: str
    trend: tuple[TrendPoint, ...]
    current_score: int
    highest_score: int
    lowest_score: int
    change_30_days: int
    change_90_days: int
    sections: tuple[SectionPerformance, ...]
    strongest_section: Section | None
    weakest_section: Section | None
    total_questions: int
    total_study_minutes: int
    average_accuracy: float
    study_distribution: tuple[StudyDay, ...]
    most_productive_day: str | None
    velocity: LearningVelocity
    study_streak: int
    peers: PeerComparison
    goal: GoalProgress | None
    prediction: ScorePrediction
    milestones: tuple[Milestone, ...]
    patterns: LearningPatterns
    calculated_at: str


# ── Trend ─────────────────────────────────────────────────────────────────────


def build_trend(rows: Sequence[Mapping[str, Any]]) -> tuple[TrendPoint, ...]:
    """Ascending (date, score) series from completed-attempt rows."""
    points = [
        TrendPoint(
            day=parse_iso(row["completed_at"]).date(),
            score=int(row["scaled_score"]),
            attempt_id=int(row["id"]),
            exam_type=str(row["exam_type"]),
        )
        for row in rows
    ]
    points.sort(key=lambda point: (point.day, point.attempt_id))
    return tuple(points)


def score_change(trend: Sequence[TrendPoint], days: int, today: date) -> int:
    """Last minus first score inside the trailing window; 0 with fewer than two points."""
    window = [point for point in trend if point.day >= today - timedelta(days=days)]
    if len(window) < 2:
        return 0
    return window[-1].score - window[0].score


# ── Profile-derived metrics ───────────────────────────────────────────────────


def _accuracy(entries: Sequence[HistoryEntry]) -> float:
    if not entries:
        return 0.0
    return sum(1 for e in entries if e.is_correct) / len(entries) * 100


def section_performance(history: Sequence[HistoryEntry]) -> tuple[SectionPerformance, ...]:
    """Per-section accuracy, estimated section score and recent improvement, ranked."""

    rows: list[dict[str, Any]] = []
    for section in SECTIONS:
        entries = [e for e in history if e.section == section]
        if not entries:
            continue
        accuracy = _accuracy(entries)
        recent = entries[-IMPROVEMENT_WINDOW:]
        earlier = entries[-2 * IMPROVEMENT_WINDOW : -IMPROVEMENT_WINDOW]
        improvement = _accuracy(recent) - _accuracy(earlier) if earlier else 0.0
        rows.append(
            {
                "section": section,
                "accuracy": round(accuracy, 1),
                "average_score": round(accuracy / 100 * SECTION_MAX_SCORE, 1),
                "improvement": round(improvement, 1),
                "questions": len(entries),
                "time_spent": sum(e.time_spent for e in entries),
            }
        )
    rows.sort(key=lambda row: row["average_score"], reverse=True)
    return tuple(SectionPerformance(rank=rank, **row) for rank, row in enumerate(rows, start=1))


def study_distribution(history: Sequence[HistoryEntry]) -> tuple[StudyDay, ...]:
    seconds: dict[int, int] = defaultdict(int)
    outcomes: dict[int, list[bool]] = defaultdict(list)
    for entry in history:
        weekday = entry.answered_at.weekday()
        seconds[weekday] += entry.time_spent
        outcomes[weekday].append(entry.is_correct)
    return tuple(
        StudyDay(
            weekday=WEEKDAYS[index],
            hours=round(seconds[index] / 3600, 2),
            productivity=round(sum(outcomes[index]) / len(outcomes[index]) * 100, 1)
            if outcomes[index]
            else 0.0,
        )
        for index in range(7)
    )


def learning_velocity(
    history: Sequence[HistoryEntry],
    change_30_days: int,
    now: datetime,
) -> LearningVelocity:
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    this_week = [e for e in history if e.answered_at >= week_ago]
    last_week = [e for e in history if two_weeks_ago <= e.answered_at < week_ago]
    trend = _accuracy(this_week) - _accuracy(last_week) if this_week and last_week else 0.0
    return LearningVelocity(
        questions_per_day=round(len(this_week) / 7, 1),
        accuracy_trend=round(trend, 1),
        score_velocity=round(change_30_days / 4, 2),
    )


def study_streak(history: Sequence[HistoryEntry], today: date) -> int:
    """Consecutive study days ending today (or yesterday when today is still empty)."""
    days = {entry.answered_at.date() for entry in history}
    streak = 0
    offset = 0
    while True:
        day = today - timedelta(days=offset)
        if day in days:
            streak += 1
        elif offset > 0:
            break
        offset += 1
        if offset > len(days) + 1:
            break
    return streak


# ── Prediction ────────────────────────────────────────────────────────────────


def fit_linear(scores: Sequence[float]) -> tuple[float, float, float]:
    """OLS on index positions. Returns (slope, intercept, residual std dev)."""
    n = len(scores)
    if n < MIN_TREND_POINTS:
        raise InsufficientDataError(f"Need at least {MIN_TREND_POINTS} points, got {n}")
    mean_x = (n - 1) / 2
    mean_y = sum(scores) / n
    numerator = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(scores))
    denominator = sum((i - mean_x) ** 2 for i in range(n))
    slope = numerator / denominator if denominator else 0.0
    intercept = mean_y - slope * mean_x
    residuals = [y - (intercept + slope * i) for i, y in enumerate(scores)]
    std_dev = math.sqrt(sum(r * r for r in residuals) / n)
    return slope, intercept, std_dev


def _clamp_score(value: float) -> float:
    return max(SCORE_MIN, min(SCORE_MAX, value))


def predict_score(
    trend: Sequence[TrendPoint],
    target_days: int = 30,
    *,
    velocity: LearningVelocity | None = None,
    average_accuracy: float | None = None,
    current: int | None = None,
) -> ScorePrediction:
    """Extrapolate the last ten trend points ``target_days`` index positions ahead.

    Without enough points the prediction is ``current`` (the learner's
    current score) with a ±50 band.
    """

    if current is None:
        current = trend[-1].score if trend else SCORE_MIN
    recent = [point.score for point in trend[-REGRESSION_WINDOW:]]
    try:
        slope, intercept, std_dev = fit_linear(recent)
    except InsufficientDataError:
        return ScorePrediction(
            target_days=target_days,
            predicted_score=current,
            lower_bound=_clamp_score(current - FALLBACK_INTERVAL),
            upper_bound=_clamp_score(current + FALLBACK_INTERVAL),
            probability=0.5,
            based_on="insufficient_data",
            recommendations=("Keep practising to unlock a more accurate prediction",),
        )

    n = len(recent)
    predicted = int(_clamp_score(round(intercept + slope * (n - 1 + target_days))))
    questions_per_day = velocity.questions_per_day if velocity else 0.0
    accuracy_trend = velocity.accuracy_trend if velocity else 0.0
    factors = (
        PredictionFactor("Recent study consistency", 30 if questions_per_day > DAILY_QUESTION_TARGET else -20),
        PredictionFactor("Accuracy trend", 25 if accuracy_trend > 0 else -25),
        PredictionFactor("Score velocity", 35 if slope > 0 else -30),
    )
    recommendations: list[str] = []
    if slope <= 0:
        recommendations.append("Change your study approach to get scores rising again")
    if questions_per_day < DAILY_QUESTION_TARGET:
        recommendations.append("Solve at least 20 questions a day")
    if average_accuracy is not None and average_accuracy < ACCURACY_TARGET:
        recommendations.append("Review core concepts to lift your accuracy")

    return ScorePrediction(
        target_days=target_days,
        predicted_score=predicted,
        lower_bound=round(_clamp_score(predicted - std_dev), 1),
        upper_bound=round(_clamp_score(predicted + std_dev), 1),
        probability=0.7 if slope > 0 else 0.4,
        based_on="linear_regression",
        factors=factors,
        recommendations=tuple(recommendations),
    )


# ── Peers ─────────────────────────────────────────────────────────────────────


def compare_with_peers(user_score: int, peer_scores: Sequence[int]) -> PeerComparison:
    """Percentile = share of other learners scoring strictly lower, × 100."""

    peers = [score for score in peer_scores if score > 0]
    if not peers:
        return PeerComparison(
            user_score=user_score,
            percentile=50.0,
            average_score=float(user_score),
            similar_learners=0,
            total_learners=0,
            distribution=tuple(ScoreRange(label, 0, 0.0) for label, _, _ in PEER_RANGES),
        )

    below = sum(1 for score in peers if score < user_score)
    distribution = []
    for label, low, high in PEER_RANGES:
        count = sum(1 for score in peers if low <= score <= high)
        distribution.append(ScoreRange(label, count, round(count / len(peers) * 100, 1)))
    return PeerComparison(
        user_score=user_score,
        percentile=round(below / len(peers) * 100, 1),
        average_score=round(sum(peers) / len(peers), 1),
        similar_learners=sum(1 for score in peers if abs(score - user_score) <= SIMILAR_SCORE_BAND),
        total_learners=len(peers),
        distribution=tuple(distribution),
    )


# ── Goals and milestones ──────────────────────────────────────────────────────


def goal_progress(goal: Goal, score: int, velocity: LearningVelocity, today: date) -> GoalProgress:
    """On track when the weekly score velocity, spread over the days left, covers the gap."""

    days_remaining = max(0, (goal.target_date - today).days)
    gap = max(0, goal.target_score - score)
    daily_velocity = velocity.score_velocity / 7
    estimated: int | None
    if gap == 0:
        estimated = 0
    elif daily_velocity > 0:
        estimated = math.ceil(gap / daily_velocity)
    else:
        estimated = None
    return GoalProgress(
        target_score=goal.target_score,
        target_date=goal.target_date,
        current_score=score,
        days_remaining=days_remaining,
        required_daily_gain=round(gap / days_remaining, 2) if days_remaining else float(gap),
        progress_pct=round(min(100.0, score / goal.target_score * 100), 1),
        on_track=gap == 0 or daily_velocity * days_remaining >= gap,
        estimated_days_to_goal=estimated,
    )


def reached_milestones(
    *,
    score: int | None,
    streak: int,
    questions: int,
    study_hours: float,
) -> list[tuple[str, int]]:
    """Every (kind, threshold) pair the learner has crossed.

    ``score`` is None until the learner has a completed attempt; score
    milestones are skipped until then.
    """
    measures = {"score": score, "streak": streak, "questions": questions, "time": study_hours}
    return [
        (kind, threshold)
        for kind, thresholds in MILESTONE_THRESHOLDS.items()
        if measures[kind] is not None
        for threshold in thresholds
        if measures[kind] >= threshold
    ]


def check_milestones(
    user_id: str,
    *,
    score: int | None,
    streak: int,
    questions: int,
    study_hours: float,
    now: datetime | None = None,
) -> list[Milestone]:
    """Log newly crossed thresholds; repeated checks never duplicate a (kind, value)."""
    achieved_at = now_iso(now)
    new: list[Milestone] = []
    for kind, value in reached_milestones(
        score=score, streak=streak, questions=questions, study_hours=study_hours
    ):
        label = MILESTONE_LABELS[kind].format(value=value)
        if record_milestone(user_id, kind, value, label, achieved_at):
            new.append(Milestone(kind=kind, value=value, label=label, achieved_at=achieved_at))
            logger.info("Milestone for %s: %s", user_id, label)
    return new


# ── Refresh ───────────────────────────────────────────────────────────────────


def _tracked_goal(profile: LearnerProfile, progress: GoalProgress | None) -> LearnerProfile:
    if profile.goal is None or progress is None:
        return profile
    goal = replace(
        profile.goal,
        required_daily_gain=progress.required_daily_gain,
        progress_pct=progress.progress_pct,
    )
    if goal == profile.goal:
        return profile
    return save_profile(replace(profile, goal=goal))


def refresh(user_id: str, *, target_days: int = 30, now: datetime | None = None) -> AnalyticsSnapshot:
    """Recompute the learner's analytics snapshot from stored attempts and profile."""

    moment = now or datetime.now(timezone.utc)
    today = moment.date()
    profile = get_or_create_profile(user_id)
    history = profile.history

    trend = build_trend(exam_db.completed_scores(user_id, limit=TREND_LIMIT))
    scores = [point.score for point in trend]
    latest = scores[-1] if scores else current_score(profile)
    change_30 = score_change(trend, 30, today)
    change_90 = score_change(trend, 90, today)

    sections = section_performance(history)
    distribution = study_distribution(history)
    busiest = max(distribution, key=lambda day: day.hours)
    velocity = learning_velocity(history, change_30, moment)
    streak = study_streak(history, today)
    accuracy = round(_accuracy(history), 1)

    peers = exam_db.latest_scores_by_user()
    peers.pop(user_id, None)
    comparison = compare_with_peers(latest, list(peers.values()))

    progress = goal_progress(profile.goal, latest, velocity, today) if profile.goal else None
    profile = _tracked_goal(profile, progress)
    prediction = predict_score(
        trend, target_days, velocity=velocity, average_accuracy=accuracy, current=latest
    )

    check_milestones(
        user_id,
        score=scores[-1] if scores else None,
        streak=streak,
        questions=profile.questions_answered,
        study_hours=profile.study_seconds / 3600,
        now=moment,
    )
    milestones = tuple(Milestone(**row) for row in list_milestones(user_id))

    return AnalyticsSnapshot(
        user_id=user_id,
        trend=trend,
        current_score=latest,
        highest_score=max(scores) if scores else latest,
        lowest_score=min(scores) if scores else latest,
        change_30_days=change_30,
        change_90_days=change_90,
        sections=sections,
        strongest_section=sections[0].section if sections else None,
        weakest_section=sections[-1].section if sections else None,
        total_questions=profile.questions_answered,
        total_study_minutes=round(profile.study_seconds / 60),
        average_accuracy=accuracy,
        study_distribution=distribution,
        most_productive_day=busiest.weekday if busiest.hours > 0 else None,
        velocity=velocity,
        study_streak=streak,
        peers=comparison,
        goal=progress,
        prediction=prediction,
        milestones=milestones,
        patterns=profile.patterns,
        calculated_at=now_iso(moment),
    )


# ── Dashboard payload ─────────────────────────────────────────────────────────


def projection(snapshot: AnalyticsSnapshot, step_days: int = 7) -> list[dict[str, Any]]:
    """Weekly points interpolated from the latest score toward the predicted score."""
    if not snapshot.trend:
        return []
    last_day = snapshot.trend[-1].day
    horizon = snapshot.prediction.target_days
    start = snapshot.current_score
    gain = snapshot.prediction.predicted_score - start
    return [
        {
            "date": (last_day + timedelta(days=offset)).isoformat(),
            "score": round(start + gain * offset / horizon),
        }
        for offset in range(1, horizon + 1, step_days)
    ]


def insights(snapshot: AnalyticsSnapshot, profile: LearnerProfile) -> dict[str, list[str]]:
    strengths: list[str] = []
    weaknesses: list[str] = []
    opportunities: list[str] = []
    recommendations: list[str] = []

    for performance in snapshot.sections:
        if performance.accuracy >= 80:
            strengths.append(f"{performance.section.title()} accuracy is {performance.accuracy:.1f}%")
        elif performance.accuracy < 60:
            weaknesses.append(f"{performance.section.title()} accuracy is only {performance.accuracy:.1f}%")
        if performance.improvement > 5:
            strengths.append(f"{performance.section.title()} improved by {performance.improvement:.1f} points")
    for topic in profile.weak_topics[:3]:
        weaknesses.append(f"{topic.topic} ({topic.section}) error rate {topic.error_rate * 100:.0f}%")

    if snapshot.velocity.accuracy_trend > 0:
        opportunities.append("Accuracy is trending up this week; keep the momentum")
    if snapshot.peers.percentile < 50 and snapshot.peers.total_learners:
        opportunities.append("A few more points would move you above the median learner")
    if snapshot.patterns.consistency_score < 50:
        opportunities.append("Studying on more days would raise your consistency score")

    if snapshot.weakest_section:
        recommendations.append(f"Spend extra sessions on {snapshot.weakest_section}")
    if snapshot.velocity.questions_per_day < DAILY_QUESTION_TARGET:
        recommendations.append("Aim for 20+ questions per day")
    recommendations.append(f"Study in the {snapshot.patterns.optimal_study_time} when you perform best")
    return {
        "strengths": strengths,
        "weaknesses": weaknesses,
        "opportunities": opportunities,
        "recommendations": recommendations,
    }


def dashboard(user_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    """Everything the analytics screen shows, from one fresh refresh."""

    snapshot = refresh(user_id, now=now)
    today = (now or datetime.now(timezone.utc)).date()
    recent_trend = [p for p in snapshot.trend if p.day >= today - timedelta(days=30)]
    return {
        "overview": {
            "current_score": snapshot.current_score,
            "highest_score": snapshot.highest_score,
            "lowest_score": snapshot.lowest_score,
            "score_change_30_days": snapshot.change_30_days,
            "score_change_90_days": snapshot.change_90_days,
            "total_study_minutes": snapshot.total_study_minutes,
            "total_questions": snapshot.total_questions,
            "average_accuracy": snapshot.average_accuracy,
            "study_streak": snapshot.study_streak,
        },
        "trends": {
            "actual": [{"date": p.day.isoformat(), "score": p.score} for p in recent_trend],
            "projected": projection(snapshot),
        },
        "sections": snapshot.sections,
        "peers": snapshot.peers,
        "goal": snapshot.goal,
        "patterns": {
            "weekday_distribution": snapshot.study_distribution,
            "most_productive_day": snapshot.most_productive_day,
            "optimal_study_time": snapshot.patterns.optimal_study_time,
            "learning_speed": snapshot.patterns.learning_speed,
            "consistency_score": snapshot.patterns.consistency_score,
            "velocity": snapshot.velocity,
        },
        "prediction": snapshot.prediction,
        "milestones": list(reversed(snapshot.milestones[-10:])),
        "calculated_at": snapshot.calculated_at,
    }


__all__ = [
    "AnalyticsSnapshot",
    "GoalProgress",
    "LearningVelocity",
    "Milestone",
    "PeerComparison",
    "ScorePrediction",
    "SectionPerformance",
    "StudyDay",
    "TrendPoint",
    "build_trend",
    "check_milestones",
    "compare_with_peers",
    "dashboard",
    "fit_linear",
    "goal_progress",
    "insights",
    "learning_velocity",
    "predict_score",
    "projection",
    "reached_milestones",
    "refresh",
    "score_change",
    "section_performance",
    "study_distribution",
    "study_streak",
]
