"""Weekly study plans and topic-level recommendations derived from a learner profile."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .errors import ValidationFailure
from .models import SECTIONS, LearnerProfile, QuestionQuery, Section
from .profile import current_score

Priority = Literal["high", "medium", "low"]

DEFAULT_WEEKS = 12
MAX_WEEKS = 52
MILESTONE_EVERY = 4
WEEKDAYS: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
WEEKDAY_LOAD = (40, 60)   # questions, minutes
SUNDAY_LOAD = (20, 30)
TOPICS_PER_SESSION = 3
REVIEW_LOOKBACK = 50


@dataclass(slots=True, frozen=True)
class DailySession:
    day: str
    sections: tuple[Section, ...]
    topics: tuple[str, ...]
    question_count: int
    minutes: int


@dataclass(slots=True, frozen=True)
class WeeklyPlan:
    week: int
    focus_sections: tuple[Section, ...]
    target_score: int
    sessions: tuple[DailySession, ...]


@dataclass(slots=True, frozen=True)
class PlanMilestone:
    week: int
    target_score: int
    description: str


@dataclass(slots=True, frozen=True)
class StudyPlan:
    current_score: int
    goal_score: int
    weeks: int
    weekly_increase: float
    weekly_plans: tuple[WeeklyPlan, ...]
    milestones: tuple[PlanMilestone, ...]


@dataclass(slots=True, frozen=True)
class Recommendation:
    priority: Priority
    kind: str
    section: Section
    topic: str | None
    reason: str
    query: QuestionQuery
    limit: int


def sections_by_ability(profile: LearnerProfile) -> list[Section]:
    """Sections ordered weakest first."""
    return sorted(SECTIONS, key=lambda section: profile.abilities.get(section, 0.0))


def focus_sections(profile: LearnerProfile, week: int) -> tuple[Section, ...]:
    ordered = sections_by_ability(profile)
    if week % 3 == 0:
        return tuple(SECTIONS)
    if week % 2 == 0:
        return tuple(ordered[:2])
    return tuple(ordered[-2:])


def _daily_sessions(profile: LearnerProfile, focus: tuple[Section, ...]) -> tuple[DailySession, ...]:
    sessions: list[DailySession] = []
    for day_index, day in enumerate(WEEKDAYS):
        sections = tuple(s for i, s in enumerate(focus) if (i + day_index) % 2 == 0)
        topics = tuple(t.topic for t in profile.weak_topics if t.section in sections)[:TOPICS_PER_SESSION]
        questions, minutes = SUNDAY_LOAD if day == "Sunday" else WEEKDAY_LOAD
        sessions.append(
            DailySession(day=day, sections=sections, topics=topics, question_count=questions, minutes=minutes)
        )
    return tuple(sessions)


def generate_study_plan(
    profile: LearnerProfile,
    goal_score: int,
    weeks: int = DEFAULT_WEEKS,
) -> StudyPlan:
    """Spread the gap to ``goal_score`` evenly over ``weeks`` weeks of sessions."""

    if not 0 < goal_score <= 600:
        raise ValidationFailure(f"Goal score must be between 1 and 600, got {goal_score}")
    if not 1 <= weeks <= MAX_WEEKS:
        raise ValidationFailure(f"Weeks must be between 1 and {MAX_WEEKS}, got {weeks}")

    score = current_score(profile)
    weekly_increase = (goal_score - score) / weeks

    plans: list[WeeklyPlan] = []
    milestones: list[PlanMilestone] = []
    for week in range(1, weeks + 1):
        target = max(0, min(600, round(score + weekly_increase * week)))
        focus = focus_sections(profile, week)
        plans.append(
            WeeklyPlan(
                week=week,
                focus_sections=focus,
                target_score=target,
                sessions=_daily_sessions(profile, focus),
            )
        )
        if week % MILESTONE_EVERY == 0:
            milestones.append(
                PlanMilestone(week=week, target_score=target, description=f"Reach {target} points by week {week}")
            )

    return StudyPlan(
        current_score=score,
        goal_score=goal_score,
        weeks=weeks,
        weekly_increase=round(weekly_increase, 1),
        weekly_plans=tuple(plans),
        milestones=tuple(milestones),
    )


def generate_recommendations(profile: LearnerProfile) -> list[Recommendation]:
    """Weakest topic first, then a stretch on the strongest, then a neglected section."""

    recommendations: list[Recommendation] = []
    if profile.weak_topics:
        weak = profile.weak_topics[0]
        recommendations.append(
            Recommendation(
                priority="high",
                kind="weak_topic",
                section=weak.section,
                topic=weak.topic,
                reason=f"Error rate {weak.error_rate * 100:.0f}% over {weak.attempts} attempts",
                query=QuestionQuery(section=weak.section, topic=weak.topic, difficulty=(2, 3)),
                limit=10,
            )
        )
    if profile.strong_topics:
        strong = profile.strong_topics[0]
        recommendations.append(
            Recommendation(
                priority="medium",
                kind="challenge",
                section=strong.section,
                topic=strong.topic,
                reason=f"Success rate {strong.success_rate * 100:.0f}%; try harder questions",
                query=QuestionQuery(section=strong.section, topic=strong.topic, difficulty=(4, 5)),
                limit=5,
            )
        )

    recent_sections = {entry.section for entry in profile.history[-REVIEW_LOOKBACK:]}
    for section in SECTIONS:
        if section not in recent_sections:
            recommendations.append(
                Recommendation(
                    priority="low",
                    kind="review",
                    section=section,
                    topic=None,
                    reason=f"No {section} practice in your last {REVIEW_LOOKBACK} answers",
                    query=QuestionQuery(section=section),
                    limit=5,
                )
            )
            break
    return recommendations


def next_target_section(profile: LearnerProfile) -> Section:
    """Weakest topic's section, otherwise the section after the last one practised."""
    if profile.weak_topics:
        return profile.weak_topics[0].section
    if not profile.history:
        return SECTIONS[0]
    last = profile.history[-1].section
    return SECTIONS[(SECTIONS.index(last) + 1) % len(SECTIONS)]


__all__ = [
    "DailySession",
    "PlanMilestone",
    "Recommendation",
    "StudyPlan",
    "WeeklyPlan",
    "focus_sections",
    "generate_recommendations",
    "generate_study_plan",
    "next_target_section",
    "sections_by_ability",
]
