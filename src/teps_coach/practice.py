"""Free practice outside exams: adaptive next question, answer handling, suggested sets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

import markdown

from .errors import NotFoundError, ValidationFailure
from .models import OPTION_KEYS, AdaptiveCriteria, LearnerProfile, Question
from .profile import apply_response, current_score, recent_question_ids, weak_topic_names
from .profile_db import get_or_create_profile, save_profile
from .question_bank import get_question, record_question_usage, search, select_adaptive
from .study_plan import Recommendation, generate_recommendations, next_target_section

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SCORE = 450


@dataclass(slots=True)
class PracticeResult:
    is_correct: bool
    correct_answer: str
    explanation_html: str
    section_ability: float
    overall_ability: float
    estimated_score: int


@dataclass(slots=True)
class SuggestedSet:
    recommendation: Recommendation
    questions: list[Question]


def next_practice_question(user_id: str, *, target_score: int = DEFAULT_TARGET_SCORE) -> Question:
    """Most informative unseen question for the learner's current target section."""

    profile = get_or_create_profile(user_id)
    section = next_target_section(profile)
    criteria = AdaptiveCriteria(
        section=section,
        ability=profile.abilities.get(section, 0.0),
        target_score=target_score,
        weak_topics=weak_topic_names(profile, section),
        recent_question_ids=recent_question_ids(profile),
    )
    picked = select_adaptive(criteria, 1)
    if not picked:
        raise NotFoundError(f"No approved {section} questions available")
    return picked[0]


def answer_practice_question(
    user_id: str,
    question_id: int,
    answer: str,
    time_spent: int,
    *,
    now: datetime | None = None,
) -> tuple[PracticeResult, LearnerProfile]:
    """Check an answer, then update the question's statistics and the learner profile."""

    chosen = answer.strip().upper()
    if chosen not in OPTION_KEYS:
        raise ValidationFailure("Answer must be one of A, B, C, D")
    if time_spent < 0:
        raise ValidationFailure("Time spent cannot be negative")

    question = get_question(question_id)
    is_correct = chosen == question.correct_answer
    profile = get_or_create_profile(user_id)
    record_question_usage(question.id, is_correct, time_spent, current_score(profile))
    profile = save_profile(
        apply_response(profile, question, is_correct, time_spent, now=now or datetime.now(timezone.utc))
    )
    logger.debug("Practice answer %s on question %s: %s", user_id, question_id, is_correct)

    return (
        PracticeResult(
            is_correct=is_correct,
            correct_answer=question.correct_answer,
            explanation_html=markdown.markdown(question.explanation) if question.explanation else "",
            section_ability=round(profile.abilities[question.section], 3),
            overall_ability=round(profile.overall_ability, 3),
            estimated_score=current_score(profile),
        ),
        profile,
    )


def suggested_sets(user_id: str) -> list[SuggestedSet]:
    """Resolve each recommendation's query against the question bank."""
    profile = get_or_create_profile(user_id)
    recent = frozenset(recent_question_ids(profile))
    sets: list[SuggestedSet] = []
    for recommendation in generate_recommendations(profile):
        query = replace(recommendation.query, exclude_ids=recent)
        questions, _ = search(query, limit=recommendation.limit)
        sets.append(SuggestedSet(recommendation=recommendation, questions=questions))
    return sets


__all__ = [
    "PracticeResult",
    "SuggestedSet",
    "answer_practice_question",
    "next_practice_question",
    "suggested_sets",
]
