"""Exam scoring: section scores on the 150-point scale, bands and feedback text."""

from __future__ import annotations

import math
from typing import Mapping, Sequence

from .models import ExamConfig, ExamResult, Section, SectionResult, UserAnswer

SECTION_MAX_SCORE = 150
FULL_EXAM_MAX_SCORE = 600
STRENGTH_ACCURACY = 80.0
WEAKNESS_ACCURACY = 60.0
AVERAGE_SCORE = 300
STUDY_TIME_THRESHOLD = 400

PROFICIENCY_BANDS: tuple[tuple[int, str], ...] = (
    (200, "A1-A2 (Elementary)"),
    (300, "A2-B1 (Pre-Intermediate)"),
    (400, "B1-B2 (Intermediate)"),
    (500, "B2-C1 (Upper Intermediate)"),
)
TOP_BAND = "C1-C2 (Advanced)"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def section_score(correct: int, total: int) -> int:
    """round(correct / total × 150); an empty section scores 0."""
    if total <= 0:
        return 0
    return round_half_up(correct / total * SECTION_MAX_SCORE)


def proficiency_band(total_score: int) -> str:
    for ceiling, label in PROFICIENCY_BANDS:
        if total_score < ceiling:
            return label
    return TOP_BAND


def scaled_score(result: ExamResult) -> int:
    """Total score restated on the 0-600 scale of a full four-section exam."""
    if not result.sections:
        return 0
    possible = SECTION_MAX_SCORE * len(result.sections)
    return round_half_up(result.total_score / possible * FULL_EXAM_MAX_SCORE)


def score_attempt(
    answers: Sequence[UserAnswer],
    config: ExamConfig,
    section_totals: Mapping[Section, int] | None = None,
) -> ExamResult:
    """Score persisted answers against the config.

    ``section_totals`` overrides the configured per-section question counts with
    the number of questions actually assigned to the attempt.
    """

    sections: list[SectionResult] = []
    strengths: list[str] = []
    weaknesses: list[str] = []
    for section_config in config.sections:
        section = section_config.section
        total = section_config.question_count
        if section_totals is not None:
            total = section_totals.get(section, total)
        section_answers = [a for a in answers if a.section == section]
        correct = sum(1 for a in section_answers if a.is_correct)
        accuracy = correct / total * 100 if total > 0 else 0.0
        sections.append(
            SectionResult(
                section=section,
                correct=correct,
                total=total,
                score=section_score(correct, total),
                accuracy=round(accuracy, 1),
                time_spent=sum(a.time_spent for a in section_answers),
            )
        )
        if total <= 0:
            continue
        if accuracy >= STRENGTH_ACCURACY:
            strengths.append(f"Strong performance in {section} ({accuracy:.1f}%)")
        elif accuracy < WEAKNESS_ACCURACY:
            weaknesses.append(f"Needs improvement in {section} ({accuracy:.1f}%)")

    total_score = sum(s.score for s in sections)
    question_total = sum(s.total for s in sections)
    correct_total = sum(s.correct for s in sections)
    time_total = sum(a.time_spent for a in answers)

    recommendations: list[str] = []
    if weaknesses:
        recommendations.append("Focus on weak areas with targeted practice")
        recommendations.append("Review explanations for incorrect answers")
    if total_score < STUDY_TIME_THRESHOLD:
        recommendations.append("Increase daily study time to 60+ minutes")
    recommendations.append("Take regular mock exams to track progress")

    return ExamResult(
        total_score=total_score,
        sections=tuple(sections),
        accuracy=round(correct_total / question_total * 100, 1) if question_total else 0.0,
        total_time_spent=time_total,
        average_time_per_question=round(time_total / len(answers), 1) if answers else 0.0,
        final_ability=(total_score - AVERAGE_SCORE) / 100,
        estimated_level=proficiency_band(total_score),
        compared_to_average=total_score - AVERAGE_SCORE,
        strengths=tuple(strengths),
        weaknesses=tuple(weaknesses),
        recommendations=tuple(recommendations),
    )


__all__ = [
    "PROFICIENCY_BANDS",
    "SECTION_MAX_SCORE",
    "proficiency_band",
    "round_half_up",
    "scaled_score",
    "score_attempt",
    "section_score",
]
