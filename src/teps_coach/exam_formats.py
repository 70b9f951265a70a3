"""Exam layout catalogue loaded from data/exam_formats.yaml."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationFailure
from .models import ExamDifficulty, ExamRules, ExamType, SectionConfig, ensure_section

PACKAGE_ROOT = Path(__file__).resolve().parent
FORMATS_FILE = PACKAGE_ROOT / "data" / "exam_formats.yaml"

_format_cache: dict[str, Any] | None = None


def load_formats(path: Path | None = None) -> dict[str, Any]:
    """Parse the YAML catalogue. Cached in memory."""
    global _format_cache
    if _format_cache is not None and path is None:
        return _format_cache

    with open(path or FORMATS_FILE, encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    if path is None:
        _format_cache = raw
    return raw


def clear_cache() -> None:
    """Clear the in-memory format cache."""
    global _format_cache
    _format_cache = None


def exam_format(exam_type: ExamType) -> dict[str, Any]:
    formats = load_formats()
    if exam_type not in formats:
        raise ValidationFailure(f"No layout defined for exam type {exam_type}")
    return formats[exam_type]


def rules_for(exam_type: ExamType) -> ExamRules:
    return ExamRules(**exam_format(exam_type).get("rules", {}))


def official_sections() -> tuple[SectionConfig, ...]:
    return tuple(
        SectionConfig(
            section=ensure_section(item["section"]),
            question_count=int(item["question_count"]),
            time_limit=int(item["time_limit"]),
        )
        for item in exam_format("official_simulation")["sections"]
    )


def expiry_hours(exam_type: ExamType) -> int:
    return int(exam_format(exam_type).get("expires_hours", 24))


def micro_durations() -> tuple[int, ...]:
    return tuple(int(m) for m in exam_format("micro_session")["durations"])


def selection_settings() -> tuple[int, int]:
    """(minimum quality score, oversampling factor) for non-adaptive selection."""
    settings = load_formats().get("selection", {})
    return int(settings.get("min_quality", 70)), int(settings.get("oversample", 2))


def difficulty_levels(difficulty: ExamDifficulty) -> tuple[int, ...]:
    bands = load_formats()["difficulty_bands"]
    return tuple(int(level) for level in bands.get(difficulty, bands["adaptive"]))


def ability_levels(theta: float) -> tuple[int, ...]:
    """Difficulty tiers suited to a section ability θ."""
    for band in load_formats()["ability_bands"]:
        ceiling = band.get("max_theta")
        if ceiling is None or theta <= float(ceiling):
            return tuple(int(level) for level in band["levels"])
    return (3,)


__all__ = [
    "FORMATS_FILE",
    "ability_levels",
    "clear_cache",
    "difficulty_levels",
    "exam_format",
    "expiry_hours",
    "load_formats",
    "micro_durations",
    "official_sections",
    "rules_for",
    "selection_settings",
]
