from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Mapping, cast

from .errors import ValidationFailure

Section = Literal["listening", "vocabulary", "grammar", "reading"]
QuestionType = Literal[
    "listening_short_conversation",
    "listening_long_conversation",
    "listening_short_talk",
    "listening_long_talk",
    "vocabulary_definition",
    "vocabulary_context",
    "vocabulary_synonym",
    "grammar_error_identification",
    "grammar_blank_filling",
    "grammar_sentence_completion",
    "reading_main_idea",
    "reading_detail",
    "reading_inference",
    "reading_vocabulary_in_context",
    "reading_organization",
]
ReviewStatus = Literal["pending", "approved", "rejected", "needs_revision"]
QuestionSource = Literal["official", "manual", "import", "ai"]
OptionKey = Literal["A", "B", "C", "D"]

ExamType = Literal["official_simulation", "section_practice", "micro_session"]
ExamDifficulty = Literal["beginner", "intermediate", "advanced", "expert", "adaptive"]
ExamStatus = Literal["not_started", "in_progress", "paused", "completed", "abandoned", "expired"]
ActivityKind = Literal["tab_switch", "fullscreen_exit"]

TimeOfDay = Literal["morning", "afternoon", "evening", "night"]
LearningSpeed = Literal["slow", "average", "fast"]

SECTIONS: tuple[Section, ...] = ("listening", "vocabulary", "grammar", "reading")
QUESTION_TYPES: tuple[QuestionType, ...] = (
    "listening_short_conversation",
    "listening_long_conversation",
    "listening_short_talk",
    "listening_long_talk",
    "vocabulary_definition",
    "vocabulary_context",
    "vocabulary_synonym",
    "grammar_error_identification",
    "grammar_blank_filling",
    "grammar_sentence_completion",
    "reading_main_idea",
    "reading_detail",
    "reading_inference",
    "reading_vocabulary_in_context",
    "reading_organization",
)
REVIEW_STATUSES: tuple[ReviewStatus, ...] = ("pending", "approved", "rejected", "needs_revision")
IMPORT_SOURCES: tuple[QuestionSource, ...] = ("official", "manual", "import")
OPTION_KEYS: tuple[OptionKey, ...] = ("A", "B", "C", "D")
EXAM_TYPES: tuple[ExamType, ...] = ("official_simulation", "section_practice", "micro_session")
EXAM_DIFFICULTIES: tuple[ExamDifficulty, ...] = (
    "beginner",
    "intermediate",
    "advanced",
    "expert",
    "adaptive",
)
TERMINAL_STATUSES: tuple[ExamStatus, ...] = ("completed", "abandoned", "expired")
ACTIVITY_KINDS: tuple[ActivityKind, ...] = ("tab_switch", "fullscreen_exit")

DIFFICULTY_MIN = 1
DIFFICULTY_MAX = 5


# ── Question bank ─────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class LevelPerformance:
    level: str
    correct_rate: float
    sample_size: int


@dataclass(slots=True, frozen=True)
class QuestionStats:
    """3PL item parameters plus usage counters."""

    difficulty: float = 0.0
    discrimination: float = 1.0
    guessing: float = 0.25
    times_used: int = 0
    times_correct: int = 0
    times_incorrect: int = 0
    average_time_spent: float = 0.0
    performance_by_level: tuple[LevelPerformance, ...] = ()


@dataclass(slots=True, frozen=True)
class Question:
    id: int
    question_type: QuestionType
    section: Section
    difficulty_level: int
    question_text: str
    options: Mapping[str, str]
    correct_answer: OptionKey
    explanation: str = ""
    topic: str = ""
    tags: tuple[str, ...] = ()
    audio: Mapping[str, Any] | None = None
    passage: Mapping[str, Any] | None = None
    image_url: str | None = None
    is_official: bool = False
    source: QuestionSource = "manual"
    review_status: ReviewStatus = "pending"
    quality_score: int = 70
    generation: Mapping[str, Any] | None = None
    stats: QuestionStats = field(default_factory=QuestionStats)
    created_at: str = ""
    updated_at: str = ""


@dataclass(slots=True)
class QuestionQuery:
    """Named search facets; unset fields do not filter."""

    section: Section | None = None
    question_type: QuestionType | None = None
    difficulty: tuple[int, ...] = ()
    topic: str | None = None
    tags: tuple[str, ...] = ()
    official_only: bool = False
    review_status: ReviewStatus | None = None
    min_quality: int | None = None
    exclude_ids: frozenset[int] = frozenset()


@dataclass(slots=True)
class AdaptiveCriteria:
    section: Section
    ability: float
    target_score: int = 450
    weak_topics: tuple[str, ...] = ()
    recent_question_ids: tuple[int, ...] = ()


# ── Learner profile ───────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    section: Section
    question_id: int
    is_correct: bool
    time_spent: int
    difficulty: float
    answered_at: datetime


@dataclass(slots=True, frozen=True)
class WeakTopic:
    section: Section
    topic: str
    error_rate: float
    attempts: int


@dataclass(slots=True, frozen=True)
class StrongTopic:
    section: Section
    topic: str
    success_rate: float
    attempts: int


@dataclass(slots=True, frozen=True)
class LearningPatterns:
    optimal_study_time: TimeOfDay = "evening"
    average_session_minutes: int = 30
    preferred_difficulty: int = 3
    learning_speed: LearningSpeed = "average"
    consistency_score: float = 0.0


@dataclass(slots=True, frozen=True)
class Goal:
    target_score: int
    target_date: date
    required_daily_gain: float = 0.0
    progress_pct: float = 0.0


@dataclass(slots=True, frozen=True)
class LearnerProfile:
    user_id: str
    abilities: Mapping[Section, float]
    overall_ability: float = 0.0
    history: tuple[HistoryEntry, ...] = ()
    weak_topics: tuple[WeakTopic, ...] = ()
    strong_topics: tuple[StrongTopic, ...] = ()
    patterns: LearningPatterns = field(default_factory=LearningPatterns)
    goal: Goal | None = None
    questions_answered: int = 0
    study_seconds: int = 0
    updated_at: str = ""


# ── Exams ─────────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class SectionConfig:
    section: Section
    question_count: int
    time_limit: int


@dataclass(slots=True, frozen=True)
class ExamRules:
    shuffle_questions: bool = True
    shuffle_options: bool = True
    allow_pause: bool = True
    allow_review: bool = True
    show_correct_answers: bool = True
    show_explanations: bool = True
    auto_submit: bool = True
    max_pause_minutes: int | None = None


@dataclass(slots=True, frozen=True)
class ExamConfig:
    id: int
    name: str
    exam_type: ExamType
    difficulty: ExamDifficulty
    sections: tuple[SectionConfig, ...]
    total_time_limit: int
    rules: ExamRules
    is_official_format: bool = False
    is_active: bool = True
    usage_count: int = 0
    average_score: float = 0.0
    average_completion_time: float = 0.0
    created_at: str = ""


@dataclass(slots=True, frozen=True)
class UserAnswer:
    question_id: int
    section: Section
    answer: str
    is_correct: bool
    time_spent: int
    answered_at: str


@dataclass(slots=True, frozen=True)
class SectionResult:
    section: Section
    correct: int
    total: int
    score: int
    accuracy: float
    time_spent: int


@dataclass(slots=True, frozen=True)
class ExamResult:
    total_score: int
    sections: tuple[SectionResult, ...]
    accuracy: float
    total_time_spent: int
    average_time_per_question: float
    final_ability: float
    estimated_level: str
    compared_to_average: int
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ExamAttempt:
    id: int
    user_id: str
    config_id: int
    exam_type: ExamType
    status: ExamStatus
    question_ids: tuple[int, ...] = ()
    answers: tuple[UserAnswer, ...] = ()
    current_index: int = 0
    started_at: str | None = None
    paused_at: str | None = None
    completed_at: str | None = None
    expires_at: str | None = None
    paused_seconds: int = 0
    tab_switches: int = 0
    fullscreen_exits: int = 0
    suspicious: bool = False
    result: ExamResult | None = None
    created_at: str = ""


def _ensure_choice(value: str, choices: tuple[str, ...], label: str) -> str:
    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise ValidationFailure(f"Unsupported {label}: {value}")
    return normalized


def ensure_section(value: str) -> Section:
    return cast(Section, _ensure_choice(value, SECTIONS, "section"))


def ensure_question_type(value: str) -> QuestionType:
    return cast(QuestionType, _ensure_choice(value, QUESTION_TYPES, "question type"))


def ensure_review_status(value: str) -> ReviewStatus:
    return cast(ReviewStatus, _ensure_choice(value, REVIEW_STATUSES, "review status"))


def ensure_exam_type(value: str) -> ExamType:
    return cast(ExamType, _ensure_choice(value, EXAM_TYPES, "exam type"))


def ensure_exam_difficulty(value: str) -> ExamDifficulty:
    return cast(ExamDifficulty, _ensure_choice(value, EXAM_DIFFICULTIES, "exam difficulty"))


def ensure_activity_kind(value: str) -> ActivityKind:
    return cast(ActivityKind, _ensure_choice(value, ACTIVITY_KINDS, "activity kind"))


def ensure_difficulty_level(value: Any) -> int:
    """Validate a 1-5 difficulty tier."""

    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f"Difficulty level must be an integer: {value!r}") from None
    if not DIFFICULTY_MIN <= level <= DIFFICULTY_MAX:
        raise ValidationFailure(f"Difficulty level out of range 1-5: {level}")
    return level


__all__ = [
    "ACTIVITY_KINDS",
    "ActivityKind",
    "AdaptiveCriteria",
    "DIFFICULTY_MAX",
    "DIFFICULTY_MIN",
    "EXAM_DIFFICULTIES",
    "EXAM_TYPES",
    "ExamAttempt",
    "ExamConfig",
    "ExamDifficulty",
    "ExamResult",
    "ExamRules",
    "ExamStatus",
    "ExamType",
    "Goal",
    "HistoryEntry",
    "IMPORT_SOURCES",
    "LearnerProfile",
    "LearningPatterns",
    "LearningSpeed",
    "LevelPerformance",
    "OPTION_KEYS",
    "OptionKey",
    "QUESTION_TYPES",
    "Question",
    "QuestionQuery",
    "QuestionSource",
    "QuestionStats",
    "QuestionType",
    "REVIEW_STATUSES",
    "ReviewStatus",
    "SECTIONS",
    "Section",
    "SectionConfig",
    "SectionResult",
    "StrongTopic",
    "TERMINAL_STATUSES",
    "TimeOfDay",
    "UserAnswer",
    "WeakTopic",
    "ensure_activity_kind",
    "ensure_difficulty_level",
    "ensure_exam_difficulty",
    "ensure_exam_type",
    "ensure_question_type",
    "ensure_review_status",
    "ensure_section",
]
