"""Question pool: CRUD, faceted search, adaptive ranking and bulk import."""

from __future__ import annotations

import logging
import math
import sqlite3
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Sequence

from .db import connect, dumps, loads, now_iso
from .errors import NotFoundError, ValidationFailure
from .irt import THETA_MAX, THETA_MIN, information_value, item_parameters, score_level
from .models import (
    IMPORT_SOURCES,
    OPTION_KEYS,
    AdaptiveCriteria,
    LevelPerformance,
    Question,
    QuestionQuery,
    QuestionStats,
    QuestionSource,
    ReviewStatus,
    ensure_difficulty_level,
    ensure_question_type,
    ensure_review_status,
    ensure_section,
)

logger = logging.getLogger(__name__)

RECENT_EXCLUSION = 50
WEAK_TOPIC_BOOST = 1.5
RECALIBRATE_AFTER = 10
MIN_LEVELS_FOR_DISCRIMINATION = 3
MIN_DISCRIMINATION = 0.1
MAX_DISCRIMINATION = 2.0

OFFICIAL_QUALITY = 95
DEFAULT_QUALITY = 70
REQUIRED_FIELDS: tuple[str, ...] = ("question_type", "section", "question_text", "correct_answer")


@dataclass(slots=True)
class ImportReport:
    imported: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    question_ids: list[int] = field(default_factory=list)


# ── Row conversion ────────────────────────────────────────────────────────────


def _stats_to_dict(stats: QuestionStats) -> dict[str, Any]:
    return {
        "difficulty": stats.difficulty,
        "discrimination": stats.discrimination,
        "guessing": stats.guessing,
        "times_used": stats.times_used,
        "times_correct": stats.times_correct,
        "times_incorrect": stats.times_incorrect,
        "average_time_spent": stats.average_time_spent,
        "performance_by_level": [
            {"level": p.level, "correct_rate": p.correct_rate, "sample_size": p.sample_size}
            for p in stats.performance_by_level
        ],
    }


def _stats_from_dict(data: Mapping[str, Any]) -> QuestionStats:
    return QuestionStats(
        difficulty=float(data.get("difficulty", 0.0)),
        discrimination=float(data.get("discrimination", 1.0)),
        guessing=float(data.get("guessing", 0.25)),
        times_used=int(data.get("times_used", 0)),
        times_correct=int(data.get("times_correct", 0)),
        times_incorrect=int(data.get("times_incorrect", 0)),
        average_time_spent=float(data.get("average_time_spent", 0.0)),
        performance_by_level=tuple(
            LevelPerformance(
                level=str(p["level"]),
                correct_rate=float(p["correct_rate"]),
                sample_size=int(p["sample_size"]),
            )
            for p in data.get("performance_by_level", [])
        ),
    )


def _row_to_question(row: sqlite3.Row) -> Question:
    return Question(
        id=int(row["id"]),
        question_type=row["question_type"],
        section=row["section"],
        difficulty_level=int(row["difficulty_level"]),
        question_text=row["question_text"],
        options=loads(row["options_json"], {}),
        correct_answer=row["correct_answer"],
        explanation=row["explanation"] or "",
        topic=row["topic"] or "",
        tags=tuple(loads(row["tags_json"], [])),
        audio=loads(row["audio_json"]),
        passage=loads(row["passage_json"]),
        image_url=row["image_url"],
        is_official=bool(row["is_official"]),
        source=row["source"],
        review_status=row["review_status"],
        quality_score=int(row["quality_score"]),
        generation=loads(row["generation_json"]),
        stats=_stats_from_dict(loads(row["stats_json"], {})),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ── Validation and CRUD ───────────────────────────────────────────────────────


def validate_question_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise an incoming question record or raise ValidationFailure."""

    missing = [name for name in REQUIRED_FIELDS if not record.get(name)]
    if missing:
        raise ValidationFailure(
            f"Missing required fields: {', '.join(missing)}",
            [f"missing field: {name}" for name in missing],
        )

    question_type = ensure_question_type(record["question_type"])
    section = ensure_section(record["section"])
    if not question_type.startswith(section):
        raise ValidationFailure(f"Question type {question_type} does not belong to section {section}")

    correct = str(record["correct_answer"]).strip().upper()
    if correct not in OPTION_KEYS:
        raise ValidationFailure(f"Correct answer must be one of A-D, got {record['correct_answer']!r}")

    options = record.get("options") or {}
    if not isinstance(options, Mapping):
        raise ValidationFailure("Options must be a mapping of A-D to text")
    options = {str(key).strip().upper(): str(value) for key, value in options.items()}
    unknown = sorted(set(options) - set(OPTION_KEYS))
    if unknown:
        raise ValidationFailure(f"Unknown option keys: {', '.join(unknown)}")
    if correct not in options:
        raise ValidationFailure(f"Options do not include the correct answer {correct}")

    tags = record.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, (list, tuple)):
        raise ValidationFailure("Tags must be a string or a list of strings")

    for name in ("audio", "passage"):
        value = record.get(name)
        if value is None:
            continue
        if not isinstance(value, Mapping):
            raise ValidationFailure(f"{name.capitalize()} must be an object")
        try:
            dumps(dict(value))
        except (TypeError, ValueError):
            raise ValidationFailure(f"{name.capitalize()} must contain only JSON values") from None

    irt = record.get("irt") or {}
    try:
        stats = QuestionStats(
            difficulty=max(THETA_MIN, min(THETA_MAX, float(irt.get("difficulty", 0.0)))),
            discrimination=max(
                MIN_DISCRIMINATION, min(MAX_DISCRIMINATION, float(irt.get("discrimination", 1.0)))
            ),
            guessing=max(0.0, min(0.25, float(irt.get("guessing", 0.25)))),
        )
    except (AttributeError, TypeError, ValueError):
        raise ValidationFailure("IRT parameters must be numbers") from None

    return {
        "question_type": question_type,
        "section": section,
        "difficulty_level": ensure_difficulty_level(record.get("difficulty_level", 3)),
        "question_text": str(record["question_text"]).strip(),
        "options": options,
        "correct_answer": correct,
        "explanation": str(record.get("explanation") or ""),
        "topic": str(record.get("topic") or "").strip(),
        "tags": [str(tag).strip() for tag in tags if str(tag).strip()],
        "audio": dict(record["audio"]) if record.get("audio") is not None else None,
        "passage": dict(record["passage"]) if record.get("passage") is not None else None,
        "image_url": record.get("image_url"),
        "stats": stats,
    }


def insert_question(
    record: Mapping[str, Any],
    *,
    source: QuestionSource = "manual",
    review_status: ReviewStatus = "pending",
    quality_score: int = DEFAULT_QUALITY,
    is_official: bool | None = None,
    generation: Mapping[str, Any] | None = None,
) -> Question:
    """Validate and store one question."""

    data = validate_question_record(record)
    official = bool(record.get("is_official", False)) if is_official is None else is_official
    timestamp = now_iso()
    with connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO questions (
                question_type, section, difficulty_level, question_text, options_json,
                correct_answer, explanation, topic, tags_json, audio_json, passage_json,
                image_url, is_official, source, review_status, quality_score,
                generation_json, stats_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["question_type"],
                data["section"],
                data["difficulty_level"],
                data["question_text"],
                dumps(data["options"]),
                data["correct_answer"],
                data["explanation"],
                data["topic"],
                dumps(data["tags"]),
                dumps(data["audio"]),
                dumps(data["passage"]),
                data["image_url"],
                int(official),
                source,
                review_status,
                int(quality_score),
                dumps(dict(generation) if generation else None),
                dumps(_stats_to_dict(data["stats"])),
                timestamp,
                timestamp,
            ),
        )
        question_id = int(cursor.lastrowid)
    return get_question(question_id)


def get_question(question_id: int) -> Question:
    with connect() as conn:
        row = conn.execute("SELECT * FROM questions WHERE id = ?", (question_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Question {question_id} not found")
    return _row_to_question(row)


def get_questions(question_ids: Sequence[int]) -> dict[int, Question]:
    """Fetch several questions keyed by id; unknown ids are left out."""
    if not question_ids:
        return {}
    placeholders = ", ".join("?" for _ in question_ids)
    with connect() as conn:
        rows = conn.execute(
            f"SELECT * FROM questions WHERE id IN ({placeholders})",
            list(question_ids),
        ).fetchall()
    return {int(row["id"]): _row_to_question(row) for row in rows}


def save_question_stats(question: Question) -> None:
    with connect() as conn:
        conn.execute(
            "UPDATE questions SET stats_json = ?, updated_at = ? WHERE id = ?",
            (dumps(_stats_to_dict(question.stats)), now_iso(), question.id),
        )


def set_review_status(
    question_id: int,
    status: str,
    *,
    reviewer: str | None = None,
    notes: str | None = None,
) -> Question:
    review_status = ensure_review_status(status)
    get_question(question_id)
    timestamp = now_iso()
    with connect() as conn:
        conn.execute(
            """
            UPDATE questions
            SET review_status = ?, reviewed_by = ?, reviewed_at = ?, review_notes = ?, updated_at = ?
            WHERE id = ?
            """,
            (review_status, reviewer, timestamp, notes, timestamp, question_id),
        )
    logger.info("Question %s marked %s by %s", question_id, review_status, reviewer or "-")
    return get_question(question_id)


# ── Search ────────────────────────────────────────────────────────────────────


def _where_clause(query: QuestionQuery) -> tuple[str, list[Any]]:
    clauses: list[str] = ["review_status = ?"]
    params: list[Any] = [query.review_status or "approved"]
    if query.section:
        clauses.append("section = ?")
        params.append(query.section)
    if query.question_type:
        clauses.append("question_type = ?")
        params.append(query.question_type)
    if query.difficulty:
        clauses.append(f"difficulty_level IN ({', '.join('?' for _ in query.difficulty)})")
        params.extend(query.difficulty)
    if query.topic:
        clauses.append("LOWER(topic) LIKE ?")
        params.append(f"%{query.topic.strip().lower()}%")
    if query.tags:
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(questions.tags_json) "
            f"WHERE LOWER(json_each.value) IN ({', '.join('?' for _ in query.tags)}))"
        )
        params.extend(tag.lower() for tag in query.tags)
    if query.official_only:
        clauses.append("is_official = 1")
    if query.min_quality is not None:
        clauses.append("quality_score >= ?")
        params.append(query.min_quality)
    if query.exclude_ids:
        excluded = sorted(query.exclude_ids)
        clauses.append(f"id NOT IN ({', '.join('?' for _ in excluded)})")
        params.extend(excluded)
    return " AND ".join(clauses), params


def search(query: QuestionQuery, limit: int = 20, offset: int = 0) -> tuple[list[Question], int]:
    """Return one page of matching questions (newest first) and the total match count."""

    where, params = _where_clause(query)
    with connect() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM questions WHERE {where}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM questions WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, max(0, limit), max(0, offset)],
        ).fetchall()
    return [_row_to_question(row) for row in rows], int(total)


def matching_questions(query: QuestionQuery) -> list[Question]:
    """Every question matching ``query``, unpaged, for callers that rank the whole pool."""

    where, params = _where_clause(query)
    with connect() as conn:
        rows = conn.execute(f"SELECT * FROM questions WHERE {where} ORDER BY id", params).fetchall()
    return [_row_to_question(row) for row in rows]


# ── Adaptive selection ────────────────────────────────────────────────────────


def _matches_weak_topic(question: Question, weak_topics: set[str]) -> bool:
    if question.topic.lower() in weak_topics:
        return True
    return any(tag.lower() in weak_topics for tag in question.tags)


def rank_by_information(
    candidates: Iterable[Question],
    criteria: AdaptiveCriteria,
    count: int,
) -> list[Question]:
    """Order candidates by (boosted) information at θ, least-used first on ties."""

    weak = {topic.lower() for topic in criteria.weak_topics}
    recent = set(criteria.recent_question_ids[-RECENT_EXCLUSION:])

    def priority(question: Question) -> float:
        a, b, c = item_parameters(question)
        value = information_value(criteria.ability, a=a, b=b, c=c)
        if weak and _matches_weak_topic(question, weak):
            value *= WEAK_TOPIC_BOOST
        return value

    eligible = [q for q in candidates if q.id not in recent]
    ranked = sorted(eligible, key=lambda q: (-priority(q), q.stats.times_used, q.id))
    return ranked[: max(0, count)]


def select_adaptive(criteria: AdaptiveCriteria, count: int) -> list[Question]:
    """Pick the `count` most informative approved questions for the learner's θ."""

    recent = frozenset(criteria.recent_question_ids[-RECENT_EXCLUSION:])
    candidates = matching_questions(QuestionQuery(section=criteria.section, exclude_ids=recent))
    return rank_by_information(candidates, criteria, count)


# ── Usage statistics ──────────────────────────────────────────────────────────


def _calibrated_difficulty(correct_rate: float, guessing: float) -> float:
    """b = -ln((rate - c) / (1 - rate)), pinned to the θ range at the extremes."""
    if correct_rate >= 1.0:
        return THETA_MIN
    if correct_rate <= guessing:
        return THETA_MAX
    value = -math.log((correct_rate - guessing) / (1.0 - correct_rate))
    return max(THETA_MIN, min(THETA_MAX, value))


def update_question_statistics(
    question: Question,
    is_correct: bool,
    time_spent: int,
    learner_score: float,
) -> Question:
    """Return a copy of ``question`` with usage counters and IRT parameters refreshed."""

    stats = question.stats
    used = stats.times_used + 1
    correct = stats.times_correct + (1 if is_correct else 0)
    incorrect = stats.times_incorrect + (0 if is_correct else 1)
    average_time = (stats.average_time_spent * stats.times_used + max(0, time_spent)) / used

    level = score_level(learner_score)
    outcome = 1.0 if is_correct else 0.0
    levels: list[LevelPerformance] = []
    found = False
    for entry in stats.performance_by_level:
        if entry.level == level:
            n = entry.sample_size
            entry = LevelPerformance(
                level=level,
                correct_rate=(entry.correct_rate * n + outcome) / (n + 1),
                sample_size=n + 1,
            )
            found = True
        levels.append(entry)
    if not found:
        levels.append(LevelPerformance(level=level, correct_rate=outcome, sample_size=1))

    difficulty = stats.difficulty
    discrimination = stats.discrimination
    if used >= RECALIBRATE_AFTER:
        difficulty = _calibrated_difficulty(correct / used, stats.guessing)
        if len(levels) >= MIN_LEVELS_FOR_DISCRIMINATION:
            rates = [entry.correct_rate for entry in levels]
            mean = sum(rates) / len(rates)
            variance = sum((rate - mean) ** 2 for rate in rates) / len(rates)
            discrimination = max(MIN_DISCRIMINATION, min(MAX_DISCRIMINATION, variance * 2))

    new_stats = replace(
        stats,
        difficulty=difficulty,
        discrimination=discrimination,
        times_used=used,
        times_correct=correct,
        times_incorrect=incorrect,
        average_time_spent=average_time,
        performance_by_level=tuple(levels),
    )
    return replace(question, stats=new_stats)


def record_question_usage(
    question_id: int,
    is_correct: bool,
    time_spent: int,
    learner_score: float,
) -> Question:
    """Persist one answer's effect on the question's statistics."""
    question = update_question_statistics(get_question(question_id), is_correct, time_spent, learner_score)
    save_question_stats(question)
    return question


# ── Bulk import ───────────────────────────────────────────────────────────────


def bulk_import(records: Iterable[Mapping[str, Any]], source: str = "import") -> ImportReport:
    """Import records one at a time; bad records are counted and skipped."""

    normalized_source = str(source).strip().lower()
    if normalized_source not in IMPORT_SOURCES:
        raise ValidationFailure(f"Unsupported import source: {source}")

    official = normalized_source == "official"
    report = ImportReport()
    for index, record in enumerate(records, start=1):
        if not isinstance(record, Mapping):
            report.failed += 1
            report.errors.append(f"record {index}: expected an object")
            continue
        try:
            question = insert_question(
                record,
                source=normalized_source,  # type: ignore[arg-type]
                review_status="approved" if official else "pending",
                quality_score=OFFICIAL_QUALITY if official else DEFAULT_QUALITY,
                is_official=official or None,
            )
        except ValidationFailure as exc:
            report.failed += 1
            report.errors.append(f"record {index}: {exc}")
            continue
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping import record %d: %s", index, exc)
            report.failed += 1
            report.errors.append(f"record {index}: malformed record ({exc})")
            continue
        report.imported += 1
        report.question_ids.append(question.id)

    logger.info(
        "Bulk import from %s: %d imported, %d failed",
        normalized_source,
        report.imported,
        report.failed,
    )
    return report


# ── Bank reporting ────────────────────────────────────────────────────────────


def bank_statistics() -> dict[str, Any]:
    """Counts by section, type, difficulty and review status plus quality averages."""

    def grouped(conn: sqlite3.Connection, column: str) -> dict[str, int]:
        rows = conn.execute(
            f"SELECT {column} AS key, COUNT(*) AS n FROM questions GROUP BY {column} ORDER BY {column}"
        ).fetchall()
        return {str(row["key"]): int(row["n"]) for row in rows}

    with connect() as conn:
        total = int(conn.execute("SELECT COUNT(*) FROM questions").fetchone()[0])
        ai_generated = int(
            conn.execute("SELECT COUNT(*) FROM questions WHERE generation_json IS NOT NULL").fetchone()[0]
        )
        official = int(conn.execute("SELECT COUNT(*) FROM questions WHERE is_official = 1").fetchone()[0])
        average_quality = conn.execute("SELECT AVG(quality_score) FROM questions").fetchone()[0]
        by_section = grouped(conn, "section")
        by_type = grouped(conn, "question_type")
        by_difficulty = grouped(conn, "difficulty_level")
        by_status = grouped(conn, "review_status")

    return {
        "total": total,
        "official": official,
        "ai_generated": ai_generated,
        "average_quality": round(float(average_quality or 0.0), 1),
        "by_section": by_section,
        "by_type": by_type,
        "by_difficulty": by_difficulty,
        "by_review_status": by_status,
    }


def official_patterns(section: str | None = None, *, top_topics: int = 10) -> dict[str, Any]:
    """Summarise approved official questions: type mix, difficulty mix, common topics."""

    query = QuestionQuery(section=ensure_section(section) if section else None, official_only=True)
    questions, total = search(query, limit=max(1, _count_all()))

    types = Counter(q.question_type for q in questions)
    difficulties = Counter(q.difficulty_level for q in questions)
    topics = Counter(q.topic for q in questions if q.topic)
    average_quality = sum(q.quality_score for q in questions) / len(questions) if questions else 0.0
    return {
        "section": query.section,
        "total": total,
        "type_distribution": dict(types.most_common()),
        "difficulty_distribution": {str(k): v for k, v in sorted(difficulties.items())},
        "average_quality": round(average_quality, 1),
        "common_topics": [topic for topic, _ in topics.most_common(top_topics)],
    }


def _count_all() -> int:
    with connect() as conn:
        return int(conn.execute("SELECT COUNT(*) FROM questions").fetchone()[0])


__all__ = [
    "ImportReport",
    "RECENT_EXCLUSION",
    "WEAK_TOPIC_BOOST",
    "bank_statistics",
    "bulk_import",
    "get_question",
    "get_questions",
    "insert_question",
    "matching_questions",
    "official_patterns",
    "rank_by_information",
    "record_question_usage",
    "save_question_stats",
    "search",
    "select_adaptive",
    "set_review_status",
    "update_question_statistics",
    "validate_question_record",
]
