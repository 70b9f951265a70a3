"""Database operations for exam configs, attempts and their answers."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from typing import Any, Mapping, Sequence

from .db import connect, dumps, loads, now_iso
from .errors import NotFoundError
from .models import (
    ExamAttempt,
    ExamConfig,
    ExamDifficulty,
    ExamResult,
    ExamRules,
    ExamStatus,
    ExamType,
    SectionConfig,
    SectionResult,
    UserAnswer,
)
from .scoring import scaled_score


# ── Config CRUD ───────────────────────────────────────────────────────────────


def _row_to_config(row: sqlite3.Row) -> ExamConfig:
    return ExamConfig(
        id=int(row["id"]),
        name=row["name"],
        exam_type=row["exam_type"],
        difficulty=row["difficulty"],
        sections=tuple(SectionConfig(**item) for item in loads(row["sections_json"], [])),
        total_time_limit=int(row["total_time_limit"]),
        rules=ExamRules(**loads(row["rules_json"], {})),
        is_official_format=bool(row["is_official_format"]),
        is_active=bool(row["is_active"]),
        usage_count=int(row["usage_count"]),
        average_score=float(row["average_score"]),
        average_completion_time=float(row["average_completion_time"]),
        created_at=row["created_at"],
    )


def create_config(
    *,
    name: str,
    exam_type: ExamType,
    difficulty: ExamDifficulty,
    sections: Sequence[SectionConfig],
    total_time_limit: int,
    rules: ExamRules,
    is_official_format: bool = False,
) -> ExamConfig:
    timestamp = now_iso()
    with connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO exam_configs (
                name, exam_type, difficulty, sections_json, total_time_limit,
                rules_json, is_official_format, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                exam_type,
                difficulty,
                dumps([asdict(section) for section in sections]),
                total_time_limit,
                dumps(asdict(rules)),
                int(is_official_format),
                timestamp,
                timestamp,
            ),
        )
        config_id = int(cursor.lastrowid)
    return get_config(config_id)


def get_config(config_id: int) -> ExamConfig:
    with connect() as conn:
        row = conn.execute("SELECT * FROM exam_configs WHERE id = ?", (config_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Exam config {config_id} not found")
    return _row_to_config(row)


def find_config(
    exam_type: ExamType,
    difficulty: ExamDifficulty,
    *,
    is_official_format: bool,
) -> ExamConfig | None:
    """Return the oldest active config matching the flavour, if one exists."""
    with connect() as conn:
        row = conn.execute(
            """
            SELECT * FROM exam_configs
            WHERE exam_type = ? AND difficulty = ? AND is_official_format = ? AND is_active = 1
            ORDER BY id LIMIT 1
            """,
            (exam_type, difficulty, int(is_official_format)),
        ).fetchone()
    if row is None:
        return None
    return _row_to_config(row)


def record_config_usage(config_id: int, score: int, completion_seconds: int) -> None:
    """Fold one completed attempt into the config's running averages."""
    with connect() as conn:
        conn.execute(
            """
            UPDATE exam_configs SET
                average_score = (average_score * usage_count + ?) / (usage_count + 1),
                average_completion_time = (average_completion_time * usage_count + ?) / (usage_count + 1),
                usage_count = usage_count + 1,
                updated_at = ?
            WHERE id = ?
            """,
            (score, completion_seconds, now_iso(), config_id),
        )


# ── Results ───────────────────────────────────────────────────────────────────


def result_to_dict(result: ExamResult) -> dict[str, Any]:
    return asdict(result)


def result_from_dict(data: Mapping[str, Any]) -> ExamResult:
    fields = dict(data)
    fields["sections"] = tuple(SectionResult(**item) for item in data.get("sections", []))
    for key in ("strengths", "weaknesses", "recommendations"):
        fields[key] = tuple(data.get(key, []))
    return ExamResult(**fields)


# ── Attempt CRUD ──────────────────────────────────────────────────────────────


def _row_to_answer(row: sqlite3.Row) -> UserAnswer:
    return UserAnswer(
        question_id=int(row["question_id"]),
        section=row["section"],
        answer=row["answer"],
        is_correct=bool(row["is_correct"]),
        time_spent=int(row["time_spent"]),
        answered_at=row["answered_at"],
    )


def _load_attempt(conn: sqlite3.Connection, row: sqlite3.Row) -> ExamAttempt:
    attempt_id = int(row["id"])
    question_rows = conn.execute(
        "SELECT question_id FROM attempt_questions WHERE attempt_id = ? ORDER BY position",
        (attempt_id,),
    ).fetchall()
    answer_rows = conn.execute(
        "SELECT * FROM attempt_answers WHERE attempt_id = ? ORDER BY rowid",
        (attempt_id,),
    ).fetchall()
    result_data = loads(row["result_json"])
    return ExamAttempt(
        id=attempt_id,
        user_id=row["user_id"],
        config_id=int(row["config_id"]),
        exam_type=row["exam_type"],
        status=row["status"],
        question_ids=tuple(int(r["question_id"]) for r in question_rows),
        answers=tuple(_row_to_answer(r) for r in answer_rows),
        current_index=int(row["current_index"]),
        started_at=row["started_at"],
        paused_at=row["paused_at"],
        completed_at=row["completed_at"],
        expires_at=row["expires_at"],
        paused_seconds=int(row["paused_seconds"]),
        tab_switches=int(row["tab_switches"]),
        fullscreen_exits=int(row["fullscreen_exits"]),
        suspicious=bool(row["suspicious"]),
        result=result_from_dict(result_data) if result_data else None,
        created_at=row["created_at"],
    )


def create_attempt(
    *,
    user_id: str,
    config: ExamConfig,
    question_ids: Sequence[int],
    expires_at: str,
) -> ExamAttempt:
    timestamp = now_iso()
    with connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO exam_attempts (user_id, config_id, exam_type, status, expires_at, created_at, updated_at)
            VALUES (?, ?, ?, 'not_started', ?, ?, ?)
            """,
            (user_id, config.id, config.exam_type, expires_at, timestamp, timestamp),
        )
        attempt_id = int(cursor.lastrowid)
        conn.executemany(
            "INSERT INTO attempt_questions (attempt_id, position, question_id) VALUES (?, ?, ?)",
            [(attempt_id, position, qid) for position, qid in enumerate(question_ids)],
        )
    return get_attempt(attempt_id)


def get_attempt(attempt_id: int) -> ExamAttempt:
    with connect() as conn:
        row = conn.execute("SELECT * FROM exam_attempts WHERE id = ?", (attempt_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Exam attempt {attempt_id} not found")
        return _load_attempt(conn, row)


def save_attempt_state(attempt: ExamAttempt) -> None:
    """Persist everything except the answer list (answers are upserted individually)."""
    result = attempt.result
    with connect() as conn:
        conn.execute(
            """
            UPDATE exam_attempts SET
                status = ?, current_index = ?, started_at = ?, paused_at = ?, completed_at = ?,
                expires_at = ?, paused_seconds = ?, tab_switches = ?, fullscreen_exits = ?,
                suspicious = ?, result_json = ?, scaled_score = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                attempt.status,
                attempt.current_index,
                attempt.started_at,
                attempt.paused_at,
                attempt.completed_at,
                attempt.expires_at,
                attempt.paused_seconds,
                attempt.tab_switches,
                attempt.fullscreen_exits,
                int(attempt.suspicious),
                dumps(result_to_dict(result)) if result else None,
                scaled_score(result) if result else None,
                now_iso(),
                attempt.id,
            ),
        )


def upsert_answer(attempt_id: int, answer: UserAnswer, current_index: int) -> bool:
    """Insert or replace the answer for one question. Returns True on first submission."""
    with connect() as conn:
        existing = conn.execute(
            "SELECT 1 FROM attempt_answers WHERE attempt_id = ? AND question_id = ?",
            (attempt_id, answer.question_id),
        ).fetchone()
        conn.execute(
            """
            INSERT INTO attempt_answers (attempt_id, question_id, section, answer, is_correct, time_spent, answered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(attempt_id, question_id) DO UPDATE SET
                answer = excluded.answer,
                is_correct = excluded.is_correct,
                time_spent = excluded.time_spent,
                answered_at = excluded.answered_at
            """,
            (
                attempt_id,
                answer.question_id,
                answer.section,
                answer.answer,
                int(answer.is_correct),
                answer.time_spent,
                answer.answered_at,
            ),
        )
        conn.execute(
            "UPDATE exam_attempts SET current_index = MAX(current_index, ?), updated_at = ? WHERE id = ?",
            (current_index, now_iso(), attempt_id),
        )
    return existing is None


# ── Queries ───────────────────────────────────────────────────────────────────


def list_attempts(
    user_id: str,
    *,
    status: ExamStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[ExamAttempt], int]:
    clauses = ["user_id = ?"]
    params: list[Any] = [user_id]
    if status:
        clauses.append("status = ?")
        params.append(status)
    where = " AND ".join(clauses)
    with connect() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM exam_attempts WHERE {where}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM exam_attempts WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        attempts = [_load_attempt(conn, row) for row in rows]
    return attempts, int(total)


def used_question_ids(user_id: str) -> set[int]:
    """Every question already served to the learner in an exam."""
    with connect() as conn:
        rows = conn.execute(
            """
            SELECT DISTINCT q.question_id FROM attempt_questions q
            JOIN exam_attempts a ON a.id = q.attempt_id
            WHERE a.user_id = ?
            """,
            (user_id,),
        ).fetchall()
    return {int(row["question_id"]) for row in rows}


def completed_scores(user_id: str, limit: int = 50) -> list[dict[str, Any]]:
    """Most recent completed attempts as dicts, oldest first."""
    with connect() as conn:
        rows = conn.execute(
            """
            SELECT id, exam_type, completed_at, scaled_score FROM exam_attempts
            WHERE user_id = ? AND status = 'completed' AND scaled_score IS NOT NULL
            ORDER BY completed_at DESC, id DESC LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
    return [dict(row) for row in reversed(rows)]


def latest_scores_by_user() -> dict[str, int]:
    """Each learner's most recent completed score."""
    with connect() as conn:
        rows = conn.execute(
            """
            SELECT user_id, scaled_score FROM exam_attempts AS a
            WHERE status = 'completed' AND scaled_score IS NOT NULL
              AND id = (
                SELECT b.id FROM exam_attempts AS b
                WHERE b.user_id = a.user_id AND b.status = 'completed' AND b.scaled_score IS NOT NULL
                ORDER BY b.completed_at DESC, b.id DESC LIMIT 1
              )
            """
        ).fetchall()
    return {row["user_id"]: int(row["scaled_score"]) for row in rows}


__all__ = [
    "completed_scores",
    "create_attempt",
    "create_config",
    "find_config",
    "get_attempt",
    "get_config",
    "latest_scores_by_user",
    "list_attempts",
    "record_config_usage",
    "result_from_dict",
    "result_to_dict",
    "save_attempt_state",
    "upsert_answer",
    "used_question_ids",
]
