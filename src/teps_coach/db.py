from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DATA_DIR / "teps_coach.db"
DB_PATH = Path(os.environ.get("TEPS_COACH_DB_PATH", DEFAULT_DB_PATH))


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection with foreign keys enforced."""

    connection = _open_connection()
    try:
        yield connection
        connection.commit()
    finally:
        connection.close()


def _open_connection() -> sqlite3.Connection:
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(db_path, timeout=10)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    return connection


def now_iso(value: datetime | None = None) -> str:
    """Return the current UTC timestamp (seconds precision) as ISO 8601."""

    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp; naive values are treated as UTC."""

    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def loads(value: str | None, default: Any = None) -> Any:
    if not value:
        return default
    return json.loads(value)


def init_db() -> None:
    """Initialise the database schema if tables are missing."""

    with _open_connection() as connection:
        _create_tables(connection)
        connection.commit()


def _create_tables(connection: sqlite3.Connection) -> None:
    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS questions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            question_type TEXT NOT NULL,
            section TEXT NOT NULL,
            difficulty_level INTEGER NOT NULL DEFAULT 3,
            question_text TEXT NOT NULL,
            options_json TEXT NOT NULL DEFAULT '{}',
            correct_answer TEXT NOT NULL,
            explanation TEXT NOT NULL DEFAULT '',
            topic TEXT NOT NULL DEFAULT '',
            tags_json TEXT NOT NULL DEFAULT '[]',
            audio_json TEXT,
            passage_json TEXT,
            image_url TEXT,
            is_official INTEGER NOT NULL DEFAULT 0,
            source TEXT NOT NULL DEFAULT 'manual',
            review_status TEXT NOT NULL DEFAULT 'pending',
            quality_score INTEGER NOT NULL DEFAULT 70,
            generation_json TEXT,
            reviewed_by TEXT,
            reviewed_at TEXT,
            review_notes TEXT,
            stats_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_questions_section
            ON questions(section, review_status, difficulty_level);

        CREATE TABLE IF NOT EXISTS exam_configs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            exam_type TEXT NOT NULL,
            difficulty TEXT NOT NULL,
            sections_json TEXT NOT NULL,
            total_time_limit INTEGER NOT NULL,
            rules_json TEXT NOT NULL,
            is_official_format INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            usage_count INTEGER NOT NULL DEFAULT 0,
            average_score REAL NOT NULL DEFAULT 0,
            average_completion_time REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS exam_attempts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            config_id INTEGER NOT NULL REFERENCES exam_configs(id),
            exam_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'not_started',
            current_index INTEGER NOT NULL DEFAULT 0,
            started_at TEXT,
            paused_at TEXT,
            completed_at TEXT,
            expires_at TEXT,
            paused_seconds INTEGER NOT NULL DEFAULT 0,
            tab_switches INTEGER NOT NULL DEFAULT 0,
            fullscreen_exits INTEGER NOT NULL DEFAULT 0,
            suspicious INTEGER NOT NULL DEFAULT 0,
            result_json TEXT,
            scaled_score INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_exam_attempts_user
            ON exam_attempts(user_id, status, completed_at);

        CREATE TABLE IF NOT EXISTS attempt_questions (
            attempt_id INTEGER NOT NULL REFERENCES exam_attempts(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            question_id INTEGER NOT NULL REFERENCES questions(id),
            PRIMARY KEY (attempt_id, position)
        );

        CREATE TABLE IF NOT EXISTS attempt_answers (
            attempt_id INTEGER NOT NULL REFERENCES exam_attempts(id) ON DELETE CASCADE,
            question_id INTEGER NOT NULL,
            section TEXT NOT NULL,
            answer TEXT NOT NULL,
            is_correct INTEGER NOT NULL,
            time_spent INTEGER NOT NULL DEFAULT 0,
            answered_at TEXT NOT NULL,
            UNIQUE (attempt_id, question_id)
        );

        CREATE TABLE IF NOT EXISTS learner_profiles (
            user_id TEXT PRIMARY KEY,
            profile_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS milestones (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            value INTEGER NOT NULL,
            label TEXT NOT NULL,
            achieved_at TEXT NOT NULL,
            UNIQUE (user_id, kind, value)
        );
        """
    )


__all__ = [
    "DB_PATH",
    "DEFAULT_DB_PATH",
    "connect",
    "dumps",
    "init_db",
    "loads",
    "now_iso",
    "parse_iso",
]
