"""Database operations for learner profiles and the milestone log."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any, Mapping

from .db import connect, dumps, loads, now_iso, parse_iso
from .models import (
    SECTIONS,
    Goal,
    HistoryEntry,
    LearnerProfile,
    LearningPatterns,
    StrongTopic,
    WeakTopic,
)
from .profile import new_profile


# ── Serialisation ─────────────────────────────────────────────────────────────


def profile_to_dict(profile: LearnerProfile) -> dict[str, Any]:
    goal = profile.goal
    return {
        "user_id": profile.user_id,
        "abilities": dict(profile.abilities),
        "overall_ability": profile.overall_ability,
        "history": [
            {
                "section": entry.section,
                "question_id": entry.question_id,
                "is_correct": entry.is_correct,
                "time_spent": entry.time_spent,
                "difficulty": entry.difficulty,
                "answered_at": now_iso(entry.answered_at),
            }
            for entry in profile.history
        ],
        "weak_topics": [
            {"section": t.section, "topic": t.topic, "error_rate": t.error_rate, "attempts": t.attempts}
            for t in profile.weak_topics
        ],
        "strong_topics": [
            {"section": t.section, "topic": t.topic, "success_rate": t.success_rate, "attempts": t.attempts}
            for t in profile.strong_topics
        ],
        "patterns": {
            "optimal_study_time": profile.patterns.optimal_study_time,
            "average_session_minutes": profile.patterns.average_session_minutes,
            "preferred_difficulty": profile.patterns.preferred_difficulty,
            "learning_speed": profile.patterns.learning_speed,
            "consistency_score": profile.patterns.consistency_score,
        },
        "goal": None
        if goal is None
        else {
            "target_score": goal.target_score,
            "target_date": goal.target_date.isoformat(),
            "required_daily_gain": goal.required_daily_gain,
            "progress_pct": goal.progress_pct,
        },
        "questions_answered": profile.questions_answered,
        "study_seconds": profile.study_seconds,
        "updated_at": profile.updated_at,
    }


def profile_from_dict(data: Mapping[str, Any]) -> LearnerProfile:
    abilities = {section: float(data.get("abilities", {}).get(section, 0.0)) for section in SECTIONS}
    goal_data = data.get("goal")
    return LearnerProfile(
        user_id=str(data["user_id"]),
        abilities=abilities,
        overall_ability=float(data.get("overall_ability", 0.0)),
        history=tuple(
            HistoryEntry(
                section=item["section"],
                question_id=int(item["question_id"]),
                is_correct=bool(item["is_correct"]),
                time_spent=int(item["time_spent"]),
                difficulty=float(item["difficulty"]),
                answered_at=parse_iso(item["answered_at"]),
            )
            for item in data.get("history", [])
        ),
        weak_topics=tuple(WeakTopic(**item) for item in data.get("weak_topics", [])),
        strong_topics=tuple(StrongTopic(**item) for item in data.get("strong_topics", [])),
        patterns=LearningPatterns(**data.get("patterns", {})),
        goal=None
        if not goal_data
        else Goal(
            target_score=int(goal_data["target_score"]),
            target_date=date.fromisoformat(goal_data["target_date"]),
            required_daily_gain=float(goal_data.get("required_daily_gain", 0.0)),
            progress_pct=float(goal_data.get("progress_pct", 0.0)),
        ),
        questions_answered=int(data.get("questions_answered", 0)),
        study_seconds=int(data.get("study_seconds", 0)),
        updated_at=str(data.get("updated_at", "")),
    )


# ── Profile CRUD ──────────────────────────────────────────────────────────────


def get_profile(user_id: str) -> LearnerProfile | None:
    with connect() as conn:
        row = conn.execute(
            "SELECT profile_json FROM learner_profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
    if row is None:
        return None
    return profile_from_dict(loads(row["profile_json"], {}))


def get_or_create_profile(user_id: str) -> LearnerProfile:
    """Profiles are created lazily on first interaction."""
    profile = get_profile(user_id)
    if profile is not None:
        return profile
    return save_profile(new_profile(user_id))


def save_profile(profile: LearnerProfile) -> LearnerProfile:
    timestamp = now_iso()
    stored = replace(profile, updated_at=timestamp)
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO learner_profiles (user_id, profile_json, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                profile_json = excluded.profile_json,
                updated_at = excluded.updated_at
            """,
            (stored.user_id, dumps(profile_to_dict(stored)), timestamp, timestamp),
        )
    return stored


# ── Milestones ────────────────────────────────────────────────────────────────


def record_milestone(user_id: str, kind: str, value: int, label: str, achieved_at: str) -> bool:
    """Insert a milestone unless (kind, value) is already logged. Returns True if new."""
    with connect() as conn:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO milestones (user_id, kind, value, label, achieved_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, kind, value, label, achieved_at),
        )
        return cursor.rowcount > 0


def list_milestones(user_id: str) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute(
            "SELECT kind, value, label, achieved_at FROM milestones WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
    return [dict(row) for row in rows]


__all__ = [
    "get_or_create_profile",
    "get_profile",
    "list_milestones",
    "profile_from_dict",
    "profile_to_dict",
    "record_milestone",
    "save_profile",
]
