"""FastAPI routes for learner profiles, practice, study plans and analytics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from . import analytics, practice
from .api_support import current_user_id, ok, public_question
from .profile import set_goal
from .profile_db import get_or_create_profile, list_milestones, profile_to_dict, save_profile
from .schemas import GoalRequest, PracticeAnswerRequest
from .study_plan import generate_study_plan

router = APIRouter(prefix="/learning", tags=["learning"])

RECENT_HISTORY = 20


def _profile_payload(user_id: str) -> dict[str, Any]:
    data = profile_to_dict(get_or_create_profile(user_id))
    data["recent_history"] = data.pop("history")[-RECENT_HISTORY:]
    return data


@router.get("/profile")
async def learner_profile(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(_profile_payload(user_id))


@router.put("/goal")
async def update_goal(body: GoalRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    profile = save_profile(set_goal(get_or_create_profile(user_id), body.target_score, body.target_date))
    return ok(profile.goal)


@router.get("/recommendations")
async def recommendations(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    sets = practice.suggested_sets(user_id)
    return ok(
        [
            {
                "priority": item.recommendation.priority,
                "kind": item.recommendation.kind,
                "section": item.recommendation.section,
                "topic": item.recommendation.topic,
                "reason": item.recommendation.reason,
                "questions": [public_question(q) for q in item.questions],
            }
            for item in sets
        ]
    )


@router.get("/study-plan")
async def study_plan(
    goal_score: int = Query(..., gt=0, le=600),
    weeks: int = Query(12, ge=1, le=52),
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    return ok(generate_study_plan(get_or_create_profile(user_id), goal_score, weeks))


@router.get("/next-question")
async def next_question(
    target_score: int = Query(practice.DEFAULT_TARGET_SCORE, gt=0, le=600),
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    question = practice.next_practice_question(user_id, target_score=target_score)
    return ok(public_question(question))


@router.post("/answers")
async def answer_question(body: PracticeAnswerRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    result, _ = practice.answer_practice_question(user_id, body.question_id, body.answer, body.time_spent)
    return ok(result)


@router.get("/milestones")
async def milestones(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(list_milestones(user_id))


# ── Analytics ─────────────────────────────────────────────────────────────────


@router.get("/analytics/dashboard")
async def analytics_dashboard(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(analytics.dashboard(user_id))


@router.get("/analytics/insights")
async def analytics_insights(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    snapshot = analytics.refresh(user_id)
    return ok(analytics.insights(snapshot, get_or_create_profile(user_id)))


@router.get("/analytics/prediction")
async def analytics_prediction(
    target_days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    return ok(analytics.refresh(user_id, target_days=target_days).prediction)


@router.get("/analytics/peers")
async def analytics_peers(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return ok(analytics.refresh(user_id).peers)
