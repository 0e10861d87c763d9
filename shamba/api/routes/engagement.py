"""
shamba.api.routes.engagement — Likes, bookmarks, reactions, notifications
===========================================================================

Subjects are addressed as ``/{subject_type}/{subject_id}`` where
``subject_type`` is one of ``post``, ``comment``, ``question`` or
``answer``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from shamba.api.deps import get_current_user_id, get_engagement_service, get_optional_user_id
from shamba.api.responses import respond
from shamba.database.engine import run_db
from shamba.services.engagement_service import EngagementService

router = APIRouter(tags=["engagement"])


class ReactionSet(BaseModel):
    reaction_type: str


# ---------------------------------------------------------------------------
# Toggles
# ---------------------------------------------------------------------------
@router.post("/likes/{subject_type}/{subject_id}")
async def toggle_like(
    subject_type: str,
    subject_id: int,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.toggle_like, subject_type, subject_id, user_id))


@router.post("/bookmarks/{subject_type}/{subject_id}")
async def toggle_bookmark(
    subject_type: str,
    subject_id: int,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.toggle_bookmark, subject_type, subject_id, user_id))


@router.get("/bookmarks")
async def my_bookmarks(
    limit: int | None = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.get_user_bookmarks, user_id, limit))


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
@router.get("/reactions/{subject_type}/{subject_id}")
async def get_reactions(
    subject_type: str,
    subject_id: int,
    viewer: str | None = Depends(get_optional_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.get_reactions, subject_type, subject_id, viewer))


@router.put("/reactions/{subject_type}/{subject_id}")
async def set_reaction(
    subject_type: str,
    subject_id: int,
    body: ReactionSet,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(
        await run_db(
            engagement.set_reaction, subject_type, subject_id, user_id, body.reaction_type
        )
    )


@router.delete("/reactions/{subject_type}/{subject_id}")
async def clear_reaction(
    subject_type: str,
    subject_id: int,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.clear_reaction, subject_type, subject_id, user_id))


# ---------------------------------------------------------------------------
# Notifications & reputation
# ---------------------------------------------------------------------------
@router.get("/notifications")
async def list_notifications(
    unread_only: bool = False,
    limit: int | None = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(
        engagement.list_notifications, user_id, unread_only=unread_only, limit=limit
    ))


@router.get("/notifications/unread-count")
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.unread_count, user_id))


@router.post("/notifications/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.mark_all_read, user_id))


@router.post("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.mark_notification_read, notification_id, user_id))


@router.get("/reputation/{user_id}")
async def reputation(
    user_id: str,
    engagement: EngagementService = Depends(get_engagement_service),
):
    return respond(await run_db(engagement.get_reputation, user_id))
