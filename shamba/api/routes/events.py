"""
shamba.api.routes.events — Event directory and registration
=============================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from shamba.api.deps import get_current_user_id, get_event_service, get_optional_user_id
from shamba.api.responses import respond
from shamba.database.engine import run_db
from shamba.services.event_service import EventService

router = APIRouter(prefix="/events", tags=["events"])


class EventCreate(BaseModel):
    title: str
    description: str
    event_type: str = "workshop"
    start_datetime: datetime
    end_datetime: datetime
    location: str | None = None
    virtual_link: str | None = None
    is_virtual: bool = False
    max_participants: int | None = None
    price: float = 0.0
    currency: str = "UGX"
    requirements: str | None = None
    contact_info: str
    image_url: str | None = None
    category_id: int | None = None


class AttendanceUpdate(BaseModel):
    attendance_status: str


@router.get("")
async def list_upcoming(
    limit: int | None = Query(None, ge=1),
    event_type: str | None = None,
    category_id: int | None = None,
    viewer: str | None = Depends(get_optional_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(
        events.get_upcoming_events,
        limit, event_type=event_type, category_id=category_id, viewer_id=viewer
    ))


@router.get("/mine")
async def my_events(
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.get_user_events, user_id))


@router.get("/{event_id}")
async def get_event(
    event_id: int,
    viewer: str | None = Depends(get_optional_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.get_event_by_id, event_id, viewer_id=viewer))


@router.post("")
async def create_event(
    body: EventCreate,
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    result = await run_db(events.create_event, user_id, body.model_dump())
    return respond(result, success_status=201)


@router.post("/{event_id}/cancel")
async def cancel_event(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.cancel_event, event_id, user_id))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------
@router.get("/{event_id}/registration")
async def my_registration(
    event_id: int,
    viewer: str | None = Depends(get_optional_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.get_user_event_registration, event_id, viewer))


@router.post("/{event_id}/registration")
async def register(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.register_for_event, event_id, user_id), success_status=201)


@router.delete("/{event_id}/registration")
async def unregister(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.unregister_from_event, event_id, user_id))


@router.get("/{event_id}/participants")
async def participants(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(await run_db(events.get_event_participants, event_id, user_id))


@router.put("/{event_id}/participants/{participant_id}/attendance")
async def mark_attendance(
    event_id: int,
    participant_id: str,
    body: AttendanceUpdate,
    user_id: str = Depends(get_current_user_id),
    events: EventService = Depends(get_event_service),
):
    return respond(
        await run_db(
            events.mark_attendance, event_id, user_id, participant_id, body.attendance_status
        )
    )
