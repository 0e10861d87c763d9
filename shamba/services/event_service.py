"""
shamba.services.event_service — Event Directory & Capacity-Controlled Registration
====================================================================================

Event lifecycle (stored ``status``)::

    upcoming ──(organizer cancels)──▶ cancelled
    upcoming ──(end time passes)───▶ completed     (complete_past_events)

The capacity state ``open | full`` is derived from the participant count
at read and registration time and never stored.

Registration is the one count-then-insert sequence that must not race.
:meth:`EventService.register_for_event` serialises registrants of the
same event twice over:

* a per-event ``threading.Lock`` for the worker threads of this process
  (``run_db`` runs every call on a thread); an event's lock only exists
  while some caller holds or waits on it, and
* ``SELECT … FOR UPDATE`` on the event row, which makes concurrent
  transactions in *other* processes queue behind ours on PostgreSQL.

The unique ``(event_id, user_id)`` constraint backs the
``already_registered`` answer if a duplicate still slips through.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shamba.config import CommunityConfig
from shamba.constants import (
    ATTENDANCE_STATUSES,
    EVENT_CURRENCIES,
    EVENT_TYPES,
    MSG_ALREADY_REGISTERED,
    MSG_EVENT_CANCELLED,
    MSG_EVENT_COMPLETED,
    MSG_EVENT_FULL,
    MSG_REGISTERED,
    MSG_UNREGISTERED,
    iso,
)
from shamba.database import queries
from shamba.database.models import Category, Event, EventParticipant
from shamba.services import aggregation_service as agg
from shamba.services.engagement_service import notify
from shamba.services.result import (
    Result,
    conflict,
    guarded,
    not_found,
    require_user,
    unauthorized,
    validation,
)
from shamba.services.taxonomy_service import category_dict

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200

_REQUIRED_TEXT = ("title", "description", "contact_info")


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


# event id → entry; only events with a caller holding or waiting on the lock
# are present.  Guarded by _locks_guard.
_event_locks: dict[int, _LockEntry] = {}
_locks_guard = threading.Lock()


@contextmanager
def _event_lock(event_id: int) -> Iterator[None]:
    """Serialise callers on *event_id*; the entry is dropped by the last one out."""
    with _locks_guard:
        entry = _event_locks.get(event_id)
        if entry is None:
            entry = _event_locks[event_id] = _LockEntry()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _event_locks[event_id]


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def event_dict(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "organizer_id": event.organizer_id,
        "title": event.title,
        "description": event.description,
        "event_type": event.event_type,
        "start_datetime": iso(event.start_datetime),
        "end_datetime": iso(event.end_datetime),
        "location": event.location,
        "virtual_link": event.virtual_link,
        "is_virtual": event.is_virtual,
        "max_participants": event.max_participants,
        "price": event.price,
        "currency": event.currency,
        "requirements": event.requirements,
        "contact_info": event.contact_info,
        "image_url": event.image_url,
        "category": category_dict(event.category),
        "status": event.status,
        "created_at": iso(event.created_at),
    }


def registration_dict(row: EventParticipant) -> dict[str, Any]:
    return {
        "id": row.id,
        "event_id": row.event_id,
        "user_id": row.user_id,
        "registration_date": iso(row.registration_date),
        "attendance_status": row.attendance_status,
    }


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------
def _as_utc(value: Any) -> datetime | None:
    """Accept a datetime or ISO-8601 string; naive values are taken as UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _validate_event(data: Mapping[str, Any]) -> tuple[dict[str, Any], Result | None]:
    clean: dict[str, Any] = {}
    for field in _REQUIRED_TEXT:
        raw = data.get(field)
        text = raw.strip() if isinstance(raw, str) else ""
        if not text:
            label = field.replace("_", " ").capitalize()
            return {}, validation(f"{label} is required.", field=field)
        clean[field] = text
    if len(clean["title"]) > MAX_TITLE_LENGTH:
        return {}, validation(
            f"Title must be at most {MAX_TITLE_LENGTH} characters.", field="title"
        )

    start = _as_utc(data.get("start_datetime"))
    end = _as_utc(data.get("end_datetime"))
    if start is None:
        return {}, validation("A valid start date and time is required.", field="start_datetime")
    if end is None:
        return {}, validation("A valid end date and time is required.", field="end_datetime")
    if end <= start:
        return {}, validation("The event must end after it starts.", field="end_datetime")
    clean["start_datetime"], clean["end_datetime"] = start, end

    event_type = data.get("event_type") or "workshop"
    if event_type not in EVENT_TYPES:
        return {}, validation(
            f"Unknown event type '{event_type}'.", field="event_type", allowed=sorted(EVENT_TYPES)
        )
    clean["event_type"] = event_type

    is_virtual = bool(data.get("is_virtual", False))
    location = (data.get("location") or "").strip()
    virtual_link = (data.get("virtual_link") or "").strip() or None
    if is_virtual and not virtual_link:
        return {}, validation("Virtual events need a meeting link.", field="virtual_link")
    if not is_virtual and not location:
        return {}, validation("Location is required.", field="location")
    clean["is_virtual"] = is_virtual
    clean["location"] = location or "Online"
    clean["virtual_link"] = virtual_link

    max_participants = data.get("max_participants")
    if max_participants is not None:
        if isinstance(max_participants, bool) or not isinstance(max_participants, int):
            return {}, validation("Maximum participants must be a whole number.",
                                  field="max_participants")
        if max_participants < 1:
            return {}, validation("Maximum participants must be at least 1.",
                                  field="max_participants")
    clean["max_participants"] = max_participants

    price = data.get("price", 0) or 0
    try:
        price = float(price)
    except (TypeError, ValueError):
        return {}, validation("Price must be a number.", field="price")
    if price < 0:
        return {}, validation("Price cannot be negative.", field="price")
    clean["price"] = price

    currency = (data.get("currency") or "UGX").upper()
    if currency not in EVENT_CURRENCIES:
        return {}, validation(
            f"Unsupported currency '{currency}'.", field="currency",
            allowed=sorted(EVENT_CURRENCIES),
        )
    clean["currency"] = currency

    for optional in ("requirements", "image_url"):
        value = data.get(optional)
        clean[optional] = value.strip() if isinstance(value, str) and value.strip() else None
    clean["category_id"] = data.get("category_id")
    return clean, None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class EventService:
    """Event CRUD, registration roster and capacity enforcement."""

    def __init__(self, engine: Engine, config: CommunityConfig | None = None) -> None:
        self.engine = engine
        self.config = config or CommunityConfig()

    def _registered_ids(self, session: Session, event_ids: list[int], user_id: str) -> set[int]:
        if not event_ids:
            return set()
        return set(session.scalars(
            select(EventParticipant.event_id).where(
                EventParticipant.event_id.in_(event_ids),
                EventParticipant.user_id == user_id,
            )
        ).all())

    def _decorate(
        self, session: Session, events: list[Event], viewer_id: str | None
    ) -> list[dict]:
        items = agg.decorate_events(session, [event_dict(e) for e in events])
        if viewer_id:
            mine = self._registered_ids(session, [e["id"] for e in items], viewer_id)
            for item in items:
                item["is_registered"] = item["id"] in mine
        return items

    # -- directory ----------------------------------------------------------
    @guarded("create event")
    def create_event(self, organizer_id: str | None, data: Mapping[str, Any]) -> Result[dict]:
        if (denied := require_user(organizer_id)) is not None:
            return denied
        clean, err = _validate_event(data)
        if err:
            return err
        with Session(self.engine, expire_on_commit=False) as session:
            category_id = clean["category_id"]
            if category_id is not None and session.get(Category, category_id) is None:
                return validation("Unknown category.", field="category_id", id=category_id)
            event = Event(organizer_id=organizer_id, status="upcoming", **clean)
            session.add(event)
            session.commit()
            logger.info("Event %d created by %s", event.id, organizer_id)
            event = session.scalars(
                queries.event_with_category().where(Event.id == event.id)
            ).one()
            return Result.success(self._decorate(session, [event], organizer_id)[0])

    @guarded("load upcoming events")
    def get_upcoming_events(
        self,
        limit: int | None = None,
        *,
        event_type: str | None = None,
        category_id: int | None = None,
        viewer_id: str | None = None,
    ) -> Result[list]:
        """Upcoming, not-yet-ended events, soonest first, with capacity state."""
        limit = self.config.clamp_limit(limit or self.config.upcoming_events_limit)
        with Session(self.engine) as session:
            events = session.scalars(
                queries.upcoming_events(
                    datetime.now(UTC), limit, event_type=event_type, category_id=category_id
                )
            ).all()
            return Result.success(self._decorate(session, list(events), viewer_id))

    @guarded("load event")
    def get_event_by_id(self, event_id: int, viewer_id: str | None = None) -> Result[dict]:
        with Session(self.engine) as session:
            event = session.scalars(
                queries.event_with_category().where(Event.id == event_id)
            ).one_or_none()
            if event is None:
                return not_found("Event", event_id)
            return Result.success(self._decorate(session, [event], viewer_id)[0])

    @guarded("load your events")
    def get_user_events(self, user_id: str | None) -> Result[list]:
        """Events the caller is registered for."""
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            events = session.scalars(queries.events_for_user(user_id)).all()
            return Result.success(self._decorate(session, list(events), user_id))

    # -- registration ---------------------------------------------------------
    @guarded("register for event")
    def register_for_event(self, event_id: int, user_id: str | None) -> Result[dict]:
        """Add *user_id* to the roster of *event_id*.

        Checked in order: event exists, not already registered, not
        cancelled, not completed, a seat is left.  The count and the
        insert happen while holding the event's lock and row lock, so
        concurrent registrants can never overbook.
        """
        if (denied := require_user(user_id)) is not None:
            return denied

        with _event_lock(event_id), Session(self.engine, expire_on_commit=False) as session:
            event = session.scalars(
                select(Event).where(Event.id == event_id).with_for_update()
            ).one_or_none()
            if event is None:
                return not_found("Event", event_id)

            existing = session.scalar(
                select(EventParticipant.id).where(
                    EventParticipant.event_id == event_id,
                    EventParticipant.user_id == user_id,
                )
            )
            if existing is not None:
                return conflict(MSG_ALREADY_REGISTERED, "already_registered")
            if event.status == "cancelled":
                return conflict(MSG_EVENT_CANCELLED, "event_cancelled")
            if event.status == "completed":
                return conflict(MSG_EVENT_COMPLETED, "event_completed")

            count = agg.participants_count(session, event_id)
            if event.max_participants is not None and count >= event.max_participants:
                logger.info("Event %d is full (%d/%d)", event_id, count, event.max_participants)
                return conflict(
                    MSG_EVENT_FULL, "event_full",
                    max_participants=event.max_participants,
                )

            registration = EventParticipant(
                event_id=event_id, user_id=user_id, attendance_status="registered"
            )
            try:
                with session.begin_nested():
                    session.add(registration)
                    session.flush()
            except IntegrityError:
                session.rollback()
                return conflict(MSG_ALREADY_REGISTERED, "already_registered")

            notify(
                session,
                user_id=event.organizer_id,
                actor_id=user_id,
                type="event_registration",
                title="New registration",
                message=event.title,
                link=f"/community/events/{event_id}",
                payload={"event_id": event_id},
            )
            session.commit()

            count += 1
            logger.info("User %s registered for event %d", user_id, event_id)
            spots = (
                None if event.max_participants is None
                else max(0, event.max_participants - count)
            )
            return Result.success({
                "registered": True,
                "message": MSG_REGISTERED,
                "registration": registration_dict(registration),
                "participants_count": count,
                "spots_left": spots,
            })

    @guarded("unregister from event")
    def unregister_from_event(self, event_id: int, user_id: str | None) -> Result[dict]:
        """Drop the caller's registration.  No registration is not an error."""
        if (denied := require_user(user_id)) is not None:
            return denied
        with _event_lock(event_id), Session(self.engine) as session:
            removed = session.execute(
                delete(EventParticipant).where(
                    EventParticipant.event_id == event_id,
                    EventParticipant.user_id == user_id,
                )
            ).rowcount
            session.commit()
            if removed:
                logger.info("User %s unregistered from event %d", user_id, event_id)
            return Result.success({
                "registered": False,
                "message": MSG_UNREGISTERED,
                "participants_count": agg.participants_count(session, event_id),
            })

    @guarded("check registration")
    def get_user_event_registration(self, event_id: int, user_id: str | None) -> Result[dict]:
        if not user_id:
            return Result.success({"is_registered": False, "registration": None})
        with Session(self.engine) as session:
            row = session.scalar(
                select(EventParticipant).where(
                    EventParticipant.event_id == event_id,
                    EventParticipant.user_id == user_id,
                )
            )
            return Result.success({
                "is_registered": row is not None,
                "registration": registration_dict(row) if row is not None else None,
            })

    # -- organizer actions ----------------------------------------------------
    @guarded("load participants")
    def get_event_participants(self, event_id: int, user_id: str | None) -> Result[list]:
        """The roster, visible to the organizer only."""
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            event = session.get(Event, event_id)
            if event is None:
                return not_found("Event", event_id)
            if event.organizer_id != user_id:
                return unauthorized("Only the organizer can view the participant list.")
            return Result.success([registration_dict(p) for p in event.participants])

    @guarded("cancel event")
    def cancel_event(self, event_id: int, user_id: str | None) -> Result[dict]:
        """Organizer-only.  Registered participants are notified."""
        if (denied := require_user(user_id)) is not None:
            return denied
        with _event_lock(event_id), Session(self.engine) as session:
            event = session.scalars(
                select(Event).where(Event.id == event_id).with_for_update()
            ).one_or_none()
            if event is None:
                return not_found("Event", event_id)
            if event.organizer_id != user_id:
                return unauthorized("Only the organizer can cancel this event.")
            if event.status == "completed":
                return conflict(MSG_EVENT_COMPLETED, "event_completed")
            if event.status != "cancelled":
                event.status = "cancelled"
                for participant in event.participants:
                    notify(
                        session,
                        user_id=participant.user_id,
                        actor_id=user_id,
                        type="event_cancelled",
                        title="Event cancelled",
                        message=event.title,
                        link=f"/community/events/{event_id}",
                        payload={"event_id": event_id},
                    )
                session.commit()
                logger.info("Event %d cancelled by %s", event_id, user_id)
            return Result.success(self._decorate(session, [event], user_id)[0])

    @guarded("update attendance")
    def mark_attendance(
        self, event_id: int, organizer_id: str | None, participant_id: str, status: str
    ) -> Result[dict]:
        if (denied := require_user(organizer_id)) is not None:
            return denied
        if status not in ATTENDANCE_STATUSES:
            return validation(
                f"Invalid attendance status '{status}'.", field="attendance_status",
                allowed=sorted(ATTENDANCE_STATUSES),
            )
        with Session(self.engine, expire_on_commit=False) as session:
            event = session.get(Event, event_id)
            if event is None:
                return not_found("Event", event_id)
            if event.organizer_id != organizer_id:
                return unauthorized("Only the organizer can record attendance.")
            row = session.scalar(
                select(EventParticipant).where(
                    EventParticipant.event_id == event_id,
                    EventParticipant.user_id == participant_id,
                )
            )
            if row is None:
                return not_found("Registration", participant_id)
            row.attendance_status = status
            session.commit()
            return Result.success(registration_dict(row))

    @guarded("complete past events")
    def complete_past_events(self, now: datetime | None = None) -> Result[int]:
        """Move every ``upcoming`` event whose end time has passed to ``completed``.

        Meant to be called by an external scheduler; returns the number of
        events updated.
        """
        now = _as_utc(now) or datetime.now(UTC)
        with Session(self.engine) as session:
            updated = session.execute(
                update(Event)
                .where(Event.status == "upcoming", Event.end_datetime < now)
                .values(status="completed")
            ).rowcount
            session.commit()
        if updated:
            logger.info("Marked %d past event(s) completed", updated)
        return Result.success(updated)
