"""
tests/test_event_service.py — Event Directory & Registration
=============================================================
The capacity scenarios here are the contract of the registration flow:
a full event refuses newcomers, a freed seat can be taken again, and
parallel registrants never push the roster past ``max_participants``.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import event_payload, run_async
from shamba.database.engine import run_db
from shamba.database.models import EventParticipant, Notification
from shamba.services import event_service
from shamba.services.result import ErrorKind


def _roster_size(engine, event_id: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(EventParticipant).where(
                EventParticipant.event_id == event_id
            )
        )


# ===========================================================================
# Creation
# ===========================================================================
class TestCreateEvent:
    def test_defaults_and_capacity_state(self, events):
        result = events.create_event("organizer", event_payload(max_participants=5))

        assert result.ok
        event = result.data
        assert event["status"] == "upcoming"
        assert event["currency"] == "UGX"
        assert event["participants_count"] == 0
        assert event["spots_left"] == 5
        assert event["capacity_state"] == "open"
        assert event["is_registered"] is False

    def test_unlimited_capacity(self, events):
        event = events.create_event("organizer", event_payload()).data
        assert event["max_participants"] is None
        assert event["spots_left"] is None

    def test_iso_strings_are_accepted(self, events):
        result = events.create_event("organizer", event_payload(
            start_datetime="2030-03-01T08:00:00Z",
            end_datetime="2030-03-01T12:00:00+03:00",
        ))
        assert result.ok
        assert result.data["start_datetime"].startswith("2030-03-01T08:00:00")

    def test_virtual_event_needs_link(self, events):
        result = events.create_event(
            "organizer", event_payload(is_virtual=True, location="", virtual_link=None)
        )
        assert result.error.details["field"] == "virtual_link"

        ok = events.create_event("organizer", event_payload(
            is_virtual=True, location="", virtual_link="https://meet.example.org/coffee"
        ))
        assert ok.data["location"] == "Online"

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"title": ""}, "title"),
            ({"contact_info": None}, "contact_info"),
            ({"end_datetime": datetime(2000, 1, 1, tzinfo=UTC)}, "end_datetime"),
            ({"start_datetime": "next tuesday"}, "start_datetime"),
            ({"event_type": "party"}, "event_type"),
            ({"max_participants": 0}, "max_participants"),
            ({"max_participants": "ten"}, "max_participants"),
            ({"price": -5}, "price"),
            ({"currency": "KES"}, "currency"),
            ({"location": "  "}, "location"),
        ],
    )
    def test_validation(self, events, overrides, field):
        result = events.create_event("organizer", event_payload(**overrides))
        assert result.error.kind == ErrorKind.VALIDATION
        assert result.error.details["field"] == field

    def test_requires_login(self, events):
        result = events.create_event(None, event_payload())
        assert result.error.kind == ErrorKind.UNAUTHORIZED


# ===========================================================================
# Directory
# ===========================================================================
class TestDirectory:
    def test_upcoming_soonest_first_and_excludes_past(self, events, make_event):
        now = datetime.now(UTC)
        later = make_event(title="Later", start_datetime=now + timedelta(days=5),
                           end_datetime=now + timedelta(days=5, hours=2))
        sooner = make_event(title="Sooner", start_datetime=now + timedelta(days=1),
                            end_datetime=now + timedelta(days=1, hours=2))
        make_event(title="Past", start_datetime=now - timedelta(days=3),
                   end_datetime=now - timedelta(days=3) + timedelta(hours=2))

        listed = events.get_upcoming_events()
        assert [e["id"] for e in listed.data] == [sooner, later]

    def test_cancelled_events_are_hidden(self, events, make_event):
        eid = make_event()
        events.cancel_event(eid, "organizer")
        assert events.get_upcoming_events().data == []

    def test_type_filter(self, events, make_event):
        make_event(event_type="training")
        fair = make_event(event_type="market_day")
        listed = events.get_upcoming_events(event_type="market_day").data
        assert [e["id"] for e in listed] == [fair]

    def test_full_state_in_listing(self, events, make_event):
        eid = make_event(max_participants=1)
        events.register_for_event(eid, "farmer-a")

        listed = events.get_upcoming_events(viewer_id="farmer-a").data[0]
        assert listed["capacity_state"] == "full"
        assert listed["spots_left"] == 0
        assert listed["is_registered"] is True

    def test_user_events(self, events, make_event):
        eid = make_event()
        make_event(title="Other")
        events.register_for_event(eid, "farmer-a")
        assert [e["id"] for e in events.get_user_events("farmer-a").data] == [eid]

    def test_missing_event(self, events):
        assert events.get_event_by_id(404).error.kind == ErrorKind.NOT_FOUND


# ===========================================================================
# Registration
# ===========================================================================
class TestRegistration:
    def test_capacity_one_scenario(self, events, make_event, db_engine):
        """A takes the only seat, B is refused, A leaves, B gets in."""
        eid = make_event(max_participants=1)

        first = events.register_for_event(eid, "A")
        assert first.data["registered"] is True
        assert first.data["spots_left"] == 0

        refused = events.register_for_event(eid, "B")
        assert refused.error.kind == ErrorKind.CONFLICT
        assert refused.error.code == "event_full"

        left = events.unregister_from_event(eid, "A")
        assert left.data["participants_count"] == 0

        retry = events.register_for_event(eid, "B")
        assert retry.ok
        assert _roster_size(db_engine, eid) == 1

    def test_duplicate_registration(self, events, make_event, db_engine):
        eid = make_event()
        events.register_for_event(eid, "A")
        again = events.register_for_event(eid, "A")

        assert again.error.code == "already_registered"
        assert _roster_size(db_engine, eid) == 1

    def test_duplicate_is_reported_before_full(self, events, make_event):
        eid = make_event(max_participants=1)
        events.register_for_event(eid, "A")
        assert events.register_for_event(eid, "A").error.code == "already_registered"

    def test_cancelled_event_refuses_even_with_seats(self, events, make_event):
        eid = make_event(max_participants=50)
        events.cancel_event(eid, "organizer")
        result = events.register_for_event(eid, "A")
        assert result.error.code == "event_cancelled"

    def test_completed_event_refuses(self, events, make_event):
        now = datetime.now(UTC)
        eid = make_event(start_datetime=now - timedelta(hours=5),
                         end_datetime=now - timedelta(hours=1))
        assert events.complete_past_events().data == 1
        assert events.register_for_event(eid, "A").error.code == "event_completed"

    def test_missing_event(self, events):
        assert events.register_for_event(999, "A").error.kind == ErrorKind.NOT_FOUND

    def test_anonymous(self, events, make_event):
        eid = make_event()
        assert events.register_for_event(eid, None).error.kind == ErrorKind.UNAUTHORIZED

    def test_organizer_is_notified(self, events, make_event, db_engine):
        eid = make_event()
        events.register_for_event(eid, "A")
        with Session(db_engine) as session:
            note = session.scalars(select(Notification)).one()
        assert note.user_id == "organizer"
        assert note.type == "event_registration"

    def test_unregister_without_registration_is_ok(self, events, make_event):
        eid = make_event()
        result = events.unregister_from_event(eid, "nobody")
        assert result.data == {
            "registered": False,
            "message": "Successfully unregistered from the event.",
            "participants_count": 0,
        }

    def test_registration_status(self, events, make_event):
        eid = make_event()
        assert events.get_user_event_registration(eid, "A").data["is_registered"] is False
        events.register_for_event(eid, "A")

        status = events.get_user_event_registration(eid, "A").data
        assert status["is_registered"] is True
        assert status["registration"]["attendance_status"] == "registered"
        assert events.get_user_event_registration(eid, None).data["is_registered"] is False


class TestConcurrentRegistration:
    def test_parallel_registrants_never_overbook(self, events, make_event, db_engine):
        """Five members race for the last seat of a three-seat event."""
        eid = make_event(max_participants=3)
        events.register_for_event(eid, "early-1")
        events.register_for_event(eid, "early-2")

        async def _race():
            return await asyncio.gather(
                *(run_db(events.register_for_event, eid, f"late-{i}") for i in range(5))
            )

        results = run_async(_race())

        winners = [r for r in results if r.ok]
        losers = [r for r in results if not r.ok]
        assert len(winners) == 1
        assert {r.error.code for r in losers} == {"event_full"}
        assert _roster_size(db_engine, eid) == 3


# ===========================================================================
# Organizer actions
# ===========================================================================
class TestOrganizerActions:
    def test_participants_visible_to_organizer_only(self, events, make_event):
        eid = make_event()
        events.register_for_event(eid, "A")

        roster = events.get_event_participants(eid, "organizer")
        assert [p["user_id"] for p in roster.data] == ["A"]
        assert events.get_event_participants(eid, "A").error.kind == ErrorKind.UNAUTHORIZED

    def test_cancel_notifies_participants(self, events, make_event, engagement):
        eid = make_event()
        events.register_for_event(eid, "A")

        result = events.cancel_event(eid, "organizer")

        assert result.data["status"] == "cancelled"
        assert [n["type"] for n in engagement.list_notifications("A").data] == ["event_cancelled"]

    def test_only_organizer_cancels(self, events, make_event):
        eid = make_event()
        assert events.cancel_event(eid, "A").error.kind == ErrorKind.UNAUTHORIZED

    def test_mark_attendance(self, events, make_event):
        eid = make_event()
        events.register_for_event(eid, "A")

        marked = events.mark_attendance(eid, "organizer", "A", "attended")
        assert marked.data["attendance_status"] == "attended"
        assert events.mark_attendance(eid, "organizer", "A", "late").error.kind == (
            ErrorKind.VALIDATION
        )
        assert events.mark_attendance(eid, "organizer", "B", "attended").error.kind == (
            ErrorKind.NOT_FOUND
        )
        assert events.mark_attendance(eid, "A", "A", "attended").error.kind == (
            ErrorKind.UNAUTHORIZED
        )

    def test_complete_past_events_leaves_future_and_cancelled(self, events, make_event):
        now = datetime.now(UTC)
        make_event()
        cancelled = make_event(start_datetime=now - timedelta(hours=4),
                               end_datetime=now - timedelta(hours=2))
        events.cancel_event(cancelled, "organizer")
        make_event(start_datetime=now - timedelta(hours=4), end_datetime=now - timedelta(hours=2))

        assert events.complete_past_events().data == 1
        assert events.get_event_by_id(cancelled).data["status"] == "cancelled"


class TestEventLocks:
    def test_missing_events_leave_no_lock_behind(self, events):
        for event_id in range(10_000, 10_500):
            assert events.register_for_event(event_id, "A").error.kind == ErrorKind.NOT_FOUND
            events.unregister_from_event(event_id, "A")
            events.cancel_event(event_id, "A")
        assert event_service._event_locks == {}

    def test_lock_is_dropped_after_parallel_registrations(self, events, make_event):
        eid = make_event(max_participants=2)

        async def _race():
            return await asyncio.gather(
                *(run_db(events.register_for_event, eid, f"member-{i}") for i in range(6))
            )

        results = run_async(_race())

        assert sum(r.ok for r in results) == 2
        assert eid not in event_service._event_locks

    def test_lock_still_serialises_holders(self):
        with event_service._event_lock(7):
            assert event_service._event_locks[7].users == 1
            assert event_service._event_locks[7].lock.locked()
        assert 7 not in event_service._event_locks
