"""
shamba.constants — Shared Constants & Helpers
==============================================

Single source of truth for enumerated values, user-facing messages and
the slug helper.  Import from here instead of duplicating in services
and routes.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Enumerated values (stored as plain strings in the DB)
# ---------------------------------------------------------------------------
POST_STATUSES: frozenset[str] = frozenset({"published", "draft", "archived"})
QUESTION_STATUSES: frozenset[str] = frozenset({"open", "answered", "closed"})

EVENT_TYPES: frozenset[str] = frozenset({
    "workshop", "webinar", "field_visit", "conference",
    "market_day", "competition", "training", "exhibition",
})
EVENT_CURRENCIES: frozenset[str] = frozenset({"UGX", "USD", "EUR"})
ATTENDANCE_STATUSES: frozenset[str] = frozenset({"registered", "attended", "no_show"})

# Subject types accepted per engagement signal
LIKEABLE_SUBJECTS: frozenset[str] = frozenset({"post", "comment", "question", "answer"})
BOOKMARKABLE_SUBJECTS: frozenset[str] = frozenset({"post", "question"})
REACTABLE_SUBJECTS: frozenset[str] = frozenset({"post", "comment", "question", "answer"})

DEFAULT_CATEGORY_COLOR = "#4caf50"

# ---------------------------------------------------------------------------
# User-facing messages (safe for direct display)
# ---------------------------------------------------------------------------
MSG_REGISTERED = "Successfully registered for the event!"
MSG_UNREGISTERED = "Successfully unregistered from the event."
MSG_ALREADY_REGISTERED = "You are already registered for this event."
MSG_EVENT_FULL = "Event is full."
MSG_EVENT_CANCELLED = "This event has been cancelled."
MSG_EVENT_COMPLETED = "This event has already taken place."
MSG_LOGIN_REQUIRED = "Please log in to continue."
MSG_NOT_OWNER = "You can only modify your own content."

# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------
_SLUG_STRIP = re.compile(r"[^a-z0-9\s-]")
_SLUG_DASHES = re.compile(r"[\s_-]+")
_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def slugify(text: str) -> str:
    """Lower-case *text* and collapse everything else into single dashes.

    ``"Eastern Region"`` → ``"eastern-region"``.
    """
    value = _SLUG_STRIP.sub("", text.strip().lower())
    return _SLUG_DASHES.sub("-", value).strip("-")


def is_hex_color(value: str) -> bool:
    return bool(_HEX_COLOR.match(value))


def iso(value) -> str | None:
    """ISO-8601 string for a datetime, ``None`` passes through."""
    return value.isoformat() if value is not None else None
