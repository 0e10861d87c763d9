"""
shamba.database.queries — Named SELECT Shapes
==============================================

Every join shape the services need ("post with tags and category",
"upcoming events", …) is built here once and reused, instead of being
composed inline per call.  Functions return un-executed ``Select``
statements; callers run them inside their own session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Select, exists, or_, select
from sqlalchemy.orm import joinedload, selectinload

from shamba.database.models import (
    Answer,
    Event,
    EventParticipant,
    Post,
    PostTag,
    Question,
    QuestionTag,
    Tag,
)


@dataclass(frozen=True, slots=True)
class ContentFilter:
    """Filter for post and question listings.

    ``tag`` is a tag slug.  ``unanswered`` only applies to questions.
    ``search`` is a plain case-insensitive substring match on title and
    content; there is no relevance ranking.
    """

    category_id: int | None = None
    tag: str | None = None
    author_id: str | None = None
    status: str | None = None
    search: str | None = None
    unanswered: bool = False
    limit: int = 20
    offset: int = 0


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
def post_with_relations() -> Select:
    """A post with its category and tags eagerly loaded."""
    return select(Post).options(
        joinedload(Post.category),
        selectinload(Post.tags),
    )


def posts_matching(flt: ContentFilter) -> Select:
    stmt = post_with_relations()
    if flt.category_id is not None:
        stmt = stmt.where(Post.category_id == flt.category_id)
    if flt.author_id is not None:
        stmt = stmt.where(Post.user_id == flt.author_id)
    stmt = stmt.where(Post.status == (flt.status or "published"))
    if flt.tag:
        stmt = stmt.where(
            exists().where(
                PostTag.post_id == Post.id,
                PostTag.tag_id == Tag.id,
                Tag.slug == flt.tag,
            )
        )
    if flt.search:
        pattern = f"%{flt.search.strip()}%"
        stmt = stmt.where(or_(Post.title.ilike(pattern), Post.content.ilike(pattern)))
    return (
        stmt.order_by(Post.created_at.desc(), Post.id.desc())
        .offset(flt.offset)
        .limit(flt.limit)
    )


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------
def question_with_relations() -> Select:
    """A question with its category and tags eagerly loaded."""
    return select(Question).options(
        joinedload(Question.category),
        selectinload(Question.tags),
    )


def questions_matching(flt: ContentFilter) -> Select:
    stmt = question_with_relations()
    if flt.category_id is not None:
        stmt = stmt.where(Question.category_id == flt.category_id)
    if flt.author_id is not None:
        stmt = stmt.where(Question.user_id == flt.author_id)
    if flt.status is not None:
        stmt = stmt.where(Question.status == flt.status)
    if flt.unanswered:
        stmt = stmt.where(~exists().where(Answer.question_id == Question.id))
    if flt.tag:
        stmt = stmt.where(
            exists().where(
                QuestionTag.question_id == Question.id,
                QuestionTag.tag_id == Tag.id,
                Tag.slug == flt.tag,
            )
        )
    if flt.search:
        pattern = f"%{flt.search.strip()}%"
        stmt = stmt.where(
            or_(Question.title.ilike(pattern), Question.content.ilike(pattern))
        )
    return (
        stmt.order_by(Question.created_at.desc(), Question.id.desc())
        .offset(flt.offset)
        .limit(flt.limit)
    )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
def event_with_category() -> Select:
    return select(Event).options(joinedload(Event.category))


def upcoming_events(
    now: datetime,
    limit: int,
    *,
    event_type: str | None = None,
    category_id: int | None = None,
) -> Select:
    """Events still ahead of *now* and not cancelled, soonest first."""
    stmt = event_with_category().where(
        Event.status == "upcoming",
        Event.end_datetime >= now,
    )
    if event_type is not None:
        stmt = stmt.where(Event.event_type == event_type)
    if category_id is not None:
        stmt = stmt.where(Event.category_id == category_id)
    return stmt.order_by(Event.start_datetime.asc(), Event.id.asc()).limit(limit)


def events_for_user(user_id: str) -> Select:
    """Events *user_id* is registered for, soonest first."""
    return (
        event_with_category()
        .join(EventParticipant, EventParticipant.event_id == Event.id)
        .where(EventParticipant.user_id == user_id)
        .order_by(Event.start_datetime.asc(), Event.id.asc())
    )
