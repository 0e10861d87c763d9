"""
shamba.services.aggregation_service — Derived Counts & Community Insights
==========================================================================

Pure read composition over the other stores.  Nothing here is cached or
persisted; every list/detail read recomputes its counts with one grouped
query per count kind (never one query per row).

* ``decorate_*`` helpers run inside the caller's session and add
  ``*_count`` fields (and viewer flags) to already-serialized dicts.
* :class:`AggregationService` answers stand-alone questions: trending
  tags, community stats, top contributors, per-member stats and the
  recent activity feed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, desc, distinct, func, select, union, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shamba.config import CommunityConfig
from shamba.constants import iso
from shamba.database.models import (
    Answer,
    Bookmark,
    Comment,
    Event,
    EventParticipant,
    Like,
    Notification,
    Post,
    PostTag,
    Question,
    QuestionTag,
    Reaction,
    Tag,
    UserReputation,
)
from shamba.services.result import Result, guarded, require_user
from shamba.services.taxonomy_service import tag_dict

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Grouped count primitives
# ---------------------------------------------------------------------------
def _grouped_counts(session: Session, key_col, ids: list[int], *criteria) -> dict[int, int]:
    if not ids:
        return {}
    rows = session.execute(
        select(key_col, func.count())
        .where(key_col.in_(ids), *criteria)
        .group_by(key_col)
    ).all()
    return {k: n for k, n in rows}


def _signal_counts(session: Session, model: type, subject_type: str, ids: list[int]) -> dict:
    return _grouped_counts(session, model.subject_id, ids, model.subject_type == subject_type)


def _viewer_set(
    session: Session, model: type, subject_type: str, ids: list[int], viewer_id: str
) -> set[int]:
    if not ids:
        return set()
    return set(session.scalars(
        select(model.subject_id).where(
            model.subject_type == subject_type,
            model.subject_id.in_(ids),
            model.user_id == viewer_id,
        )
    ).all())


def _viewer_flags(
    session: Session,
    items: list[dict],
    subject_type: str,
    viewer_id: str | None,
    *,
    bookmarks: bool,
) -> None:
    ids = [i["id"] for i in items]
    liked = _viewer_set(session, Like, subject_type, ids, viewer_id) if viewer_id else set()
    saved = (
        _viewer_set(session, Bookmark, subject_type, ids, viewer_id)
        if viewer_id and bookmarks else set()
    )
    for item in items:
        item["is_liked"] = item["id"] in liked
        if bookmarks:
            item["is_bookmarked"] = item["id"] in saved


def participants_count(session: Session, event_id: int) -> int:
    return session.scalar(
        select(func.count()).select_from(EventParticipant).where(
            EventParticipant.event_id == event_id
        )
    ) or 0


# ---------------------------------------------------------------------------
# Decorators for serialized entities
# ---------------------------------------------------------------------------
def decorate_posts(
    session: Session, posts: list[dict], viewer_id: str | None = None
) -> list[dict]:
    """Attach ``comments_count``, ``likes_count`` and viewer flags."""
    ids = [p["id"] for p in posts]
    comments = _grouped_counts(session, Comment.post_id, ids)
    likes = _signal_counts(session, Like, "post", ids)
    for p in posts:
        p["comments_count"] = comments.get(p["id"], 0)
        p["likes_count"] = likes.get(p["id"], 0)
    _viewer_flags(session, posts, "post", viewer_id, bookmarks=True)
    return posts


def decorate_comments(
    session: Session, comments: list[dict], viewer_id: str | None = None
) -> list[dict]:
    ids = [c["id"] for c in comments]
    likes = _signal_counts(session, Like, "comment", ids)
    for c in comments:
        c["likes_count"] = likes.get(c["id"], 0)
    _viewer_flags(session, comments, "comment", viewer_id, bookmarks=False)
    return comments


def decorate_questions(
    session: Session, questions: list[dict], viewer_id: str | None = None
) -> list[dict]:
    """Attach ``answers_count``, ``likes_count``, ``reactions_count`` and viewer flags."""
    ids = [q["id"] for q in questions]
    answers = _grouped_counts(session, Answer.question_id, ids)
    likes = _signal_counts(session, Like, "question", ids)
    reactions = _signal_counts(session, Reaction, "question", ids)
    for q in questions:
        q["answers_count"] = answers.get(q["id"], 0)
        q["likes_count"] = likes.get(q["id"], 0)
        q["reactions_count"] = reactions.get(q["id"], 0)
    _viewer_flags(session, questions, "question", viewer_id, bookmarks=True)
    return questions


def decorate_answers(
    session: Session, answers: list[dict], viewer_id: str | None = None
) -> list[dict]:
    ids = [a["id"] for a in answers]
    likes = _signal_counts(session, Like, "answer", ids)
    for a in answers:
        a["likes_count"] = likes.get(a["id"], 0)
    _viewer_flags(session, answers, "answer", viewer_id, bookmarks=False)
    return answers


def decorate_events(session: Session, events: list[dict]) -> list[dict]:
    """Attach ``participants_count``, ``spots_left`` and the derived capacity state."""
    ids = [e["id"] for e in events]
    counts = _grouped_counts(session, EventParticipant.event_id, ids)
    for e in events:
        count = counts.get(e["id"], 0)
        e["participants_count"] = count
        limit = e.get("max_participants")
        if limit is None:
            e["spots_left"] = None
            e["capacity_state"] = "open"
        else:
            e["spots_left"] = max(0, limit - count)
            e["capacity_state"] = "open" if count < limit else "full"
    return events


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class AggregationService:
    """Community-wide derived views (trending, stats, contributors, activity)."""

    def __init__(self, engine: Engine, config: CommunityConfig | None = None) -> None:
        self.engine = engine
        self.config = config or CommunityConfig()

    def _trending_window(self, session: Session, since: datetime, limit: int) -> list[dict]:
        usage = union_all(
            select(PostTag.tag_id.label("tag_id"), PostTag.created_at.label("created_at")),
            select(QuestionTag.tag_id.label("tag_id"), QuestionTag.created_at.label("created_at")),
        ).subquery()
        uses = func.count().label("uses")
        rows = session.execute(
            select(Tag, uses)
            .join(usage, usage.c.tag_id == Tag.id)
            .where(usage.c.created_at >= since)
            .group_by(Tag.id)
            .order_by(desc("uses"), Tag.name)
            .limit(limit)
        ).all()
        return [{**tag_dict(tag), "recent_uses": n} for tag, n in rows]

    @guarded("load trending topics")
    def get_trending_tags(
        self, days: int | None = None, limit: int | None = None
    ) -> Result[dict]:
        """Tags ranked by associations created in the last *days* days.

        Falls back to the static ``usage_count`` ranking when the window
        query is unavailable or the window holds no activity.
        """
        days = days or self.config.trending_window_days
        limit = self.config.clamp_limit(limit or self.config.trending_limit)
        since = datetime.now(UTC) - timedelta(days=days)

        with Session(self.engine) as session:
            try:
                tags = self._trending_window(session, since, limit)
            except SQLAlchemyError:
                logger.warning(
                    "Trending window query failed, using usage_count", exc_info=True
                )
                session.rollback()
                tags = []
            source = "window"
            if not tags:
                source = "usage_count"
                rows = session.scalars(
                    select(Tag)
                    .where(Tag.usage_count > 0)
                    .order_by(Tag.usage_count.desc(), Tag.name)
                    .limit(limit)
                ).all()
                tags = [{**tag_dict(t), "recent_uses": None} for t in rows]
            return Result.success({"window_days": days, "source": source, "tags": tags})

    @guarded("load community stats")
    def get_community_stats(self) -> Result[dict]:
        now = datetime.now(UTC)
        month_ago = now - timedelta(days=30)
        with Session(self.engine) as session:
            def count(model, *criteria) -> int:
                return session.scalar(
                    select(func.count()).select_from(model).where(*criteria)
                ) or 0

            authors = union(
                select(Post.user_id.label("uid")).where(Post.created_at >= month_ago),
                select(Comment.user_id.label("uid")).where(Comment.created_at >= month_ago),
                select(Question.user_id.label("uid")).where(Question.created_at >= month_ago),
                select(Answer.user_id.label("uid")).where(Answer.created_at >= month_ago),
            ).subquery()
            active = session.scalar(select(func.count(distinct(authors.c.uid)))) or 0

            return Result.success({
                "total_posts": count(Post, Post.status == "published"),
                "total_questions": count(Question),
                "answered_questions": count(Question, Question.status == "answered"),
                "total_answers": count(Answer),
                "upcoming_events": count(
                    Event, Event.status == "upcoming", Event.end_datetime >= now
                ),
                "total_registrations": count(EventParticipant),
                "active_members_30d": active,
            })

    @guarded("load top contributors")
    def get_top_contributors(self, limit: int | None = None) -> Result[list]:
        """Members ranked by reputation, with their answer totals."""
        limit = self.config.clamp_limit(limit or 5)
        with Session(self.engine) as session:
            reps = session.scalars(
                select(UserReputation)
                .where(UserReputation.points > 0)
                .order_by(UserReputation.points.desc(), UserReputation.user_id)
                .limit(limit)
            ).all()
            answer_counts = _answer_counts(session, [r.user_id for r in reps])
            return Result.success([
                {
                    "user_id": r.user_id,
                    "points": r.points,
                    "answers_accepted": r.answers_accepted,
                    "answers_count": answer_counts.get(r.user_id, 0),
                }
                for r in reps
            ])

    @guarded("load member stats")
    def get_user_stats(self, user_id: str | None) -> Result[dict]:
        """Totals for one member: published posts, questions, answers,
        reputation points and unread notifications."""
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            def count(model, *criteria) -> int:
                return session.scalar(
                    select(func.count()).select_from(model).where(
                        model.user_id == user_id, *criteria
                    )
                ) or 0

            rep = session.get(UserReputation, user_id)
            return Result.success({
                "user_id": user_id,
                "posts_count": count(Post, Post.status == "published"),
                "questions_count": count(Question),
                "answers_count": count(Answer),
                "reputation_points": rep.points if rep else 0,
                "answers_accepted": rep.answers_accepted if rep else 0,
                "unread_notifications": count(Notification, Notification.is_read.is_(False)),
            })

    @guarded("load recent activity")
    def get_recent_activity(self, limit: int | None = None) -> Result[list]:
        """Newest published posts and questions, merged newest first.

        Each side is capped at *limit* before merging, so the merged
        list never needs more than ``2 * limit`` rows.
        """
        limit = self.config.clamp_limit(limit or 10)
        with Session(self.engine) as session:
            posts = session.scalars(
                select(Post)
                .where(Post.status == "published")
                .order_by(Post.created_at.desc(), Post.id.desc())
                .limit(limit)
            ).all()
            questions = session.scalars(
                select(Question)
                .order_by(Question.created_at.desc(), Question.id.desc())
                .limit(limit)
            ).all()
            comments = _grouped_counts(session, Comment.post_id, [p.id for p in posts])
            answers = _grouped_counts(session, Answer.question_id, [q.id for q in questions])

            merged = [("post", p, {"comments_count": comments.get(p.id, 0)}) for p in posts]
            merged += [
                ("question", q, {"answers_count": answers.get(q.id, 0), "status": q.status})
                for q in questions
            ]
            merged.sort(key=lambda row: (row[1].created_at, row[1].id), reverse=True)
            return Result.success([
                {
                    "type": kind,
                    "id": item.id,
                    "user_id": item.user_id,
                    "title": item.title,
                    "created_at": iso(item.created_at),
                    **counts,
                }
                for kind, item, counts in merged[:limit]
            ])


def _answer_counts(session: Session, user_ids: Iterable[str]) -> dict[str, int]:
    ids = list(user_ids)
    if not ids:
        return {}
    rows = session.execute(
        select(Answer.user_id, func.count())
        .where(Answer.user_id.in_(ids))
        .group_by(Answer.user_id)
    ).all()
    return {uid: n for uid, n in rows}

