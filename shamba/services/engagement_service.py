"""
shamba.services.engagement_service — Likes, Bookmarks, Reactions & Side Tables
===============================================================================

Per-(subject, user) engagement state:

* **Likes / bookmarks** are binary toggles ``absent ⇄ present``.
* **Reactions** are single-valued: setting one replaces any previous
  reaction of the same user on the same subject.

The unique constraints on ``likes``, ``bookmarks`` and ``reactions`` are
the source of truth.  A toggle first tries to delete the caller's row;
only when nothing was deleted does it insert, inside a SAVEPOINT.  If a
concurrent duplicate request (double-click) won the race, the insert
hits the constraint and the signal is reported as already present rather
than surfacing an error.

Also hosts the notification inbox and reputation ledger, which the
content and event services write to inside their own transactions via
:func:`notify` and :func:`award_points`.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shamba.config import CommunityConfig
from shamba.constants import (
    BOOKMARKABLE_SUBJECTS,
    LIKEABLE_SUBJECTS,
    REACTABLE_SUBJECTS,
    iso,
)
from shamba.database.models import (
    Answer,
    Bookmark,
    Comment,
    Like,
    Notification,
    Post,
    Question,
    Reaction,
    UserReputation,
)
from shamba.services.result import (
    Result,
    guarded,
    not_found,
    require_user,
    validation,
)

logger = logging.getLogger(__name__)

SUBJECT_MODELS: dict[str, type] = {
    "post": Post,
    "comment": Comment,
    "question": Question,
    "answer": Answer,
}


# ---------------------------------------------------------------------------
# Side-table helpers (run inside the caller's session)
# ---------------------------------------------------------------------------
def notify(
    session: Session,
    *,
    user_id: str,
    actor_id: str | None,
    type: str,
    title: str,
    message: str | None = None,
    link: str | None = None,
    payload: dict | None = None,
) -> Notification | None:
    """Append a notification for *user_id*; nothing when the actor is the recipient."""
    if actor_id is not None and actor_id == user_id:
        return None
    note = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
        payload=payload,
    )
    session.add(note)
    return note


def award_points(
    session: Session, user_id: str, points: int, *, accepted_answer: int = 0
) -> None:
    """Add *points* (may be negative) to *user_id*'s reputation, floored at zero."""
    if not points and not accepted_answer:
        return
    rep = session.get(UserReputation, user_id)
    if rep is None:
        try:
            with session.begin_nested():
                rep = UserReputation(user_id=user_id, points=0, answers_accepted=0)
                session.add(rep)
                session.flush()
        except IntegrityError:
            rep = session.get(UserReputation, user_id, populate_existing=True)
    rep.points = max(0, rep.points + points)
    rep.answers_accepted = max(0, rep.answers_accepted + accepted_answer)


def subject_link(subject_type: str, subject: Any) -> str:
    """Client route for a subject, used in notification links."""
    if subject_type == "post":
        return f"/community/posts/{subject.id}"
    if subject_type == "comment":
        return f"/community/posts/{subject.post_id}#comment-{subject.id}"
    if subject_type == "question":
        return f"/community/questions/{subject.id}"
    if subject_type == "answer":
        return f"/community/questions/{subject.question_id}#answer-{subject.id}"
    raise ValueError(f"Unknown subject type '{subject_type}'")


def notification_dict(note: Notification) -> dict[str, Any]:
    return {
        "id": note.id,
        "type": note.type,
        "title": note.title,
        "message": note.message,
        "link": note.link,
        "payload": note.payload,
        "is_read": note.is_read,
        "created_at": iso(note.created_at),
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class EngagementService:
    """Toggle ledger for likes/bookmarks, reactions, notifications, reputation."""

    def __init__(self, engine: Engine, config: CommunityConfig | None = None) -> None:
        self.engine = engine
        self.config = config or CommunityConfig()

    # -- internals ------------------------------------------------------------
    def _check_subject(
        self, allowed: frozenset[str], subject_type: str, user_id: str | None
    ) -> Result | None:
        if (denied := require_user(user_id)) is not None:
            return denied
        if subject_type not in allowed:
            return validation(
                f"Unsupported subject type '{subject_type}'.",
                field="subject_type", allowed=sorted(allowed),
            )
        return None

    @staticmethod
    def _load_subject(session: Session, subject_type: str, subject_id: int):
        return session.get(SUBJECT_MODELS[subject_type], subject_id)

    @staticmethod
    def _toggle(
        session: Session, model: type, subject_type: str, subject_id: int, user_id: str
    ) -> tuple[bool, bool]:
        """Flip the row for (subject, user).

        Returns ``(present, changed)``.  ``changed`` is False when a
        concurrent request had already inserted the row.
        """
        removed = session.execute(
            delete(model).where(
                model.subject_type == subject_type,
                model.subject_id == subject_id,
                model.user_id == user_id,
            )
        ).rowcount
        if removed:
            return False, True
        try:
            with session.begin_nested():
                session.add(model(subject_type=subject_type, subject_id=subject_id, user_id=user_id))
                session.flush()
        except IntegrityError:
            logger.debug(
                "Duplicate %s on %s %d by %s — already present",
                model.__tablename__, subject_type, subject_id, user_id,
            )
            return True, False
        return True, True

    @staticmethod
    def _count(session: Session, model: type, subject_type: str, subject_id: int) -> int:
        return session.scalar(
            select(func.count()).select_from(model).where(
                model.subject_type == subject_type, model.subject_id == subject_id
            )
        ) or 0

    # -- likes ------------------------------------------------------------------
    @guarded("update like")
    def toggle_like(self, subject_type: str, subject_id: int, user_id: str | None) -> Result[dict]:
        """Flip the caller's like on a post, comment, question or answer.

        ``data["liked"]`` is the new state.  The subject's author gains a
        reputation point (and a notification) when a like is added and
        loses the point when it is removed.
        """
        if (err := self._check_subject(LIKEABLE_SUBJECTS, subject_type, user_id)):
            return err
        with Session(self.engine) as session:
            subject = self._load_subject(session, subject_type, subject_id)
            if subject is None:
                return not_found(subject_type.capitalize(), subject_id)

            liked, changed = self._toggle(session, Like, subject_type, subject_id, user_id)
            if changed and subject.user_id != user_id:
                points = self.config.reputation.like_received
                award_points(session, subject.user_id, points if liked else -points)
                if liked:
                    notify(
                        session,
                        user_id=subject.user_id,
                        actor_id=user_id,
                        type="like",
                        title=f"Someone liked your {subject_type}",
                        link=subject_link(subject_type, subject),
                        payload={"subject_type": subject_type, "subject_id": subject_id},
                    )
            count = self._count(session, Like, subject_type, subject_id)
            session.commit()
            return Result.success({"liked": liked, "likes_count": count})

    # -- bookmarks --------------------------------------------------------------
    @guarded("update bookmark")
    def toggle_bookmark(
        self, subject_type: str, subject_id: int, user_id: str | None
    ) -> Result[dict]:
        if (err := self._check_subject(BOOKMARKABLE_SUBJECTS, subject_type, user_id)):
            return err
        with Session(self.engine) as session:
            if self._load_subject(session, subject_type, subject_id) is None:
                return not_found(subject_type.capitalize(), subject_id)
            bookmarked, _ = self._toggle(session, Bookmark, subject_type, subject_id, user_id)
            session.commit()
            return Result.success({"bookmarked": bookmarked})

    @guarded("load bookmarks")
    def get_user_bookmarks(self, user_id: str | None, limit: int | None = None) -> Result[list]:
        if (denied := require_user(user_id)) is not None:
            return denied
        limit = self.config.clamp_limit(limit)
        with Session(self.engine) as session:
            rows = session.scalars(
                select(Bookmark)
                .where(Bookmark.user_id == user_id)
                .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
                .limit(limit)
            ).all()
            items = []
            for b in rows:
                subject = self._load_subject(session, b.subject_type, b.subject_id)
                if subject is None:
                    continue
                items.append({
                    "subject_type": b.subject_type,
                    "subject_id": b.subject_id,
                    "title": subject.title,
                    "bookmarked_at": iso(b.created_at),
                })
            return Result.success(items)

    # -- reactions -------------------------------------------------------------
    @guarded("update reaction")
    def set_reaction(
        self, subject_type: str, subject_id: int, user_id: str | None, reaction_type: str
    ) -> Result[dict]:
        """Make *reaction_type* the caller's only reaction on the subject."""
        if (err := self._check_subject(REACTABLE_SUBJECTS, subject_type, user_id)):
            return err
        reaction_type = (reaction_type or "").strip().lower()
        if reaction_type not in self.config.reaction_types:
            return validation(
                f"Unknown reaction '{reaction_type}'.",
                field="reaction_type", allowed=list(self.config.reaction_types),
            )
        where = and_(
            Reaction.subject_type == subject_type,
            Reaction.subject_id == subject_id,
            Reaction.user_id == user_id,
        )
        with Session(self.engine) as session:
            if self._load_subject(session, subject_type, subject_id) is None:
                return not_found(subject_type.capitalize(), subject_id)

            session.execute(delete(Reaction).where(where))
            try:
                with session.begin_nested():
                    session.add(Reaction(
                        subject_type=subject_type,
                        subject_id=subject_id,
                        user_id=user_id,
                        reaction_type=reaction_type,
                    ))
                    session.flush()
            except IntegrityError:
                # A concurrent request re-inserted first; last writer wins.
                session.execute(update(Reaction).where(where).values(reaction_type=reaction_type))
            counts = self._reaction_counts(session, subject_type, subject_id)
            session.commit()
            return Result.success({"reaction": reaction_type, "counts": counts})

    @guarded("update reaction")
    def clear_reaction(
        self, subject_type: str, subject_id: int, user_id: str | None
    ) -> Result[dict]:
        """Remove the caller's reaction; clearing nothing is not an error."""
        if (err := self._check_subject(REACTABLE_SUBJECTS, subject_type, user_id)):
            return err
        with Session(self.engine) as session:
            session.execute(
                delete(Reaction).where(
                    Reaction.subject_type == subject_type,
                    Reaction.subject_id == subject_id,
                    Reaction.user_id == user_id,
                )
            )
            counts = self._reaction_counts(session, subject_type, subject_id)
            session.commit()
            return Result.success({"reaction": None, "counts": counts})

    @guarded("load reactions")
    def get_reactions(
        self, subject_type: str, subject_id: int, viewer_id: str | None = None
    ) -> Result[dict]:
        if subject_type not in REACTABLE_SUBJECTS:
            return validation(f"Unsupported subject type '{subject_type}'.", field="subject_type")
        with Session(self.engine) as session:
            counts = self._reaction_counts(session, subject_type, subject_id)
            mine = None
            if viewer_id:
                mine = session.scalar(
                    select(Reaction.reaction_type).where(
                        Reaction.subject_type == subject_type,
                        Reaction.subject_id == subject_id,
                        Reaction.user_id == viewer_id,
                    )
                )
            return Result.success({"counts": counts, "mine": mine})

    def _reaction_counts(
        self, session: Session, subject_type: str, subject_id: int
    ) -> dict[str, int]:
        rows = session.execute(
            select(Reaction.reaction_type, func.count())
            .where(Reaction.subject_type == subject_type, Reaction.subject_id == subject_id)
            .group_by(Reaction.reaction_type)
        ).all()
        counts = {t: 0 for t in self.config.reaction_types}
        counts.update({t: n for t, n in rows})
        return counts

    # -- notifications -------------------------------------------------------
    @guarded("load notifications")
    def list_notifications(
        self, user_id: str | None, *, unread_only: bool = False, limit: int | None = None
    ) -> Result[list]:
        if (denied := require_user(user_id)) is not None:
            return denied
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(
            self.config.clamp_limit(limit)
        )
        with Session(self.engine) as session:
            return Result.success([notification_dict(n) for n in session.scalars(stmt).all()])

    @guarded("load notifications")
    def unread_count(self, user_id: str | None) -> Result[int]:
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            count = session.scalar(
                select(func.count()).select_from(Notification).where(
                    Notification.user_id == user_id, Notification.is_read.is_(False)
                )
            ) or 0
            return Result.success(count)

    @guarded("update notification")
    def mark_notification_read(self, notification_id: int, user_id: str | None) -> Result[dict]:
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine, expire_on_commit=False) as session:
            note = session.get(Notification, notification_id)
            # Other users' notifications are reported as missing.
            if note is None or note.user_id != user_id:
                return not_found("Notification", notification_id)
            note.is_read = True
            session.commit()
            return Result.success(notification_dict(note))

    @guarded("update notifications")
    def mark_all_read(self, user_id: str | None) -> Result[int]:
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            updated = session.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.is_read.is_(False))
                .values(is_read=True)
            ).rowcount
            session.commit()
            return Result.success(updated)

    # -- reputation ----------------------------------------------------------
    @guarded("load reputation")
    def get_reputation(self, user_id: str) -> Result[dict]:
        with Session(self.engine) as session:
            rep = session.get(UserReputation, user_id)
            return Result.success({
                "user_id": user_id,
                "points": rep.points if rep else 0,
                "answers_accepted": rep.answers_accepted if rep else 0,
            })
