"""
shamba.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- categories          — Shared classification for posts, questions, events
- tags                — Free-form labels with a static usage counter
- posts               — Discussion posts
- comments            — Flat replies to posts (no nesting)
- questions           — Q&A questions
- answers             — Replies to questions, one may be accepted
- post_tags           — Post ↔ tag links (composite PK)
- question_tags       — Question ↔ tag links (composite PK)
- likes               — Binary like per (subject, user)
- bookmarks           — Binary bookmark per (subject, user)
- reactions           — Single-valued reaction per (subject, user)
- events              — Workshops, webinars, field visits, …
- event_participants  — Registration roster, unique per (event, user)
- notifications       — Append-only inbox; only ``is_read`` mutates
- user_reputation     — Per-member contribution points

User references are opaque strings issued by the external identity
provider; there is no users table.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

USER_ID_LENGTH = 64


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Shamba ORM models."""


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------
class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#4caf50")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_tags_usage_count", "usage_count"),
    )

    def __repr__(self) -> str:
        return f"<Tag id={self.id} slug={self.slug!r} used={self.usage_count}>"


class PostTag(Base):
    """Post ↔ tag association.  The composite PK forbids duplicates."""
    __tablename__ = "post_tags"

    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_post_tags_tag_time", "tag_id", "created_at"),
    )


class QuestionTag(Base):
    """Question ↔ tag association.  The composite PK forbids duplicates."""
    __tablename__ = "question_tags"

    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_question_tags_tag_time", "tag_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Content — posts & comments
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="published")
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    image_url: Mapped[str | None] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    category: Mapped[Category | None] = relationship()
    tags: Mapped[list[Tag]] = relationship(
        secondary="post_tags", viewonly=True, order_by="Tag.name"
    )
    comments: Mapped[list[Comment]] = relationship(
        back_populates="post", order_by="Comment.created_at", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_posts_status_created", "status", "created_at"),
        Index("ix_posts_category", "category_id"),
        Index("ix_posts_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id} title={self.title!r} status={self.status}>"


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    post: Mapped[Post] = relationship(back_populates="comments")

    __table_args__ = (
        Index("ix_comments_post_time", "post_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Comment id={self.id} post={self.post_id}>"


# ---------------------------------------------------------------------------
# Content — questions & answers
# ---------------------------------------------------------------------------
class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    category: Mapped[Category | None] = relationship()
    tags: Mapped[list[Tag]] = relationship(
        secondary="question_tags", viewonly=True, order_by="Tag.name"
    )
    answers: Mapped[list[Answer]] = relationship(
        back_populates="question", order_by="Answer.created_at", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_questions_status_created", "status", "created_at"),
        Index("ix_questions_category", "category_id"),
    )

    def __repr__(self) -> str:
        return f"<Question id={self.id} title={self.title!r} status={self.status}>"


class Answer(Base):
    __tablename__ = "answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    question: Mapped[Question] = relationship(back_populates="answers")

    __table_args__ = (
        Index("ix_answers_question_time", "question_id", "created_at"),
        Index("ix_answers_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Answer id={self.id} question={self.question_id} accepted={self.is_accepted}>"


# ---------------------------------------------------------------------------
# Engagement signals — uniqueness per (subject, user) is the source of truth
# ---------------------------------------------------------------------------
class Like(Base):
    __tablename__ = "likes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("subject_type", "subject_id", "user_id", name="uq_likes_subject_user"),
        Index("ix_likes_subject", "subject_type", "subject_id"),
    )

    def __repr__(self) -> str:
        return f"<Like {self.subject_type}={self.subject_id} user={self.user_id!r}>"


class Bookmark(Base):
    __tablename__ = "bookmarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "subject_type", "subject_id", "user_id", name="uq_bookmarks_subject_user"
        ),
        Index("ix_bookmarks_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Bookmark {self.subject_type}={self.subject_id} user={self.user_id!r}>"


class Reaction(Base):
    """Single-valued: one row per (subject, user), ``reaction_type`` varies."""
    __tablename__ = "reactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    reaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "subject_type", "subject_id", "user_id", name="uq_reactions_subject_user"
        ),
        Index("ix_reactions_subject", "subject_type", "subject_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Reaction {self.subject_type}={self.subject_id} "
            f"user={self.user_id!r} type={self.reaction_type!r}>"
        )


# ---------------------------------------------------------------------------
# Events & registration
# ---------------------------------------------------------------------------
class Event(Base):
    """A capacity-bounded gathering.

    ``max_participants`` NULL means unlimited.  The open/full capacity
    state is derived at read and registration time, never stored.
    """
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organizer_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False, default="workshop")
    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    virtual_link: Mapped[str | None] = mapped_column(String(500), default=None)
    is_virtual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="UGX")
    requirements: Mapped[str | None] = mapped_column(Text, default=None)
    contact_info: Mapped[str] = mapped_column(String(200), nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(500), default=None)
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="upcoming")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    category: Mapped[Category | None] = relationship()
    participants: Mapped[list[EventParticipant]] = relationship(
        back_populates="event", passive_deletes=True,
        order_by="EventParticipant.registration_date",
    )

    __table_args__ = (
        CheckConstraint(
            "max_participants IS NULL OR max_participants >= 1",
            name="ck_events_max_participants_positive",
        ),
        CheckConstraint(
            "status IN ('upcoming', 'cancelled', 'completed')",
            name="ck_events_status",
        ),
        Index("ix_events_status_start", "status", "start_datetime"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} title={self.title!r} status={self.status}>"


class EventParticipant(Base):
    __tablename__ = "event_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    registration_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    attendance_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="registered"
    )

    event: Mapped[Event] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participants_event_user"),
        Index("ix_event_participants_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<EventParticipant event={self.event_id} user={self.user_id!r}>"


# ---------------------------------------------------------------------------
# Side tables — notifications & reputation
# ---------------------------------------------------------------------------
class Notification(Base):
    """Append-only inbox entry; only ``is_read`` is ever updated."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, default=None)
    link: Mapped[str | None] = mapped_column(String(500), default=None)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id!r} read={self.is_read}>"


class UserReputation(Base):
    __tablename__ = "user_reputation"

    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), primary_key=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    answers_accepted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_user_reputation_points", "points"),
    )

    def __repr__(self) -> str:
        return f"<UserReputation user={self.user_id!r} points={self.points}>"
