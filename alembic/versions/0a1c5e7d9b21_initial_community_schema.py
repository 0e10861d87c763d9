"""Initial community schema: taxonomy, content, engagement, events

Revision ID: 0a1c5e7d9b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7d9b21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

USER_ID = sa.String(64)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _signal_table(name: str, *extra: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("subject_type", sa.String(20), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("user_id", USER_ID, nullable=False),
        *extra,
        _created_at(),
        sa.UniqueConstraint(
            "subject_type", "subject_id", "user_id", name=f"uq_{name}_subject_user"
        ),
    )


def upgrade() -> None:
    """Create every community table."""
    # -- taxonomy ---------------------------------------------------------------
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(7), nullable=False, server_default="#4caf50"),
        _created_at(),
    )
    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("slug", sa.String(60), nullable=False, unique=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_tags_usage_count", "tags", ["usage_count"])

    # -- posts & comments -----------------------------------------------------
    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", USER_ID, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="published"),
        sa.Column(
            "category_id", sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("image_url", sa.String(500), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_posts_status_created", "posts", ["status", "created_at"])
    op.create_index("ix_posts_category", "posts", ["category_id"])
    op.create_index("ix_posts_user", "posts", ["user_id"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "post_id", sa.Integer(),
            sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", USER_ID, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_comments_post_time", "comments", ["post_id", "created_at"])

    # -- questions & answers --------------------------------------------------
    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", USER_ID, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column(
            "category_id", sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True,
        ),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_questions_status_created", "questions", ["status", "created_at"])
    op.create_index("ix_questions_category", "questions", ["category_id"])

    op.create_table(
        "answers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "question_id", sa.Integer(),
            sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", USER_ID, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_answers_question_time", "answers", ["question_id", "created_at"])
    op.create_index("ix_answers_user", "answers", ["user_id"])

    # -- tag links --------------------------------------------------------------
    for table, fk, parent in (
        ("post_tags", "post_id", "posts"),
        ("question_tags", "question_id", "questions"),
    ):
        op.create_table(
            table,
            sa.Column(
                fk, sa.Integer(),
                sa.ForeignKey(f"{parent}.id", ondelete="CASCADE"), primary_key=True,
            ),
            sa.Column(
                "tag_id", sa.Integer(),
                sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True,
            ),
            _created_at(),
        )
        op.create_index(f"ix_{table}_tag_time", table, ["tag_id", "created_at"])

    # -- engagement signals -----------------------------------------------------
    _signal_table("likes")
    op.create_index("ix_likes_subject", "likes", ["subject_type", "subject_id"])
    _signal_table("bookmarks")
    op.create_index("ix_bookmarks_user_time", "bookmarks", ["user_id", "created_at"])
    _signal_table("reactions", sa.Column("reaction_type", sa.String(20), nullable=False))
    op.create_index("ix_reactions_subject", "reactions", ["subject_type", "subject_id"])

    # -- events -----------------------------------------------------------------
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organizer_id", USER_ID, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False, server_default="workshop"),
        sa.Column("start_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.String(200), nullable=False),
        sa.Column("virtual_link", sa.String(500), nullable=True),
        sa.Column("is_virtual", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="UGX"),
        sa.Column("requirements", sa.Text(), nullable=True),
        sa.Column("contact_info", sa.String(200), nullable=False),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column(
            "category_id", sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="upcoming"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "max_participants IS NULL OR max_participants >= 1",
            name="ck_events_max_participants_positive",
        ),
        sa.CheckConstraint(
            "status IN ('upcoming', 'cancelled', 'completed')", name="ck_events_status"
        ),
    )
    op.create_index("ix_events_status_start", "events", ["status", "start_datetime"])

    op.create_table(
        "event_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "event_id", sa.Integer(),
            sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", USER_ID, nullable=False),
        sa.Column(
            "registration_date", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column(
            "attendance_status", sa.String(20), nullable=False, server_default="registered"
        ),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_participants_event_user"),
    )
    op.create_index("ix_event_participants_user", "event_participants", ["user_id"])

    # -- side tables ------------------------------------------------------------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", USER_ID, nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"])

    op.create_table(
        "user_reputation",
        sa.Column("user_id", USER_ID, primary_key=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("answers_accepted", sa.Integer(), nullable=False, server_default="0"),
        _updated_at(),
    )
    op.create_index("ix_user_reputation_points", "user_reputation", ["points"])


def downgrade() -> None:
    """Drop every community table, children first."""
    for table in (
        "user_reputation",
        "notifications",
        "event_participants",
        "events",
        "reactions",
        "bookmarks",
        "likes",
        "question_tags",
        "post_tags",
        "answers",
        "questions",
        "comments",
        "posts",
        "tags",
        "categories",
    ):
        op.drop_table(table)
