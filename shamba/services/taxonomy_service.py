"""
shamba.services.taxonomy_service — Categories, Tags & Tag-Set Replacement
==========================================================================

Owns category/tag metadata and the post/question ↔ tag link tables.

The central operation is :meth:`TaxonomyService.ensure_tag_set`, a
**set replacement**: after it succeeds the subject's tag set equals the
given ids exactly.  The diff (links to drop, links to add, usage counter
adjustments) is applied in a single transaction, and unknown tag ids
abort the whole write, so a failure never leaves a half-applied set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Engine, case, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shamba.config import CommunityConfig
from shamba.constants import DEFAULT_CATEGORY_COLOR, is_hex_color, slugify
from shamba.database.models import Category, Post, PostTag, Question, QuestionTag, Tag
from shamba.services.result import (
    ErrorKind,
    Result,
    ServiceError,
    conflict,
    guarded,
    not_found,
    validation,
)

logger = logging.getLogger(__name__)

MAX_TAG_NAME_LENGTH = 50
MAX_TAGS_PER_SUBJECT = 10

# subject_type → (link model, subject model, link FK column name)
_LINKS: dict[str, tuple[type, type, str]] = {
    "post": (PostTag, Post, "post_id"),
    "question": (QuestionTag, Question, "question_id"),
}


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def tag_dict(tag: Tag) -> dict[str, Any]:
    return {
        "id": tag.id,
        "name": tag.name,
        "slug": tag.slug,
        "usage_count": tag.usage_count,
    }


def category_dict(category: Category | None) -> dict[str, Any] | None:
    if category is None:
        return None
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "color": category.color,
        "description": category.description,
    }


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------
def normalize_tag_ids(tag_ids: Iterable[Any] | None) -> tuple[list[int], list[Any]]:
    """Split *tag_ids* into well-formed positive ints and malformed values.

    Digit strings are accepted; booleans are not.  Duplicates collapse.
    """
    valid: list[int] = []
    malformed: list[Any] = []
    for raw in tag_ids or ():
        if isinstance(raw, bool):
            malformed.append(raw)
            continue
        if isinstance(raw, int):
            value = raw
        elif isinstance(raw, str) and raw.strip().isdigit():
            value = int(raw.strip())
        else:
            malformed.append(raw)
            continue
        if value <= 0:
            malformed.append(raw)
        elif value not in valid:
            valid.append(value)
    return valid, malformed


def _link_target(subject_type: str) -> tuple[type, type, str] | None:
    return _LINKS.get(subject_type)


def detach_tags(session: Session, subject_type: str, subject_id: int) -> int:
    """Remove every tag link of a subject inside the caller's transaction.

    Decrements ``usage_count`` for each detached tag.  Returns the number
    of links removed.
    """
    link_model, _, fk_name = _LINKS[subject_type]
    fk = getattr(link_model, fk_name)
    tag_ids = list(session.scalars(select(link_model.tag_id).where(fk == subject_id)).all())
    if not tag_ids:
        return 0
    session.execute(delete(link_model).where(fk == subject_id))
    _adjust_usage(session, tag_ids, -1)
    return len(tag_ids)


def _adjust_usage(session: Session, tag_ids: Iterable[int], delta: int) -> None:
    ids = list(tag_ids)
    if not ids:
        return
    if delta >= 0:
        new_value = Tag.usage_count + delta
    else:
        new_value = case(
            (Tag.usage_count + delta > 0, Tag.usage_count + delta),
            else_=0,
        )
    session.execute(
        update(Tag).where(Tag.id.in_(ids)).values(usage_count=new_value),
        execution_options={"synchronize_session": False},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class TaxonomyService:
    """Categories and tags, plus the subject ↔ tag association sets."""

    def __init__(self, engine: Engine, config: CommunityConfig | None = None) -> None:
        self.engine = engine
        self.config = config or CommunityConfig()

    # -- categories ---------------------------------------------------------
    @guarded("load categories")
    def get_forum_categories(self) -> Result[list[dict]]:
        """All categories with their published post and question counts."""
        with Session(self.engine) as session:
            post_counts = dict(
                session.execute(
                    select(Post.category_id, func.count(Post.id))
                    .where(Post.status == "published", Post.category_id.is_not(None))
                    .group_by(Post.category_id)
                ).all()
            )
            question_counts = dict(
                session.execute(
                    select(Question.category_id, func.count(Question.id))
                    .where(Question.category_id.is_not(None))
                    .group_by(Question.category_id)
                ).all()
            )
            rows = session.scalars(select(Category).order_by(Category.name)).all()
            categories = []
            for c in rows:
                entry = category_dict(c)
                entry["posts_count"] = post_counts.get(c.id, 0)
                entry["questions_count"] = question_counts.get(c.id, 0)
                categories.append(entry)
            return Result.success(categories)

    @guarded("create category")
    def create_category(
        self,
        name: str,
        *,
        color: str | None = None,
        description: str | None = None,
    ) -> Result[dict]:
        name = (name or "").strip()
        if not name:
            return validation("Category name is required.", field="name")
        slug = slugify(name)
        if not slug:
            return validation("Category name must contain letters or digits.", field="name")
        color = color or DEFAULT_CATEGORY_COLOR
        if not is_hex_color(color):
            return validation("Color must be a hex value like #4caf50.", field="color")

        with Session(self.engine, expire_on_commit=False) as session:
            category = Category(name=name, slug=slug, color=color, description=description)
            session.add(category)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return conflict(f"Category '{name}' already exists.", "duplicate", name=name)
            logger.info("Created category %d (%s)", category.id, slug)
            return Result.success(category_dict(category))

    # -- tags -----------------------------------------------------------------
    @guarded("load tags")
    def get_popular_tags(self, limit: int | None = None) -> Result[list[dict]]:
        limit = self.config.clamp_limit(limit or self.config.popular_tags_limit)
        with Session(self.engine) as session:
            rows = session.scalars(
                select(Tag).order_by(Tag.usage_count.desc(), Tag.name).limit(limit)
            ).all()
            return Result.success([tag_dict(t) for t in rows])

    @guarded("resolve tags")
    def resolve_tags(self, names: Iterable[str]) -> Result[list[dict]]:
        """Get-or-create tags by display name, matched on slug.

        Returns the tags in input order with duplicates removed.
        """
        wanted: dict[str, str] = {}
        for raw in names or ():
            name = str(raw).strip()
            if not name:
                continue
            if len(name) > MAX_TAG_NAME_LENGTH:
                return validation(
                    f"Tag '{name[:20]}…' is longer than {MAX_TAG_NAME_LENGTH} characters.",
                    field="tags",
                )
            slug = slugify(name)
            if slug and slug not in wanted:
                wanted[slug] = name
        if len(wanted) > MAX_TAGS_PER_SUBJECT:
            return validation(
                f"At most {MAX_TAGS_PER_SUBJECT} tags are allowed.", field="tags"
            )
        if not wanted:
            return Result.success([])

        with Session(self.engine, expire_on_commit=False) as session:
            existing = {
                t.slug: t
                for t in session.scalars(select(Tag).where(Tag.slug.in_(wanted))).all()
            }
            for slug, name in wanted.items():
                if slug in existing:
                    continue
                tag = Tag(name=name, slug=slug, usage_count=0)
                try:
                    with session.begin_nested():
                        session.add(tag)
                        session.flush()
                    existing[slug] = tag
                except IntegrityError:
                    # Created concurrently by another request.
                    existing[slug] = session.scalar(select(Tag).where(Tag.slug == slug))
            session.commit()
            return Result.success([tag_dict(existing[slug]) for slug in wanted])

    @guarded("load tags")
    def get_tags_for(self, subject_type: str, subject_id: int) -> Result[list[dict]]:
        target = _link_target(subject_type)
        if target is None:
            return validation(f"Unsupported subject type '{subject_type}'.", field="subject_type")
        link_model, _, fk_name = target
        with Session(self.engine) as session:
            rows = session.scalars(
                select(Tag)
                .join(link_model, link_model.tag_id == Tag.id)
                .where(getattr(link_model, fk_name) == subject_id)
                .order_by(Tag.name)
            ).all()
            return Result.success([tag_dict(t) for t in rows])

    @guarded("update tags")
    def ensure_tag_set(
        self, subject_id: int, subject_type: str, tag_ids: Iterable[Any] | None
    ) -> Result[list[dict]]:
        """Replace the subject's tag associations with exactly *tag_ids*.

        Links not in the new set are removed, missing ones are added and
        links already present are left untouched.  An empty set clears all
        tags.  Malformed ids are a ``validation`` failure and unknown ids a
        ``not_found`` failure listing each offending id; in both cases
        nothing is written.
        """
        target = _link_target(subject_type)
        if target is None:
            return validation(f"Unsupported subject type '{subject_type}'.", field="subject_type")
        link_model, subject_model, fk_name = target
        fk = getattr(link_model, fk_name)

        wanted_ids, malformed = normalize_tag_ids(tag_ids)
        if malformed:
            return validation("Malformed tag id(s).", field="tag_ids", invalid=malformed)
        if len(wanted_ids) > MAX_TAGS_PER_SUBJECT:
            return validation(
                f"At most {MAX_TAGS_PER_SUBJECT} tags are allowed.", field="tag_ids"
            )
        wanted = set(wanted_ids)

        with Session(self.engine, expire_on_commit=False) as session:
            if session.get(subject_model, subject_id) is None:
                return not_found(subject_type.capitalize(), subject_id)

            known = set(
                session.scalars(select(Tag.id).where(Tag.id.in_(wanted))).all()
            ) if wanted else set()
            unknown = sorted(wanted - known)
            if unknown:
                return Result.failure(ServiceError(
                    ErrorKind.NOT_FOUND,
                    "Some tags do not exist.",
                    details={"per_tag": {str(t): "not_found" for t in unknown}},
                ))

            current = set(session.scalars(select(link_model.tag_id).where(fk == subject_id)).all())
            to_remove = current - wanted
            to_add = wanted - current

            # A link added concurrently fails on the INSERT, before commit.
            try:
                if to_remove:
                    session.execute(
                        delete(link_model).where(
                            fk == subject_id, link_model.tag_id.in_(to_remove)
                        )
                    )
                    _adjust_usage(session, to_remove, -1)
                if to_add:
                    session.execute(
                        insert(link_model),
                        [{fk_name: subject_id, "tag_id": tag_id} for tag_id in sorted(to_add)],
                    )
                    _adjust_usage(session, to_add, +1)
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(
                    "Concurrent tag update on %s %d, rolled back", subject_type, subject_id
                )
                return conflict(
                    "Tags were changed by another request. Please try again.", "duplicate"
                )

            if to_add or to_remove:
                logger.info(
                    "Tag set for %s %d: +%d -%d", subject_type, subject_id,
                    len(to_add), len(to_remove),
                )
            rows = session.scalars(
                select(Tag).where(Tag.id.in_(wanted)).order_by(Tag.name)
            ).all() if wanted else []
            return Result.success([tag_dict(t) for t in rows])

