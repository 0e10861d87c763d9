"""
shamba.services.content_service — Posts, Comments, Questions & Answers
=======================================================================

Create/update/delete for discussion posts and Q&A, and the list/detail
reads the community pages use.

Writes follow one pattern:
  1. Validate every field (including tag id shape) before touching the store
  2. Insert/update the subject and commit
  3. Hand the tag set to :meth:`TaxonomyService.ensure_tag_set`
  4. Return the fresh entity; a failed tag step is reported in
     ``partial_errors`` while the subject itself stays committed

Deletes run in a single transaction and remove, in order, the subject's
tag links, its children (comments/answers and their signals), its own
signals and finally the subject row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from shamba.config import CommunityConfig
from shamba.constants import MSG_NOT_OWNER, POST_STATUSES, QUESTION_STATUSES, iso
from shamba.database import queries
from shamba.database.models import (
    Answer,
    Bookmark,
    Category,
    Comment,
    Like,
    Post,
    Question,
    Reaction,
)
from shamba.services import aggregation_service as agg
from shamba.services.engagement_service import award_points, notify, subject_link
from shamba.services.result import (
    Result,
    ServiceError,
    conflict,
    guarded,
    not_found,
    require_user,
    unauthorized,
    validation,
)
from shamba.services.taxonomy_service import (
    TaxonomyService,
    category_dict,
    detach_tags,
    normalize_tag_ids,
    tag_dict,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 20_000

POST_FIELDS = frozenset({"title", "content", "status", "category_id", "image_url"})
QUESTION_FIELDS = frozenset({"title", "content", "status", "category_id"})


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def post_dict(post: Post) -> dict[str, Any]:
    return {
        "id": post.id,
        "user_id": post.user_id,
        "title": post.title,
        "content": post.content,
        "status": post.status,
        "image_url": post.image_url,
        "category": category_dict(post.category),
        "tags": [tag_dict(t) for t in post.tags],
        "created_at": iso(post.created_at),
        "updated_at": iso(post.updated_at),
    }


def comment_dict(comment: Comment) -> dict[str, Any]:
    return {
        "id": comment.id,
        "post_id": comment.post_id,
        "user_id": comment.user_id,
        "content": comment.content,
        "created_at": iso(comment.created_at),
    }


def question_dict(question: Question) -> dict[str, Any]:
    return {
        "id": question.id,
        "user_id": question.user_id,
        "title": question.title,
        "content": question.content,
        "status": question.status,
        "category": category_dict(question.category),
        "tags": [tag_dict(t) for t in question.tags],
        "created_at": iso(question.created_at),
        "updated_at": iso(question.updated_at),
    }


def answer_dict(answer: Answer) -> dict[str, Any]:
    return {
        "id": answer.id,
        "question_id": answer.question_id,
        "user_id": answer.user_id,
        "content": answer.content,
        "is_accepted": answer.is_accepted,
        "created_at": iso(answer.created_at),
    }


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def _clean_text(value: Any, field: str, max_length: int) -> tuple[str | None, Result | None]:
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        return None, validation(f"{field.capitalize()} is required.", field=field)
    if len(text) > max_length:
        return None, validation(
            f"{field.capitalize()} must be at most {max_length} characters.", field=field
        )
    return text, None


def _validate_fields(
    data: Mapping[str, Any],
    allowed: frozenset[str],
    statuses: frozenset[str],
    *,
    partial: bool,
) -> tuple[dict[str, Any], Result | None]:
    """Check and normalise subject fields.

    With *partial* only the keys present in *data* are validated (update);
    otherwise title and content are required (create).
    """
    unknown = set(data) - allowed
    if unknown:
        return {}, validation("Unknown field(s).", fields=sorted(unknown))

    clean: dict[str, Any] = {}
    for field, limit in (("title", MAX_TITLE_LENGTH), ("content", MAX_CONTENT_LENGTH)):
        if partial and field not in data:
            continue
        text, err = _clean_text(data.get(field), field, limit)
        if err:
            return {}, err
        clean[field] = text

    if "status" in data and data["status"] is not None:
        if data["status"] not in statuses:
            return {}, validation(
                f"Invalid status '{data['status']}'.", field="status", allowed=sorted(statuses)
            )
        clean["status"] = data["status"]

    if "category_id" in data:
        category_id = data["category_id"]
        if category_id is not None and (
            isinstance(category_id, bool) or not isinstance(category_id, int)
        ):
            return {}, validation("Malformed category id.", field="category_id")
        clean["category_id"] = category_id

    if "image_url" in data:
        url = data["image_url"]
        clean["image_url"] = url.strip() if isinstance(url, str) and url.strip() else None

    return clean, None


def _check_tag_input(tag_ids: Iterable[Any] | None) -> Result | None:
    _, malformed = normalize_tag_ids(tag_ids)
    if malformed:
        return validation("Malformed tag id(s).", field="tag_ids", invalid=malformed)
    return None


def _purge_signals(session: Session, subject_type: str, ids: list[int]) -> None:
    if not ids:
        return
    for model in (Like, Bookmark, Reaction):
        session.execute(
            delete(model).where(model.subject_type == subject_type, model.subject_id.in_(ids))
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class ContentService:
    """Posts with comments and questions with answers."""

    def __init__(
        self,
        engine: Engine,
        config: CommunityConfig | None = None,
        taxonomy: TaxonomyService | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or CommunityConfig()
        self.taxonomy = taxonomy or TaxonomyService(engine, self.config)

    # -- shared ---------------------------------------------------------------
    def _filter(self, **kwargs: Any) -> tuple[queries.ContentFilter | None, Result | None]:
        offset = kwargs.pop("offset", 0) or 0
        if offset < 0:
            return None, validation("Offset must not be negative.", field="offset")
        limit = self.config.clamp_limit(kwargs.pop("limit", None))
        tag = kwargs.pop("tag", None)
        return queries.ContentFilter(
            tag=tag.strip().lower() if tag else None, limit=limit, offset=offset, **kwargs
        ), None

    def _apply_tags(
        self,
        subject_type: str,
        subject_id: int,
        tag_ids: Iterable[Any] | None,
        tag_names: Iterable[str] | None,
    ) -> list[ServiceError]:
        """Resolve names, then replace the tag set.  Failures are returned, not raised."""
        ids = list(tag_ids or [])
        if tag_names:
            resolved = self.taxonomy.resolve_tags(tag_names)
            if not resolved.ok:
                return [resolved.error]
            ids.extend(t["id"] for t in resolved.data)
        outcome = self.taxonomy.ensure_tag_set(subject_id, subject_type, ids)
        if not outcome.ok:
            logger.warning(
                "Tag step failed for %s %d: %s", subject_type, subject_id, outcome.error.message
            )
            return [outcome.error]
        return []

    @staticmethod
    def _category_missing(session: Session, clean: dict[str, Any]) -> Result | None:
        category_id = clean.get("category_id")
        if category_id is not None and session.get(Category, category_id) is None:
            return validation("Unknown category.", field="category_id", id=category_id)
        return None

    # =======================================================================
    # Posts
    # =======================================================================
    @guarded("load posts")
    def get_posts(
        self,
        *,
        category_id: int | None = None,
        tag: str | None = None,
        author_id: str | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        viewer_id: str | None = None,
    ) -> Result[list]:
        """Published posts (or *status*), newest first, with derived counts."""
        if status is not None and status not in POST_STATUSES:
            return validation(f"Invalid status '{status}'.", field="status")
        flt, err = self._filter(
            category_id=category_id, tag=tag, author_id=author_id,
            status=status, search=search, limit=limit, offset=offset,
        )
        if err:
            return err
        with Session(self.engine) as session:
            posts = [post_dict(p) for p in session.scalars(queries.posts_matching(flt)).unique()]
            return Result.success(agg.decorate_posts(session, posts, viewer_id))

    @guarded("load post")
    def get_post_by_id(self, post_id: int, viewer_id: str | None = None) -> Result[dict]:
        with Session(self.engine) as session:
            post = session.scalars(
                queries.post_with_relations().where(Post.id == post_id)
            ).unique().one_or_none()
            if post is None:
                return not_found("Post", post_id)
            data = agg.decorate_posts(session, [post_dict(post)], viewer_id)[0]
            comments = [comment_dict(c) for c in post.comments]
            data["comments"] = agg.decorate_comments(session, comments, viewer_id)
            return Result.success(data)

    @guarded("create post")
    def create_post(
        self,
        author_id: str | None,
        data: Mapping[str, Any],
        tag_ids: Iterable[Any] | None = None,
        *,
        tag_names: Iterable[str] | None = None,
    ) -> Result[dict]:
        """Validate, insert the post, then attach its tags.

        A rejected tag step leaves the post in place and is reported in
        ``partial_errors``.
        """
        if (denied := require_user(author_id)) is not None:
            return denied
        clean, err = _validate_fields(data, POST_FIELDS, POST_STATUSES, partial=False)
        if err or (err := _check_tag_input(tag_ids)):
            return err

        with Session(self.engine, expire_on_commit=False) as session:
            if (err := self._category_missing(session, clean)):
                return err
            post = Post(user_id=author_id, **clean)
            session.add(post)
            session.commit()
            post_id = post.id
        logger.info("Post %d created by %s", post_id, author_id)

        partial = []
        if tag_ids or tag_names:
            partial = self._apply_tags("post", post_id, tag_ids, tag_names)
        fresh = self.get_post_by_id(post_id, viewer_id=author_id)
        if not fresh.ok:
            return fresh
        return Result.success(fresh.data, partial)

    @guarded("update post")
    def update_post(
        self,
        post_id: int,
        user_id: str | None,
        changes: Mapping[str, Any],
        tag_ids: Iterable[Any] | None = None,
        *,
        tag_names: Iterable[str] | None = None,
    ) -> Result[dict]:
        """Apply a partial update.

        ``tag_ids``/``tag_names`` of ``None`` leave the tags unchanged; a
        list (even an empty one) replaces the whole set.
        """
        if (denied := require_user(user_id)) is not None:
            return denied
        clean, err = _validate_fields(changes, POST_FIELDS, POST_STATUSES, partial=True)
        if err or (err := _check_tag_input(tag_ids)):
            return err

        with Session(self.engine) as session:
            post = session.get(Post, post_id)
            if post is None:
                return not_found("Post", post_id)
            if post.user_id != user_id:
                return unauthorized(MSG_NOT_OWNER)
            if (err := self._category_missing(session, clean)):
                return err
            for key, value in clean.items():
                setattr(post, key, value)
            session.commit()

        partial = []
        if tag_ids is not None or tag_names is not None:
            partial = self._apply_tags("post", post_id, tag_ids, tag_names)
        fresh = self.get_post_by_id(post_id, viewer_id=user_id)
        if not fresh.ok:
            return fresh
        return Result.success(fresh.data, partial)

    @guarded("delete post")
    def delete_post(self, post_id: int, user_id: str | None) -> Result[dict]:
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            post = session.get(Post, post_id)
            if post is None:
                return not_found("Post", post_id)
            if post.user_id != user_id:
                return unauthorized(MSG_NOT_OWNER)

            detach_tags(session, "post", post_id)
            comment_ids = list(
                session.scalars(select(Comment.id).where(Comment.post_id == post_id)).all()
            )
            _purge_signals(session, "comment", comment_ids)
            session.execute(delete(Comment).where(Comment.post_id == post_id))
            _purge_signals(session, "post", [post_id])
            session.execute(delete(Post).where(Post.id == post_id))
            session.commit()
        logger.info("Post %d deleted by %s (%d comments)", post_id, user_id, len(comment_ids))
        return Result.success({"id": post_id, "deleted": True})

    # -- comments -------------------------------------------------------------
    @guarded("add comment")
    def add_comment(self, post_id: int, user_id: str | None, content: str) -> Result[dict]:
        if (denied := require_user(user_id)) is not None:
            return denied
        text, err = _clean_text(content, "content", MAX_CONTENT_LENGTH)
        if err:
            return err
        with Session(self.engine, expire_on_commit=False) as session:
            post = session.get(Post, post_id)
            if post is None:
                return not_found("Post", post_id)
            if post.status == "archived":
                return conflict("This post is archived and no longer accepts comments.", "archived")
            comment = Comment(post_id=post_id, user_id=user_id, content=text)
            session.add(comment)
            session.flush()
            notify(
                session,
                user_id=post.user_id,
                actor_id=user_id,
                type="comment",
                title="New comment on your post",
                message=post.title,
                link=subject_link("comment", comment),
                payload={"post_id": post_id, "comment_id": comment.id},
            )
            session.commit()
            data = comment_dict(comment)
            data["likes_count"] = 0
            data["is_liked"] = False
            return Result.success(data)

    @guarded("load comments")
    def get_comments(self, post_id: int, viewer_id: str | None = None) -> Result[list]:
        with Session(self.engine) as session:
            if session.get(Post, post_id) is None:
                return not_found("Post", post_id)
            rows = session.scalars(
                select(Comment)
                .where(Comment.post_id == post_id)
                .order_by(Comment.created_at, Comment.id)
            ).all()
            comments = [comment_dict(c) for c in rows]
            return Result.success(agg.decorate_comments(session, comments, viewer_id))

    @guarded("delete comment")
    def delete_comment(self, comment_id: int, user_id: str | None) -> Result[dict]:
        """Comment authors and the post's author may delete a comment."""
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            comment = session.get(Comment, comment_id)
            if comment is None:
                return not_found("Comment", comment_id)
            if user_id not in (comment.user_id, comment.post.user_id):
                return unauthorized(MSG_NOT_OWNER)
            _purge_signals(session, "comment", [comment_id])
            session.execute(delete(Comment).where(Comment.id == comment_id))
            session.commit()
        return Result.success({"id": comment_id, "deleted": True})

    # =======================================================================
    # Questions
    # =======================================================================
    @guarded("load questions")
    def get_questions(
        self,
        *,
        category_id: int | None = None,
        tag: str | None = None,
        author_id: str | None = None,
        status: str | None = None,
        search: str | None = None,
        unanswered: bool = False,
        limit: int | None = None,
        offset: int = 0,
        viewer_id: str | None = None,
    ) -> Result[list]:
        if status is not None and status not in QUESTION_STATUSES:
            return validation(f"Invalid status '{status}'.", field="status")
        flt, err = self._filter(
            category_id=category_id, tag=tag, author_id=author_id, status=status,
            search=search, unanswered=unanswered, limit=limit, offset=offset,
        )
        if err:
            return err
        with Session(self.engine) as session:
            questions = [
                question_dict(q)
                for q in session.scalars(queries.questions_matching(flt)).unique()
            ]
            return Result.success(agg.decorate_questions(session, questions, viewer_id))

    @guarded("load question")
    def get_question_by_id(self, question_id: int, viewer_id: str | None = None) -> Result[dict]:
        """A question with its answers, the accepted one first."""
        with Session(self.engine) as session:
            question = session.scalars(
                queries.question_with_relations().where(Question.id == question_id)
            ).unique().one_or_none()
            if question is None:
                return not_found("Question", question_id)
            data = agg.decorate_questions(session, [question_dict(question)], viewer_id)[0]
            answers = sorted(question.answers, key=lambda a: (not a.is_accepted, a.id))
            data["answers"] = agg.decorate_answers(
                session, [answer_dict(a) for a in answers], viewer_id
            )
            return Result.success(data)

    @guarded("create question")
    def create_question(
        self,
        author_id: str | None,
        data: Mapping[str, Any],
        tag_ids: Iterable[Any] | None = None,
        *,
        tag_names: Iterable[str] | None = None,
    ) -> Result[dict]:
        if (denied := require_user(author_id)) is not None:
            return denied
        clean, err = _validate_fields(data, QUESTION_FIELDS, QUESTION_STATUSES, partial=False)
        if err or (err := _check_tag_input(tag_ids)):
            return err

        with Session(self.engine, expire_on_commit=False) as session:
            if (err := self._category_missing(session, clean)):
                return err
            clean.setdefault("status", "open")
            question = Question(user_id=author_id, **clean)
            session.add(question)
            session.commit()
            question_id = question.id
        logger.info("Question %d created by %s", question_id, author_id)

        partial = []
        if tag_ids or tag_names:
            partial = self._apply_tags("question", question_id, tag_ids, tag_names)
        fresh = self.get_question_by_id(question_id, viewer_id=author_id)
        if not fresh.ok:
            return fresh
        return Result.success(fresh.data, partial)

    @guarded("update question")
    def update_question(
        self,
        question_id: int,
        user_id: str | None,
        changes: Mapping[str, Any],
        tag_ids: Iterable[Any] | None = None,
        *,
        tag_names: Iterable[str] | None = None,
    ) -> Result[dict]:
        if (denied := require_user(user_id)) is not None:
            return denied
        clean, err = _validate_fields(changes, QUESTION_FIELDS, QUESTION_STATUSES, partial=True)
        if err or (err := _check_tag_input(tag_ids)):
            return err

        with Session(self.engine) as session:
            question = session.get(Question, question_id)
            if question is None:
                return not_found("Question", question_id)
            if question.user_id != user_id:
                return unauthorized(MSG_NOT_OWNER)
            if (err := self._category_missing(session, clean)):
                return err
            for key, value in clean.items():
                setattr(question, key, value)
            session.commit()

        partial = []
        if tag_ids is not None or tag_names is not None:
            partial = self._apply_tags("question", question_id, tag_ids, tag_names)
        fresh = self.get_question_by_id(question_id, viewer_id=user_id)
        if not fresh.ok:
            return fresh
        return Result.success(fresh.data, partial)

    @guarded("delete question")
    def delete_question(self, question_id: int, user_id: str | None) -> Result[dict]:
        if (denied := require_user(user_id)) is not None:
            return denied
        with Session(self.engine) as session:
            question = session.get(Question, question_id)
            if question is None:
                return not_found("Question", question_id)
            if question.user_id != user_id:
                return unauthorized(MSG_NOT_OWNER)

            detach_tags(session, "question", question_id)
            answer_ids = list(
                session.scalars(select(Answer.id).where(Answer.question_id == question_id)).all()
            )
            _purge_signals(session, "answer", answer_ids)
            session.execute(delete(Answer).where(Answer.question_id == question_id))
            _purge_signals(session, "question", [question_id])
            session.execute(delete(Question).where(Question.id == question_id))
            session.commit()
        logger.info("Question %d deleted by %s", question_id, user_id)
        return Result.success({"id": question_id, "deleted": True})

    # -- answers --------------------------------------------------------------
    @guarded("add answer")
    def add_answer(self, question_id: int, user_id: str | None, content: str) -> Result[dict]:
        if (denied := require_user(user_id)) is not None:
            return denied
        text, err = _clean_text(content, "content", MAX_CONTENT_LENGTH)
        if err:
            return err
        with Session(self.engine, expire_on_commit=False) as session:
            question = session.get(Question, question_id)
            if question is None:
                return not_found("Question", question_id)
            if question.status == "closed":
                return conflict("This question is closed to new answers.", "question_closed")
            answer = Answer(question_id=question_id, user_id=user_id, content=text)
            session.add(answer)
            session.flush()
            award_points(session, user_id, self.config.reputation.answer_posted)
            notify(
                session,
                user_id=question.user_id,
                actor_id=user_id,
                type="answer",
                title="New answer to your question",
                message=question.title,
                link=subject_link("answer", answer),
                payload={"question_id": question_id, "answer_id": answer.id},
            )
            session.commit()
            data = answer_dict(answer)
            data["likes_count"] = 0
            data["is_liked"] = False
            return Result.success(data)

    @guarded("accept answer")
    def accept_answer(
        self, question_id: int, answer_id: int, user_id: str | None
    ) -> Result[dict]:
        """Mark *answer_id* as the accepted answer; only the asker may do this.

        A previously accepted answer is un-accepted and its author loses
        the acceptance points.  The question becomes ``answered``.
        """
        if (denied := require_user(user_id)) is not None:
            return denied
        points = self.config.reputation.answer_accepted
        with Session(self.engine, expire_on_commit=False) as session:
            question = session.get(Question, question_id)
            if question is None:
                return not_found("Question", question_id)
            if question.user_id != user_id:
                return unauthorized("Only the person who asked can accept an answer.")
            answer = session.get(Answer, answer_id)
            if answer is None or answer.question_id != question_id:
                return not_found("Answer", answer_id)
            if answer.is_accepted:
                return Result.success(answer_dict(answer))

            previous = session.scalar(
                select(Answer).where(
                    Answer.question_id == question_id, Answer.is_accepted.is_(True)
                )
            )
            if previous is not None:
                previous.is_accepted = False
                if previous.user_id != user_id:
                    award_points(session, previous.user_id, -points, accepted_answer=-1)

            answer.is_accepted = True
            question.status = "answered"
            if answer.user_id != user_id:
                award_points(session, answer.user_id, points, accepted_answer=1)
            notify(
                session,
                user_id=answer.user_id,
                actor_id=user_id,
                type="answer_accepted",
                title="Your answer was accepted",
                message=question.title,
                link=subject_link("answer", answer),
                payload={"question_id": question_id, "answer_id": answer_id},
            )
            session.commit()
            logger.info("Answer %d accepted on question %d", answer_id, question_id)
            return Result.success(answer_dict(answer))
