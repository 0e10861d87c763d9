"""
shamba.api.routes.posts — Discussion posts and comments
=========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from shamba.api.deps import get_content_service, get_current_user_id, get_optional_user_id
from shamba.api.responses import respond
from shamba.database.engine import run_db
from shamba.services.content_service import ContentService

router = APIRouter(tags=["posts"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PostCreate(BaseModel):
    title: str
    content: str
    status: str | None = None
    category_id: int | None = None
    image_url: str | None = None
    tag_ids: list[int] | None = None
    tags: list[str] | None = None


class PostUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    status: str | None = None
    category_id: int | None = None
    image_url: str | None = None
    tag_ids: list[int] | None = None
    tags: list[str] | None = None


class CommentCreate(BaseModel):
    content: str


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
@router.get("/posts")
async def list_posts(
    category_id: int | None = None,
    tag: str | None = None,
    author_id: str | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    viewer: str | None = Depends(get_optional_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(
        content.get_posts,
        category_id=category_id, tag=tag, author_id=author_id, status=status,
        search=search, limit=limit, offset=offset, viewer_id=viewer,
    ))


@router.get("/posts/{post_id}")
async def get_post(
    post_id: int,
    viewer: str | None = Depends(get_optional_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.get_post_by_id, post_id, viewer_id=viewer))


@router.post("/posts")
async def create_post(
    body: PostCreate,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    fields = body.model_dump(exclude={"tag_ids", "tags"}, exclude_none=True)
    result = await run_db(content.create_post, user_id, fields, body.tag_ids, tag_names=body.tags)
    return respond(result, success_status=201)


@router.patch("/posts/{post_id}")
async def update_post(
    post_id: int,
    body: PostUpdate,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    changes = body.model_dump(exclude_unset=True)
    tag_ids = changes.pop("tag_ids", None)
    tag_names = changes.pop("tags", None)
    return respond(await run_db(
        content.update_post, post_id, user_id, changes, tag_ids, tag_names=tag_names
    ))


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: int,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.delete_post, post_id, user_id))


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
@router.get("/posts/{post_id}/comments")
async def list_comments(
    post_id: int,
    viewer: str | None = Depends(get_optional_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.get_comments, post_id, viewer_id=viewer))


@router.post("/posts/{post_id}/comments")
async def add_comment(
    post_id: int,
    body: CommentCreate,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    result = await run_db(content.add_comment, post_id, user_id, body.content)
    return respond(result, success_status=201)


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: int,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.delete_comment, comment_id, user_id))
