"""
shamba.api.routes.questions — Q&A endpoints
=============================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from shamba.api.deps import get_content_service, get_current_user_id, get_optional_user_id
from shamba.api.responses import respond
from shamba.database.engine import run_db
from shamba.services.content_service import ContentService

router = APIRouter(prefix="/questions", tags=["questions"])


class QuestionCreate(BaseModel):
    title: str
    content: str
    category_id: int | None = None
    tag_ids: list[int] | None = None
    tags: list[str] | None = None


class QuestionUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    status: str | None = None
    category_id: int | None = None
    tag_ids: list[int] | None = None
    tags: list[str] | None = None


class AnswerCreate(BaseModel):
    content: str


@router.get("")
async def list_questions(
    category_id: int | None = None,
    tag: str | None = None,
    author_id: str | None = None,
    status: str | None = None,
    search: str | None = None,
    unanswered: bool = False,
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    viewer: str | None = Depends(get_optional_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(
        content.get_questions,
        category_id=category_id, tag=tag, author_id=author_id, status=status,
        search=search, unanswered=unanswered, limit=limit, offset=offset,
        viewer_id=viewer,
    ))


@router.get("/{question_id}")
async def get_question(
    question_id: int,
    viewer: str | None = Depends(get_optional_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.get_question_by_id, question_id, viewer_id=viewer))


@router.post("")
async def create_question(
    body: QuestionCreate,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    fields = body.model_dump(exclude={"tag_ids", "tags"}, exclude_none=True)
    result = await run_db(
        content.create_question, user_id, fields, body.tag_ids, tag_names=body.tags
    )
    return respond(result, success_status=201)


@router.patch("/{question_id}")
async def update_question(
    question_id: int,
    body: QuestionUpdate,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    changes = body.model_dump(exclude_unset=True)
    tag_ids = changes.pop("tag_ids", None)
    tag_names = changes.pop("tags", None)
    return respond(
        await run_db(
            content.update_question, question_id, user_id, changes, tag_ids,
            tag_names=tag_names,
        )
    )


@router.delete("/{question_id}")
async def delete_question(
    question_id: int,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.delete_question, question_id, user_id))


@router.post("/{question_id}/answers")
async def add_answer(
    question_id: int,
    body: AnswerCreate,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    result = await run_db(content.add_answer, question_id, user_id, body.content)
    return respond(result, success_status=201)


@router.post("/{question_id}/answers/{answer_id}/accept")
async def accept_answer(
    question_id: int,
    answer_id: int,
    user_id: str = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    return respond(await run_db(content.accept_answer, question_id, answer_id, user_id))
