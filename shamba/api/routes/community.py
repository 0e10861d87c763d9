"""
shamba.api.routes.community — Taxonomy and community-wide insights
====================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from shamba.api.deps import get_aggregation_service, get_current_user_id, get_taxonomy_service
from shamba.api.responses import respond
from shamba.database.engine import run_db
from shamba.services.aggregation_service import AggregationService
from shamba.services.taxonomy_service import TaxonomyService

router = APIRouter(tags=["community"])


class CategoryCreate(BaseModel):
    name: str
    color: str | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------
@router.get("/categories")
async def list_categories(taxonomy: TaxonomyService = Depends(get_taxonomy_service)):
    return respond(await run_db(taxonomy.get_forum_categories))


@router.post("/categories")
async def create_category(
    body: CategoryCreate,
    user_id: str = Depends(get_current_user_id),
    taxonomy: TaxonomyService = Depends(get_taxonomy_service),
):
    result = await run_db(
        taxonomy.create_category, body.name, color=body.color, description=body.description
    )
    return respond(result, success_status=201)


@router.get("/tags")
async def popular_tags(
    limit: int | None = Query(None, ge=1),
    taxonomy: TaxonomyService = Depends(get_taxonomy_service),
):
    return respond(await run_db(taxonomy.get_popular_tags, limit))


@router.get("/tags/trending")
async def trending_tags(
    days: int | None = Query(None, ge=1, le=365),
    limit: int | None = Query(None, ge=1),
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    return respond(await run_db(aggregation.get_trending_tags, days, limit))


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------
@router.get("/community/stats")
async def community_stats(aggregation: AggregationService = Depends(get_aggregation_service)):
    return respond(await run_db(aggregation.get_community_stats))


@router.get("/community/contributors")
async def top_contributors(
    limit: int | None = Query(None, ge=1),
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    return respond(await run_db(aggregation.get_top_contributors, limit))


@router.get("/community/me/stats")
async def my_stats(
    user_id: str = Depends(get_current_user_id),
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    return respond(await run_db(aggregation.get_user_stats, user_id))


@router.get("/community/activity")
async def recent_activity(
    limit: int | None = Query(None, ge=1),
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    return respond(await run_db(aggregation.get_recent_activity, limit))
