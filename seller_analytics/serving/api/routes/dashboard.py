"""
Dashboard API Endpoints

REST API over the query facade. Every response is a DashboardResult; engine
errors are rendered as ``{code, message, retryable, detail}`` by the
application's exception handler.
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request

from seller_analytics.engine import QueryFacade
from seller_analytics.engine.models import DashboardQuery, DashboardResult, TimeRange

router = APIRouter()
logger = structlog.get_logger(__name__)


def get_facade(request: Request) -> QueryFacade:
    """Facade created by the application lifespan"""
    return request.app.state.facade


@router.post("/query", response_model=DashboardResult)
async def run_query(
    query: DashboardQuery,
    facade: QueryFacade = Depends(get_facade),
) -> DashboardResult:
    """
    Run a dashboard query.

    The body is a DashboardQuery in camelCase, for example
    ``{"rangeKeyword": "Week", "sortField": "revenue", "limit": 10}``.
    """
    return await facade.run(query)


@router.get("/{range_keyword}", response_model=DashboardResult)
async def get_dashboard(
    range_keyword: str,
    tz: Optional[str] = Query(default=None, alias="timezone", description="IANA timezone"),
    reference: Optional[datetime] = Query(default=None, description="Reference instant; defaults to now"),
    start: Optional[datetime] = Query(default=None, description="Custom range start"),
    end: Optional[datetime] = Query(default=None, description="Custom range end (exclusive)"),
    granularity: Optional[str] = Query(default=None, description="hourly, daily, weekly or monthly"),
    sort: Optional[str] = Query(default=None, description="Sort field"),
    direction: str = Query(default="desc", description="asc or desc"),
    limit: Optional[int] = Query(default=None, gt=0, description="Maximum product rows"),
    alerts: bool = Query(default=False, description="Evaluate catalog stock thresholds"),
    compare: bool = Query(default=False, description="Compare with the previous period"),
    segments: bool = Query(default=False, description="Include customer segments"),
    facade: QueryFacade = Depends(get_facade),
) -> DashboardResult:
    """
    Dashboard for a range keyword (Today, Week, Month, Year or Custom).

    Custom ranges take ``start`` and ``end``.
    """
    custom_range = None
    if start is not None and end is not None:
        custom_range = TimeRange(start=start, end=end)

    logger.debug("get_dashboard called", range=range_keyword, sort=sort, limit=limit)

    query = DashboardQuery(
        range_keyword=range_keyword,
        custom_range=custom_range,
        timezone=tz,
        reference_instant=reference,
        granularity=granularity,
        sort_field=sort,
        sort_direction=direction,
        limit=limit,
        catalog_alerts=alerts,
        compare_with_previous=compare,
        include_segments=segments,
    )
    return await facade.run(query)
