"""
Feed API routes - Read-only access to aggregated advisory items and feed health
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from advisory_feeds.orchestration.feed_manager import FeedManager
from advisory_feeds.sources.base.feed_item import FeedItem

logger = logging.getLogger(__name__)
router = APIRouter()


class FeedItemModel(BaseModel):
    id: str
    title: str
    description: str
    link: str
    date: datetime
    source: str
    category: str
    severity: Optional[str] = None
    cve: Optional[str] = None
    tags: List[str] = []


class ItemsResponse(BaseModel):
    items: List[FeedItemModel]
    total_count: int
    filters: Dict[str, Any] = {}
    timestamp: datetime


class ClassifyRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=20000)


class ClassifyResponse(BaseModel):
    severity: Optional[str] = None
    cve: Optional[str] = None
    tags: List[str] = []


def get_feed_manager(request: Request) -> FeedManager:
    """FeedManager created by the application lifespan"""
    manager = getattr(request.app.state, 'feed_manager', None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Feed manager not initialized")
    return manager


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _items_response(items: List[FeedItem], limit: int, filters: Dict[str, Any] = None) -> Dict[str, Any]:
    return {
        "items": [item.to_dict() for item in items[:limit]],
        "total_count": len(items),
        "filters": filters or {},
        "timestamp": _now(),
    }


@router.get("/health")
async def feed_health(manager: FeedManager = Depends(get_feed_manager)):
    """Aggregate feed health, per-source records and cache statistics"""
    try:
        report = manager.health_report()
        report["timestamp"] = _now().isoformat()
        return report
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to build health report")


@router.get("/items", response_model=ItemsResponse)
async def list_items(
    category: Optional[List[str]] = Query(None, description="Filter by category (repeatable)"),
    source: Optional[List[str]] = Query(None, description="Filter by source name (repeatable)"),
    severity: Optional[List[str]] = Query(None, description="Filter by severity (CRITICAL, HIGH, MEDIUM, LOW)"),
    q: Optional[str] = Query(None, description="Search terms"),
    since: Optional[datetime] = Query(None, description="Only items published after this time"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of results"),
    manager: FeedManager = Depends(get_feed_manager),
):
    """Aggregated, deduplicated items matching the filters, newest first"""
    filters: Dict[str, Any] = {}
    if category:
        filters['categories'] = category
    if source:
        filters['sources'] = source
    if severity:
        filters['severities'] = [s.upper() for s in severity]
    if q:
        filters['query'] = q
    if since:
        filters['since'] = since.isoformat()

    try:
        items = await manager.query_items(filters)
    except Exception as e:
        logger.error(f"Failed to query items: {e}")
        raise HTTPException(status_code=500, detail="Failed to query items")

    return _items_response(items, limit, filters)


@router.get("/items/priority", response_model=ItemsResponse)
async def priority_items(
    limit: int = Query(100, ge=1, le=1000),
    manager: FeedManager = Depends(get_feed_manager),
):
    """Items from priority 1 sources only"""
    try:
        items = await manager.fetch_priority1()
    except Exception as e:
        logger.error(f"Failed to fetch priority items: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch priority items")

    return _items_response(items, limit)


@router.get("/items/clusters")
async def clustered_items(
    category: Optional[List[str]] = Query(None),
    severity: Optional[List[str]] = Query(None),
    manager: FeedManager = Depends(get_feed_manager),
):
    """Filtered items grouped by category"""
    filters: Dict[str, Any] = {}
    if category:
        filters['categories'] = category
    if severity:
        filters['severities'] = [s.upper() for s in severity]

    try:
        clusters = await manager.query_clusters(filters)
    except Exception as e:
        logger.error(f"Failed to cluster items: {e}")
        raise HTTPException(status_code=500, detail="Failed to cluster items")

    return {
        "clusters": {name: [item.to_dict() for item in items] for name, items in clusters.items()},
        "counts": {name: len(items) for name, items in clusters.items()},
        "timestamp": _now().isoformat(),
    }


@router.get("/search", response_model=ItemsResponse)
async def search_items(
    q: str = Query(..., min_length=1, description="Search terms"),
    limit: int = Query(100, ge=1, le=1000),
    manager: FeedManager = Depends(get_feed_manager),
):
    try:
        items = await manager.search(q)
    except Exception as e:
        logger.error(f"Search failed: {e}")
        raise HTTPException(status_code=500, detail="Search failed")

    return _items_response(items, limit, {"query": q})


@router.get("/stats")
async def item_stats(manager: FeedManager = Depends(get_feed_manager)):
    """Counts over all aggregated items"""
    try:
        stats = manager.get_item_stats(await manager.fetch_all())
    except Exception as e:
        logger.error(f"Failed to compute stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to compute stats")

    stats["timestamp"] = _now().isoformat()
    return stats


@router.get("/sources")
async def list_sources(manager: FeedManager = Depends(get_feed_manager)):
    """Registered sources with their latest health record"""
    sources = []
    for source in manager.registry.all():
        record = manager.health.get_record(source.id)
        entry = source.to_dict()
        entry["health"] = record.to_dict() if record else None
        sources.append(entry)

    return {
        "sources": sources,
        "categories": manager.registry.categories(),
        "total_count": len(sources),
    }


@router.post("/classify", response_model=ClassifyResponse)
async def classify_text(request: ClassifyRequest, manager: FeedManager = Depends(get_feed_manager)):
    """Severity, CVE and topic tags for a piece of text"""
    return manager.classify_text(request.text).to_dict()
