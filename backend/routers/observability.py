"""
BoardForge — Observability Router
Exposes: structured logs, log statistics, generation and socket usage
"""

from fastapi import APIRouter, Query, HTTPException
from typing import Optional
from datetime import datetime, timezone

from ai_tokens import get_token_store
from logging_system import get_logger, LogLevel, LogCategory
from routers.ai_socket import manager as socket_manager

router = APIRouter(prefix="/api/v1/observability", tags=["Observability"])


# ── Logs ─────────────────────────────────────────────────────────────────────

@router.get("/logs")
async def get_logs(
    level: Optional[str] = Query(None, description="Minimum log level"),
    category: Optional[str] = Query(None, description="Log category filter"),
    search: Optional[str] = Query(None, description="Search in message"),
    correlation_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
):
    """Get structured logs with filtering."""
    logger = get_logger()

    level_enum = None
    if level:
        try:
            level_enum = LogLevel(level.lower())
        except ValueError:
            raise HTTPException(400, f"Invalid log level: {level}")

    category_enum = None
    if category:
        try:
            category_enum = LogCategory(category.lower())
        except ValueError:
            raise HTTPException(400, f"Invalid category: {category}")

    logs = logger.get_logs(
        level=level_enum,
        category=category_enum,
        correlation_id=correlation_id,
        search=search,
        limit=limit,
    )

    return {
        "logs": [log.to_dict() for log in logs],
        "count": len(logs),
        "filters": {
            "level": level,
            "category": category,
            "search": search,
            "correlation_id": correlation_id,
        },
    }


@router.get("/logs/stats")
async def get_log_stats():
    """Get log statistics and distribution."""
    return get_logger().get_stats()


@router.delete("/logs")
async def clear_logs():
    """Empty the in-memory log buffer."""
    return {"cleared": get_logger().buffer.clear()}


@router.get("/logs/levels")
async def get_log_levels():
    """Get available log levels."""
    return {"levels": [l.value for l in LogLevel]}


@router.get("/logs/categories")
async def get_log_categories():
    """Get available log categories."""
    return {"categories": [c.value for c in LogCategory]}


# ── Usage ─────────────────────────────────────────────────────────────────────

@router.get("/usage")
async def get_usage():
    """Fallback counts, socket traffic and environment-credential usage."""
    stats = get_logger().get_stats()
    return {
        "fallback_templates": stats["fallback_templates"],
        "socket": socket_manager.get_stats(),
        "environment_credentials": get_token_store().environment_usage(),
    }


# ── Health & Status ───────────────────────────────────────────────────────────

@router.get("/health")
async def observability_health():
    """Observability system health check."""
    stats = get_logger().get_stats()
    return {
        "status": "healthy",
        "logging": {
            "total_logs": stats["total_logs"],
            "buffer_usage_pct": stats["buffer_usage_pct"],
        },
        "socket": socket_manager.get_stats(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
