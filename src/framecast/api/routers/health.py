"""Detailed health endpoint — database reachability and process uptime."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text

router = APIRouter()
logger = logging.getLogger(__name__)

_start_time = time.monotonic()


@router.get("/api/v1/health")
async def health_check():
    """Return component-level health status."""
    result = {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "db": "unknown",
    }

    try:
        from framecast.db.session import get_session_factory

        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        result["db"] = "connected"
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        result["db"] = "disconnected"

    if result["db"] == "disconnected":
        result["status"] = "degraded"

    return result
