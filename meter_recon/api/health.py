"""
Health check endpoint probing the metering store and Redis.

Returns HTTP 200 when both dependencies answer, HTTP 503 otherwise, with
the status of each in the body.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from meter_recon.cache.redis_client import get_redis
from meter_recon.db.session import get_async_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_db() -> str:
    """Run ``SELECT 1``; return "ok" or "error"."""
    try:
        async for session in get_async_session():
            await session.execute(text("SELECT 1"))
            return "ok"
    except Exception:
        logger.warning("Health check: DB probe failed", exc_info=True)
    return "error"


async def _check_redis() -> str:
    """PING Redis; return "ok" or "error"."""
    try:
        client = await get_redis()
        try:
            await client.ping()
            return "ok"
        finally:
            await client.aclose()
    except Exception:
        logger.warning("Health check: Redis probe failed", exc_info=True)
        return "error"


@router.get("/health")
async def health_check() -> JSONResponse:
    """Probe DB and Redis.

    Returns:
        JSONResponse: ``status``, ``db`` and ``redis`` fields; HTTP 200 when
            both are ok, HTTP 503 when degraded.
    """
    db_status = await _check_db()
    redis_status = await _check_redis()

    all_ok = db_status == "ok" and redis_status == "ok"
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ok" if all_ok else "degraded",
            "db": db_status,
            "redis": redis_status,
        },
    )
