"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from media_import.core.config import get_settings
from media_import.db.session import engine
from media_import.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "media-import-api"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


def _check_database() -> dict[str, str]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}
    return {"status": "healthy", "message": "Database connection successful"}


def _check_redis(url: str) -> dict[str, str]:
    try:
        client = create_redis_client(url, decode_responses=True, socket_connect_timeout=2)
        client.ping()
        client.close()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Redis connection failed: {e}"}
    return {"status": "healthy", "message": "Redis connection successful"}


def _check_storage(root: str) -> dict[str, str]:
    path = Path(root)
    if path.is_dir():
        return {"status": "healthy", "message": f"Object store root {root} is available"}
    return {"status": "unhealthy", "message": f"Object store root {root} does not exist"}


@router.get("/ready", summary="Readiness probe")
async def ready() -> dict[str, Any]:
    """Check the database, Redis (progress + locks), Celery broker and object store.

    The Celery broker is reported but never fails readiness, since workers
    may run separately.
    """
    settings = get_settings()
    checks: dict[str, Any] = {
        "status": "ok",
        "service": SERVICE_NAME,
        "checks": {
            "database": _check_database(),
            "redis": _check_redis(settings.redis_url),
            "storage": _check_storage(settings.storage_root),
        },
    }
    all_healthy = all(check["status"] == "healthy" for check in checks["checks"].values())

    broker = _check_redis(settings.celery_broker_url or settings.redis_url)
    checks["checks"]["celery_broker"] = broker

    if not all_healthy:
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
