"""Shared helpers for publishing job progress to Redis/SSE."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from functools import lru_cache
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from media_import.core.config import get_settings
from media_import.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


class ProgressTracker:
    """Progress snapshots keyed by job id; Redis outages never break a job."""

    def __init__(self, client: Redis):
        self.client = client

    def publish(
        self,
        job_id: str,
        progress: float,
        message: str | None = None,
        *,
        status: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        payload = {
            "job_id": job_id,
            "progress": max(0.0, min(progress, 1.0)),
            "message": message,
            "status": status,
            "meta": meta or {},
        }
        try:
            self.client.set(
                _key(job_id),
                json.dumps(payload),
                ex=int(PROGRESS_TTL.total_seconds()),
            )
        except RedisError as exc:
            logger.debug(f"Progress publish skipped for job {job_id}: {exc}")

    def fetch(self, job_id: str) -> dict[str, Any]:
        try:
            raw = self.client.get(_key(job_id))
        except RedisError:
            return {}
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {}

    def clear(self, job_id: str) -> None:
        try:
            self.client.delete(_key(job_id))
        except RedisError:
            pass


@lru_cache
def get_progress_tracker() -> ProgressTracker:
    settings = get_settings()
    return ProgressTracker(create_redis_client(settings.redis_url, decode_responses=True))
