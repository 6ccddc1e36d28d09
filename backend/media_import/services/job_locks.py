"""Per-job mutual exclusion for mutating pipeline operations.

A second mutating call on a job that already has one in flight is rejected
with ConflictError instead of waiting. Different jobs never contend.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

from redis import Redis
from redis.exceptions import LockError, RedisError

from media_import.core.config import Settings
from media_import.core.errors import ConflictError
from media_import.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

LOCK_PREFIX = "jobs:lock:"


class JobLockManager(ABC):
    @abstractmethod
    @contextmanager
    def hold(self, job_id: str, operation: str) -> Iterator[None]:
        """Hold the job's lock for the duration of ``operation``."""

    @staticmethod
    def _busy(job_id: str, operation: str, holder: str | None = None) -> ConflictError:
        suffix = f" ({holder} in progress)" if holder else ""
        return ConflictError(
            f"Cannot {operation} job {job_id}: another operation is in flight{suffix}",
            details={"job_id": job_id, "operation": operation, "in_flight": holder},
        )


class LocalJobLocks(JobLockManager):
    """In-process locks; enough for a single API process or tests."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: dict[str, str] = {}

    @contextmanager
    def hold(self, job_id: str, operation: str) -> Iterator[None]:
        with self._guard:
            holder = self._held.get(job_id)
            if holder is not None:
                raise self._busy(job_id, operation, holder)
            self._held[job_id] = operation
        try:
            yield
        finally:
            with self._guard:
                self._held.pop(job_id, None)


class RedisJobLocks(JobLockManager):
    """Redis locks shared by every API and Celery worker process."""

    def __init__(self, client: Redis, ttl_seconds: int = 3600):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @contextmanager
    def hold(self, job_id: str, operation: str) -> Iterator[None]:
        lock = self.client.lock(
            f"{LOCK_PREFIX}{job_id}",
            timeout=self.ttl_seconds,
            blocking=False,
        )
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            logger.error(f"Redis unavailable while locking job {job_id}: {exc}")
            raise ConflictError(
                f"Cannot {operation} job {job_id}: operation lock unavailable",
                details={"job_id": job_id, "operation": operation},
            ) from exc
        if not acquired:
            raise self._busy(job_id, operation)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                logger.warning(f"Lock for job {job_id} expired before {operation} finished")


def build_job_locks(settings: Settings) -> JobLockManager:
    if settings.job_lock_backend == "local":
        return LocalJobLocks()
    client = create_redis_client(settings.redis_url, decode_responses=True)
    return RedisJobLocks(client, ttl_seconds=settings.job_lock_ttl_seconds)
