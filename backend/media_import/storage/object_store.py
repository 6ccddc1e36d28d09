"""Abstraction over object storage for import media (local fs implementation)."""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

from media_import.core.config import get_settings
from media_import.core.errors import StorageError

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Path-addressed blob storage split into named buckets."""

    @abstractmethod
    def put(self, bucket: str, key: str, data: bytes) -> str:
        """Write an object and return its key."""

    @abstractmethod
    def open(self, bucket: str, key: str) -> BinaryIO:
        """Open an object for reading."""

    @abstractmethod
    def size(self, bucket: str, key: str) -> int | None:
        """Return the stored size in bytes, or None when the object is missing."""

    @abstractmethod
    def promote(self, key: str, source_bucket: str, target_bucket: str) -> str:
        """Move an object between buckets, keeping its key."""

    @abstractmethod
    def delete(self, bucket: str, keys: list[str]) -> int:
        """Delete the given keys; missing keys are ignored. Returns count removed."""

    @abstractmethod
    def delete_prefix(self, bucket: str, prefix: str) -> int:
        """Delete every object whose key starts with ``prefix/``."""


class LocalObjectStore(ObjectStore):
    """Buckets are directories below ``root``; keys are relative paths."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        if not key or key.startswith("/") or ".." in Path(key).parts:
            raise StorageError(f"Invalid object key: {key!r}")
        return self.root / bucket / key

    def put(self, bucket: str, key: str, data: bytes) -> str:
        target = self._path(bucket, key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f".{target.name}.part")
            tmp.write_bytes(data)
            tmp.replace(target)
        except OSError as exc:
            raise StorageError(
                f"Failed to write {bucket}/{key}: {exc}",
                details={"bucket": bucket, "key": key},
            ) from exc
        return key

    def open(self, bucket: str, key: str) -> BinaryIO:
        try:
            return self._path(bucket, key).open("rb")
        except OSError as exc:
            raise StorageError(
                f"Failed to read {bucket}/{key}: {exc}",
                details={"bucket": bucket, "key": key},
            ) from exc

    def size(self, bucket: str, key: str) -> int | None:
        path = self._path(bucket, key)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to stat {bucket}/{key}: {exc}") from exc

    def promote(self, key: str, source_bucket: str, target_bucket: str) -> str:
        source = self._path(source_bucket, key)
        target = self._path(target_bucket, key)
        if not source.exists() and target.exists():
            return key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as exc:
            raise StorageError(
                f"Failed to promote {key} from {source_bucket} to {target_bucket}: {exc}",
                details={"key": key, "source": source_bucket, "target": target_bucket},
            ) from exc
        return key

    def delete(self, bucket: str, keys: list[str]) -> int:
        removed = 0
        for key in keys:
            path = self._path(bucket, key)
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageError(f"Failed to delete {bucket}/{key}: {exc}") from exc
        return removed

    def delete_prefix(self, bucket: str, prefix: str) -> int:
        directory = self._path(bucket, prefix)
        if not directory.is_dir():
            return 0
        removed = sum(1 for path in directory.rglob("*") if path.is_file())
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise StorageError(f"Failed to delete {bucket}/{prefix}/: {exc}") from exc
        logger.info(f"Removed {removed} leftover object(s) under {bucket}/{prefix}/")
        return removed


def get_object_store() -> ObjectStore:
    """FastAPI/Celery dependency returning the configured store."""
    return LocalObjectStore(get_settings().storage_root)
