"""Exception taxonomy for the media import pipeline.

Operation-level violations (config, state, permission, lookup) propagate to the
caller. Per-file and per-asset failures (storage, commit) are caught inside the
batch loops and persisted as ImportErrorRecord rows instead.
"""

from __future__ import annotations

from typing import Any


class MediaImportError(Exception):
    """Base class for pipeline errors."""

    code = "media_import_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(MediaImportError):
    """Malformed job settings, mapping rows or asset patches."""

    code = "config_error"


class ConflictError(MediaImportError):
    """Operation not allowed from the job's current state, or one already in flight."""

    code = "conflict"


class PermissionDeniedError(MediaImportError):
    """Caller lacks the role required for the operation."""

    code = "permission_denied"


class NotFoundError(MediaImportError):
    """Unknown job or asset, or a job that has been rolled back."""

    code = "not_found"


class StorageError(MediaImportError):
    """Object store read/write/delete failure."""

    code = "storage_error"


class CommitError(MediaImportError):
    """Failure while publishing a single asset."""

    code = "commit_error"
