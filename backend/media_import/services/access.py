"""Caller identity and the role rules for pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from media_import.core.errors import PermissionDeniedError

SUPER_ADMIN = "super_admin"
ADMIN = "admin"
CONTENT_MANAGER = "content_manager"

PIPELINE_ROLES = frozenset({SUPER_ADMIN, ADMIN, CONTENT_MANAGER})
COMMIT_ROLES = frozenset({SUPER_ADMIN, ADMIN})
ROLLBACK_ROLES = frozenset({SUPER_ADMIN})


@dataclass(frozen=True)
class Caller:
    user_id: str
    email: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_admin(self) -> bool:
        return bool(self.roles & COMMIT_ROLES)

    def has_any(self, roles: Iterable[str]) -> bool:
        return bool(self.roles & frozenset(roles))

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe form for handing the caller to a Celery task."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "roles": sorted(self.roles),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Caller":
        return cls(
            user_id=payload["user_id"],
            email=payload.get("email"),
            roles=frozenset(payload.get("roles") or ()),
            ip_address=payload.get("ip_address"),
            user_agent=payload.get("user_agent"),
        )


def require_roles(caller: Caller, allowed: frozenset[str], action: str) -> None:
    if not caller.has_any(allowed):
        raise PermissionDeniedError(
            f"Role {' or '.join(sorted(allowed))} required to {action}",
            details={"action": action},
        )
