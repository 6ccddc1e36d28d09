"""Bearer-token authentication producing the pipeline Caller."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from media_import.core.config import Settings, get_settings
from media_import.services.access import PIPELINE_ROLES, Caller

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str, settings: Settings) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def get_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Caller:
    """Resolve the caller from the bearer token; 401 without one, 403 without a pipeline role."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_token(credentials.credentials, settings)
    except JWTError as exc:
        logger.info(f"Rejected bearer token: {exc}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")

    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    caller = Caller(
        user_id=str(subject),
        email=claims.get("email"),
        roles=frozenset(str(role) for role in roles),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if not caller.has_any(PIPELINE_ROLES):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Media import access required")
    return caller
