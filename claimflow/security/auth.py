# ==== AUTHENTICATION AND AUTHORIZATION ==== #

"""
Bearer token authentication for claimflow.

This module turns a signed JWT into an ``Identity`` for the workflow
engine, refreshes the identity directory from it, and provides the role
gates used by the manager and finance routers.
"""

import datetime as dt
from typing import Callable, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from sqlalchemy.exc import DBAPIError

from claimflow.business.errors import StorageUnavailableError
from claimflow.business.identity import Identity, Role
from claimflow.observability.logging import get_logger
from claimflow.settings import settings
from claimflow.storage.claims import IdentityDirectory
from claimflow.storage.db import get_session


logger = get_logger(__name__)
directory = IdentityDirectory()


# ==== TOKEN DECODING ==== #


def decode_identity(token: str) -> Identity:
    """
    Decode and verify a token into an identity.

    Args:
        token: Encoded JWT

    Returns:
        Identity: Actor described by the token claims

    Raises:
        jwt.InvalidTokenError: If the signature, expiry or claims are invalid
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM]
    )

    try:
        manager_id = payload.get("manager_id")
        issued_at = payload.get("iat")
        return Identity(
            id=int(payload["sub"]),
            display_name=str(payload.get("name") or payload["sub"]),
            role=Role(str(payload["role"]).upper()),
            manager_id=int(manager_id) if manager_id is not None else None,
            issued_at=(
                dt.datetime.fromtimestamp(int(issued_at), dt.timezone.utc).replace(tzinfo=None)
                if issued_at is not None else None
            ),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise jwt.InvalidTokenError(f"Malformed identity claims: {e}") from e


# ==== AUTHENTICATION DEPENDENCIES ==== #


async def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    """
    Resolve the caller's identity from the Authorization header.

    The identity directory is refreshed with the token's display name, role
    and manager so team queues reflect the latest organisation chart.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Identity: Authenticated actor

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
        StorageUnavailableError: If the directory cannot be refreshed
    """
    # --► AUTHORIZATION HEADER VALIDATION
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header format"
        )

    # --► TOKEN VERIFICATION
    token = authorization.split(" ", 1)[1]
    try:
        identity = decode_identity(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    # --► DIRECTORY REFRESH
    try:
        async with get_session() as db:
            await directory.sync(
                db, identity, dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
            )
    except DBAPIError as e:
        logger.error(
            f"Identity directory refresh failed: {e}", identity_id=identity.id
        )
        raise StorageUnavailableError(
            "Storage unavailable while refreshing the identity directory"
        ) from e

    return identity


def require_role(*roles: Role) -> Callable:
    """
    Build a dependency that admits only identities holding one of ``roles``.

    Args:
        *roles: Accepted roles

    Returns:
        Callable: FastAPI dependency returning the authenticated identity
    """
    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role {identity.role.value} may not access this resource"
            )
        return identity

    return dependency


# ==== TOKEN ISSUING ==== #


def create_identity_token(
    identity: Identity,
    expires_in_hours: int = 24,
    issued_at: Optional[dt.datetime] = None
) -> str:
    """Create a JWT for ``identity``.

    Args:
        identity: Identity to encode
        expires_in_hours: Token expiration time in hours, counted from issue
        issued_at: Aware issue time; defaults to now

    Returns:
        JWT token string
    """
    now = issued_at or dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": str(identity.id),
        "name": identity.display_name,
        "role": identity.role.value,
        "manager_id": identity.manager_id,
        "iat": now,
        "exp": now + dt.timedelta(hours=expires_in_hours)
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
