from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.core.errors import Forbidden
from app.models.principal import Principal
from app.repos.unit_of_work import UnitOfWork, unit_of_work
from app.services import token_service

logger = logging.getLogger(__name__)

# Tokens come from the platform auth service; tokenUrl only feeds the docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


def require_any_role(roles: set[str]):
    """Dependency factory: demand at least one of the given roles."""

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                roles,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


async def get_uow() -> AsyncIterator[UnitOfWork]:
    """One unit of work per request; committed when the handler returns."""
    async with unit_of_work() as uow:
        yield uow


# ---------------------------------------------------------------------------
# Record ownership
# ---------------------------------------------------------------------------
# A student's token subject is their student id.  Students act on their own
# records; instructors and admins may read anyone's; writes on someone
# else's record need admin.


def student_id_of(principal: Principal) -> UUID:
    try:
        return UUID(principal.user_id)
    except ValueError:
        raise Forbidden(
            "token subject is not a student id", details={"sub": principal.user_id}
        ) from None


def _is_self(principal: Principal, student_id: UUID) -> bool:
    return principal.user_id == str(student_id)


def ensure_can_read(principal: Principal, student_id: UUID) -> None:
    if principal.is_staff() or _is_self(principal, student_id):
        return
    logger.warning(
        "Read denied: user=%s on records of student=%s", principal.user_id, student_id
    )
    raise Forbidden("not allowed to read another student's records")


def ensure_can_write(principal: Principal, student_id: UUID) -> None:
    if principal.is_admin() or _is_self(principal, student_id):
        return
    logger.warning(
        "Write denied: user=%s on records of student=%s", principal.user_id, student_id
    )
    raise Forbidden("not allowed to modify another student's records")
