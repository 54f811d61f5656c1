from typing import Annotated, Any, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from rentshare.database import get_db
from rentshare.core.permissions import PermissionChecker
from rentshare.core.security import decode_access_token
from rentshare.services.discount_service import DiscountService


logger = logging.getLogger(__name__)

# HTTP Bearer security schemes
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _payload_from_token(token: str) -> dict[str, Any]:
    payload = decode_access_token(token)
    if payload is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise _credentials_error()
    try:
        payload["sub"] = uuid.UUID(str(payload["sub"]))
    except ValueError:
        logger.warning(f"Invalid user_id in token: {payload['sub']}")
        raise _credentials_error()
    return payload


async def get_token_payload(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> dict[str, Any]:
    """
    Claims of the caller's bearer token, with `sub` parsed to a UUID.

    Identity lives in an external service; nothing is looked up here.
    """
    return _payload_from_token(credentials.credentials)


async def get_current_user_id(
    payload: Annotated[dict[str, Any], Depends(get_token_payload)],
) -> uuid.UUID:
    return payload["sub"]


async def get_optional_user_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(optional_security)],
) -> Optional[uuid.UUID]:
    """Like get_current_user_id, but anonymous callers get None."""
    if credentials is None:
        return None
    return _payload_from_token(credentials.credentials)["sub"]


async def get_permission_checker(
    payload: Annotated[dict[str, Any], Depends(get_token_payload)],
) -> PermissionChecker:
    return PermissionChecker(payload["sub"], payload.get("permissions") or [])


def require_permissions(*required_permissions: str):
    """
    Dependency factory to require specific permissions.

    Usage:
        @router.post("", dependencies=[Depends(require_permissions(DISCOUNTS_MANAGE))])
        async def issue_discount():
            ...
    """
    async def permission_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ):
        for permission in required_permissions:
            if not permission_checker.has_permission(permission):
                logger.warning(f"User {permission_checker.user_id} denied: missing {permission}")
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required: {permission}"
                )
        return True

    return permission_dependency


async def get_discount_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DiscountService:
    return DiscountService(db)


# Type aliases for cleaner dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
OptionalUserId = Annotated[Optional[uuid.UUID], Depends(get_optional_user_id)]
Discounts = Annotated[DiscountService, Depends(get_discount_service)]
