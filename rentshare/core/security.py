"""
JWT access tokens.

Tokens are minted by the identity service with the shared SECRET_KEY. This
service only reads them: `sub` is the user id and `permissions` lists the
permission codes granted to the caller. `create_access_token` exists for
tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
import uuid

from jose import JWTError, jwt

from rentshare.config import settings


def create_access_token(
    subject: str | uuid.UUID,
    permissions: Optional[Iterable[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": str(subject),
        "type": "access",
        "iat": now,
        "exp": expire,
        "permissions": sorted(permissions or []),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Return the claims of a valid access token.

    None when the signature or expiry check fails, or when the token is of
    another type or has no subject.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != "access" or not payload.get("sub"):
        return None
    return payload
