# ============================================================================
# FILE: counselbook/api/dependencies.py
# JWT bearer authentication; tokens are issued by the auth service
# ============================================================================
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from counselbook.config.settings import settings
from counselbook.models.user import UserRole

jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Enter your JWT access token"
)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller"""
    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role.value == settings.ADMIN_ROLE


def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def get_current_actor(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
) -> Actor:
    """
    Resolve the caller from the bearer token's `sub` and `role` claims.

    Usage:
        def my_route(actor: Actor = Depends(get_current_actor)):
            ...
    """
    payload = verify_access_token(credentials.credentials)

    try:
        return Actor(user_id=UUID(payload["sub"]), role=UserRole(payload["role"]))
    except (KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is missing a valid subject or role",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return actor


def resolve_counselor_id(actor: Actor, counselor_id: Optional[UUID] = None) -> UUID:
    """Counselors act on their own data; admins may name a counselor"""
    if counselor_id is None or counselor_id == actor.user_id:
        return actor.user_id
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage your own calendar and appointments",
        )
    return counselor_id
