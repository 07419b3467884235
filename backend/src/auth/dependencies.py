# pyright: reportMissingTypeStubs=false
"""
Authentication and authorization dependencies for FastAPI.

Tokens are issued by the identity service; this module only verifies them,
loads the caller's staff record and turns it into an explicit CallerContext
that every service operation receives.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.config import JWT_ALGORITHM, JWT_SECRET_KEY
from core.constants import ROLE_SUPER_ADMIN
from core.database import get_db
from core.exceptions import ForbiddenError
from models import User

logger = logging.getLogger(__name__)


class CallerContext:
    """Identity, role and tenant scope of the staff member making a call."""

    def __init__(
        self,
        user_id: int,
        role: str,
        center_id: Optional[int],
        name: str = "",
    ):
        self.user_id = user_id
        self.role = role
        self.center_id = center_id  # None only for superAdmin
        self.name = name

    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def has_role(self, *roles: str) -> bool:
        """True if the caller holds any of ``roles``. superAdmin holds every role."""
        return self.is_super_admin() or self.role in roles

    def can_access_center(self, center_id: Optional[int]) -> bool:
        return self.is_super_admin() or (center_id is not None and center_id == self.center_id)

    def __repr__(self) -> str:
        return f"CallerContext(user_id={self.user_id}, role='{self.role}', center_id={self.center_id})"


def ensure_center_access(caller: CallerContext, center_id: Optional[int], entity: str) -> None:
    """
    Reject access to a record of another center.

    Raises:
        ForbiddenError: If the caller is scoped to a different center
    """
    if not caller.can_access_center(center_id):
        raise ForbiddenError(
            f"Access denied: {entity} belongs to a different center",
            {"entity": entity, "center_id": center_id},
        )


def resolve_center_scope(caller: CallerContext, requested_center_id: Optional[int] = None) -> Optional[int]:
    """
    Center id a list query must be filtered to.

    superAdmin may pick any center (or none, meaning all centers); everyone
    else is always limited to their own center.
    """
    if caller.is_super_admin():
        return requested_center_id
    return caller.center_id


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify and decode a JWT access token, returning None if invalid or expired."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Dict[str, Any]]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None
    return decode_access_token(credentials.credentials)


def get_current_caller(
    payload: Optional[Dict[str, Any]] = Depends(get_token_payload),
    db: Session = Depends(get_db)
) -> CallerContext:
    """Get the authenticated caller from the JWT token and the staff directory."""
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated"
        )

    return CallerContext(
        user_id=user.id,
        role=user.role,
        center_id=user.center_id,
        name=user.full_name,
    )


def require_roles(*roles: str):
    """
    Dependency factory restricting an endpoint to the given roles.

    superAdmin passes every role check.

    Returns:
        Dependency function that can be used with FastAPI Depends()
    """
    def dependency(caller: CallerContext = Depends(get_current_caller)) -> CallerContext:
        if not caller.has_role(*roles):
            logger.warning(f"Role {caller.role} denied; requires one of {roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied: requires one of {', '.join(roles)}"
            )
        return caller

    return dependency
