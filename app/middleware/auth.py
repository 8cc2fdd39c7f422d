"""
Bearer-token authentication for the API routes.

Tokens are HS256 JWTs (PyJWT) carrying the user id in `sub` and a `role`.
Admins can act on any practitioner; practitioners only on themselves.
"""
import os
import logging
from typing import Optional

import jwt  # PyJWT
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# In development, falls back to a default (insecure for prod)
JWT_SECRET = os.getenv("JWT_SECRET", "development-secret-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

ADMIN_ROLES = ["admin", "superadmin"]


class TokenPayload:
    """Decoded JWT token payload."""
    def __init__(self, payload: dict):
        self.sub = payload.get("sub")  # user id
        self.email = payload.get("email")
        self.role = payload.get("role", "user")
        self.exp = payload.get("exp")
        self._raw = payload

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def __repr__(self) -> str:
        return f"TokenPayload(sub={self.sub}, role={self.role})"


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """
    Verify JWT token from Authorization header.

    Returns:
        TokenPayload if valid token provided, None if no token.

    Raises:
        HTTPException: For invalid or expired tokens.
    """
    if not credentials:
        return None

    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return TokenPayload(payload)

    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise HTTPException(
            status_code=401,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"}
        )

    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )


def require_auth(
    payload: Optional[TokenPayload] = Depends(verify_token)
) -> TokenPayload:
    """Dependency that requires valid authentication."""
    if not payload:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return payload


def require_role(allowed_roles: list[str]):
    """
    Factory for role-based access control dependency.

    Usage:
        @router.post("/admin/renew-channels")
        async def renew(user: TokenPayload = Depends(require_role(ADMIN_ROLES))):
            ...
    """
    def role_checker(payload: TokenPayload = Depends(require_auth)) -> TokenPayload:
        if payload.role not in allowed_roles:
            logger.warning(f"Access denied: role {payload.role} not in {allowed_roles}")
            raise HTTPException(
                status_code=403,
                detail=f"Required role: {', '.join(allowed_roles)}"
            )
        return payload
    return role_checker


def require_self_or_admin(
    practitioner_id: str,
    payload: TokenPayload = Depends(require_auth)
) -> TokenPayload:
    """
    Allow admins, or the practitioner named in the path.

    `practitioner_id` is taken from the route path parameter of the same name.
    """
    if payload.is_admin or payload.sub == practitioner_id:
        return payload

    logger.warning(f"Practitioner access denied: user {payload.sub} != requested {practitioner_id}")
    raise HTTPException(
        status_code=403,
        detail="Access to this practitioner is not permitted"
    )
