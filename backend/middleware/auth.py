"""
Authorization Gate - Middleware and Dependencies

Stateless per-request check of the bearer access token. The role is read
from the signed token, so no database lookup happens here; a role change
takes effect once the subject's current access token expires or is
refreshed.

Provides:
- AuthorizationGate: verify(token) and authorize(principal, roles)
- get_current_user / get_current_user_required: FastAPI dependencies
- RoleChecker: dependency for role-based access control (401 / 403)
"""

from functools import lru_cache
from typing import Iterable, List, Optional, Union
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from identity.errors import IdentityError, InvalidTokenError, TokenExpiredError
from identity.factory import get_token_codec
from identity.models import Role
from identity.schemas import AuthUser
from identity.tokens import TokenCodec
from logging_config import set_request_context

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthorizationGate:
    """Verifies bearer tokens and checks role membership."""

    def __init__(self, codec: TokenCodec):
        self.codec = codec

    def verify(self, token: Optional[str]) -> AuthUser:
        """
        Principal behind an access token.

        Raises TokenExpiredError for an expired token and InvalidTokenError
        for a missing, forged or malformed one.
        """
        if not token:
            raise InvalidTokenError("Access token is required")
        claims = self.codec.verify_access_token(token)
        return AuthUser(id=claims.user_id, email=claims.email, role=claims.role)

    @staticmethod
    def authorize(principal: AuthUser, allowed_roles: Iterable[Union[Role, str]]) -> bool:
        allowed = {r.value if isinstance(r, Role) else r for r in allowed_roles}
        return principal.role in allowed


@lru_cache()
def get_authorization_gate() -> AuthorizationGate:
    return AuthorizationGate(get_token_codec())


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


def _authenticate(
    credentials: Optional[HTTPAuthorizationCredentials],
    gate: AuthorizationGate,
) -> AuthUser:
    if not credentials:
        raise _unauthorized("Not authenticated")

    try:
        user = gate.verify(credentials.credentials)
    except TokenExpiredError:
        raise _unauthorized("Token has expired")
    except IdentityError as e:
        logger.warning(f"Token verification failed: {e.message}")
        raise _unauthorized("Invalid or expired token")

    set_request_context(user_id=user.id, user_email=user.email)
    return user


# ==================== DEPENDENCIES ====================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    gate: AuthorizationGate = Depends(get_authorization_gate),
) -> Optional[AuthUser]:
    """
    Extract current user from JWT token.
    Returns None if no token or invalid token.
    """
    if not credentials:
        return None
    try:
        return _authenticate(credentials, gate)
    except HTTPException:
        return None


async def get_current_user_required(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    gate: AuthorizationGate = Depends(get_authorization_gate),
) -> AuthUser:
    """
    Extract current user from JWT token.
    Raises 401 if no token or invalid token.
    """
    return _authenticate(credentials, gate)


class RoleChecker:
    """
    Dependency class for role-based access control.

    Usage:
        @router.get("/admin-only")
        async def admin_endpoint(user: AuthUser = Depends(RoleChecker(["admin"]))):
            ...
    """

    def __init__(self, allowed_roles: List[Union[Role, str]]):
        self.allowed_roles = [r.value if isinstance(r, Role) else r for r in allowed_roles]

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security),
        gate: AuthorizationGate = Depends(get_authorization_gate),
    ) -> AuthUser:
        user = _authenticate(credentials, gate)

        if not gate.authorize(user, self.allowed_roles):
            logger.warning(f"Access denied for {user.email} (role: {user.role})")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {self.allowed_roles}"
            )

        return user


# Convenience role checkers
require_admin = RoleChecker([Role.ADMIN])
require_auth = RoleChecker([Role.ADMIN, Role.EMPLOYEE])
