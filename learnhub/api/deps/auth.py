# learnhub/api/deps/auth.py - Bearer token claims and role checks
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from uuid import UUID
from typing import Dict, Any, List

from learnhub.core.security import decode_token

security = HTTPBearer()

ADMIN_ROLES = ["ADMIN", "SUPER_ADMIN"]


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Dict[str, Any]:
    """
    Decode JWT and return the caller's identity.
    Returns: {"user_id": UUID, "roles": [...], "claims": dict}
    """
    claims = decode_token(credentials.credentials)

    user_id_str = claims.get("sub")
    if not user_id_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing user ID"
        )

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format"
        )

    roles = claims.get("roles") or []
    return {
        "user_id": user_id,
        "roles": [str(r).upper() for r in roles],
        "claims": claims,
    }


def is_admin(ctx: Dict[str, Any]) -> bool:
    return any(role in ctx["roles"] for role in ADMIN_ROLES)


def require_roles(required_roles: List[str]):
    """
    Create a dependency that requires specific roles.
    Usage: ctx = Depends(require_roles(ADMIN_ROLES))
    """
    def role_checker(ctx=Depends(get_current_user)):
        if not any(role in ctx["roles"] for role in required_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {required_roles}"
            )
        return ctx
    return role_checker


def require_admin(ctx=Depends(get_current_user)):
    """Require admin or super admin role"""
    if not is_admin(ctx):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return ctx


def ensure_self_or_admin(ctx: Dict[str, Any], student_id: UUID) -> None:
    """Learners may only act on their own enrollments"""
    if ctx["user_id"] != student_id and not is_admin(ctx):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own enrollments"
        )
