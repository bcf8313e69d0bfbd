"""
Super-admin authentication for moderation and operator endpoints.

Accepted credentials:
- Bearer JWT whose `role` claim is `super_admin`
- X-Admin-Key matching ADMIN_KEY (shared secret)

Every admin action is logged with the actor identity.
"""
import hashlib
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import HTTPException, Request

from reviewqr.core.auth import bearer_token, decode_token
from reviewqr.core.config import settings

SUPER_ADMIN_ROLE = "super_admin"


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["jwt", "admin_key"]
    actor_id: str  # JWT subject or "key:<hash>"
    actor_email: Optional[str] = None


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or header_key != expected_key:
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_type="admin_key", actor_id=f"key:{key_hash}")


def verify_admin_jwt(request: Request) -> Optional[AdminActor]:
    """AdminActor for a valid super-admin token; None when no bearer token is present.

    Raises:
        HTTPException 401: token present but invalid
        HTTPException 403: valid token without the super-admin role
    """
    token = bearer_token(request)
    if not token:
        return None

    claims = decode_token(token)
    if claims.get("role") != SUPER_ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Super admin access required")
    return AdminActor(
        actor_type="jwt",
        actor_id=str(claims.get("sub", "unknown")),
        actor_email=claims.get("email"),
    )


def require_super_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require super-admin credentials.

    Usage:
        @router.put("/super-admin/...")
        def endpoint(actor: AdminActor = Depends(require_super_admin)):
            ...
    """
    actor = verify_admin_key(request) or verify_admin_jwt(request)
    if actor:
        return actor

    if not settings.ADMIN_KEY and not settings.AUTH_JWT_SECRET:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "Admin authentication not configured",
                "code": "admin_auth_unconfigured",
                "hint": "Set ADMIN_KEY or AUTH_JWT_SECRET",
            },
        )

    raise HTTPException(
        status_code=401,
        detail={
            "error": "Unauthorized: invalid or missing admin credentials",
            "code": "admin_unauthorized",
        },
    )
