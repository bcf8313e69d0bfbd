"""
Auth utilities for the reviewqr API.

Verifies bearer JWTs issued by the identity provider and extracts the
owner's user id from the `sub` claim. Outside production, an X-User-Id header
is accepted instead (local development, tests).
"""
from typing import Any, Dict, Optional
import logging

import jwt
from fastapi import Header, HTTPException, Request

from reviewqr.core.config import settings

logger = logging.getLogger(__name__)


def _algorithms() -> list:
    return [alg.strip() for alg in settings.AUTH_JWT_ALGORITHMS.split(",") if alg.strip()]


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify signature and expiry and return the claims.

    Raises:
        HTTPException 401: Invalid, expired, or unverifiable token
    """
    if not settings.AUTH_JWT_SECRET:
        logger.warning("Bearer token received but AUTH_JWT_SECRET is not configured")
        raise HTTPException(status_code=401, detail="Token verification unavailable")

    try:
        return jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=_algorithms(),
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def header_fallback_allowed() -> bool:
    return settings.AUTH_ALLOW_HEADER_FALLBACK and settings.ENV.lower() != "production"


def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development fallback: owner user ID"),
) -> str:
    """
    Resolve the authenticated owner.

    Priority:
    1. Bearer JWT (`sub` claim)
    2. X-User-Id header, when fallback is allowed
    3. 401
    """
    token = bearer_token(request)
    if token:
        claims = decode_token(token)
        user_id = claims.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="No 'sub' claim in token")
        return str(user_id)

    if x_user_id and header_fallback_allowed():
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail={
            "error": "unauthorized",
            "message": "Missing Authorization (Bearer JWT) or X-User-Id header",
        },
    )
