"""
End-user auth utilities.

Validates bearer JWTs (issued by the external session service) and extracts
user_id from request context. Falls back to X-User-Id header when
ALLOW_USER_ID_HEADER is enabled (development and tests).
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
from writeclub.core.config import settings
import jwt
import logging

logger = logging.getLogger(__name__)


def verify_user_jwt(token: str) -> Optional[str]:
    """
    Verify a user JWT and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})

    Returns:
        user_id from the 'sub' claim, or None when no secret is configured

    Raises:
        HTTPException 401: Invalid or expired token
    """
    if not settings.AUTH_JWT_SECRET:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return user_id


def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (when ALLOW_USER_ID_HEADER)
    3. Raise 401 Unauthorized

    After successful auth, the user row is upserted so quota counters have an owner.
    """
    from writeclub.features.users.service import get_or_create_user

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_user_jwt(auth_header[7:].strip())
        if user_id:
            get_or_create_user(user_id)
            return user_id

    if x_user_id and settings.ALLOW_USER_ID_HEADER:
        get_or_create_user(x_user_id)
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail={
            "error": "Missing Authorization (Bearer JWT) or X-User-Id header",
            "code": "unauthorized",
        }
    )
