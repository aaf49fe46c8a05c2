"""
Admin and scheduler authentication.

Two credentials are accepted on privileged routes:
- X-Admin-Key: shared admin secret (winner publication, archiving, scoring, purchases)
- Authorization: Bearer <CRON_SECRET_TOKEN>: the external scheduler that drives
  phase advancement, the monthly reset and competition creation

Security guarantees:
- Comparisons are constant-time
- Unconfigured secrets fail closed with 503, never open
- Actor identity is a key hash, never the key itself
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import HTTPException, Request

from writeclub.core.config import settings

logger = logging.getLogger("writeclub.auth")


@dataclass
class AdminActor:
    """Represents an authenticated privileged caller."""
    actor_type: Literal["admin_key", "scheduler"]
    actor_id: str  # "admin:<hash>" or "scheduler:<hash>"
    actor_display: Optional[str] = None


def _key_hash(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def _matches(candidate: str, expected: Optional[str]) -> bool:
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not _matches(header_key, settings.ADMIN_KEY):
        return None
    return AdminActor(
        actor_type="admin_key",
        actor_id=f"admin:{_key_hash(header_key)}",
        actor_display="Admin Key",
    )


def verify_cron_token(request: Request) -> Optional[AdminActor]:
    """
    Verify the scheduler's bearer token.
    Returns AdminActor if valid, None if not present/invalid.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not _matches(token, settings.CRON_SECRET_TOKEN):
        return None
    return AdminActor(
        actor_type="scheduler",
        actor_id=f"scheduler:{_key_hash(token)}",
        actor_display="External Scheduler",
    )


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.
    Raises HTTPException if authentication fails.

    Usage:
        @router.post("/v1/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            # actor contains verified identity
            pass
    """
    if not settings.ADMIN_KEY:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "Admin authentication not configured",
                "code": "admin_auth_unconfigured",
            }
        )

    actor = verify_admin_key(request)
    if not actor:
        logger.warning("[admin_auth] rejected admin request", extra={"path": request.url.path})
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized: invalid or missing admin credentials",
                "code": "admin_unauthorized",
            }
        )
    return actor


def require_scheduler(request: Request) -> AdminActor:
    """FastAPI dependency for trigger endpoints (bearer CRON_SECRET_TOKEN)."""
    if not settings.CRON_SECRET_TOKEN:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "Scheduler authentication not configured",
                "code": "cron_auth_unconfigured",
            }
        )

    actor = verify_cron_token(request)
    if not actor:
        logger.warning("[admin_auth] rejected scheduler request", extra={"path": request.url.path})
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized: invalid or missing scheduler token",
                "code": "cron_unauthorized",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor
