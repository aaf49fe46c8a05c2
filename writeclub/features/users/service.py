"""
User domain service.
- get_or_create_user(user_id)
- get_user(user_id)
- set_user_tier(user_id, tier)
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from writeclub.core.database import get_db_session, users as app_users, as_utc
from writeclub.core.errors import NotFoundError, ValidationError
from writeclub.models.user import User

logger = logging.getLogger("writeclub.users")

VALID_TIERS = ("free", "basic", "premium")


def normalize_display_name(user_id: str, display_name: Optional[str]) -> str:
    return User.normalized_display_name(user_id, display_name)


def _row_to_user(row) -> User:
    return User(
        user_id=row.user_id,
        created_at=as_utc(row.created_at),
        display_name=row.display_name or normalize_display_name(row.user_id, None),
        tier=row.tier,
        status=row.status,
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return _row_to_user(row)


def get_or_create_user(user_id: str, display_name: Optional[str] = None, tier: str = "free") -> User:
    existing = get_user(user_id)
    if existing:
        return existing

    if tier not in VALID_TIERS:
        raise ValidationError(f"Unknown tier: {tier}", code="invalid_tier")

    now = datetime.now(timezone.utc)
    display = normalize_display_name(user_id, display_name)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    display_name=display,
                    tier=tier,
                    status="active",
                    created_at=now,
                )
            )
    except IntegrityError:
        # Another request created the same user first
        return get_user(user_id)

    logger.info("user.created", extra={"user_id": user_id, "tier": tier})
    return User(user_id=user_id, created_at=now, display_name=display, tier=tier, status="active")


def get_user_tier(user_id: str, session=None) -> str:
    """Tier for limit calculation. Unknown users are treated as free."""
    query = select(app_users.c.tier).where(app_users.c.user_id == user_id)
    if session is not None:
        tier = session.execute(query).scalar()
    else:
        with get_db_session() as s:
            tier = s.execute(query).scalar()
    return tier or "free"


def set_user_tier(user_id: str, tier: str) -> User:
    if tier not in VALID_TIERS:
        raise ValidationError(f"Unknown tier: {tier}", code="invalid_tier")
    with get_db_session() as session:
        result = session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(tier=tier)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")
    logger.info("user.tier_changed", extra={"user_id": user_id, "tier": tier})
    return get_user(user_id)
