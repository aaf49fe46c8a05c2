"""
writeclub/features/limits/service.py

Limit calculation.

Effective monthly limits = tier base + bonuses from purchases made since the
start of the month. compute_limits is pure: same inputs, same output. The
database helpers below only gather its inputs.
"""

import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select

from writeclub.core.config import settings
from writeclub.core.database import get_db_session, purchases as purchases_table, as_utc
from writeclub.core.errors import ValidationError
from writeclub.models.purchase import PurchaseRecord
from writeclub.models.usage import COUNTERS, UNLIMITED, EffectiveLimits

# Base quotas per tier. competition_entries is always MAX_ENTRIES_PER_MONTH.
TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {
        "stories_created": 3,
        "assessment_uploads": 9,
        "total_assessment_attempts": 9,
    },
    "basic": {
        "stories_created": 30,
        "assessment_uploads": 30,
        "total_assessment_attempts": 30,
    },
    "premium": {
        "stories_created": 60,
        "assessment_uploads": 60,
        "total_assessment_attempts": 60,
    },
}

# Bonus granted by one quota pack purchase
QUOTA_PACK_BONUS: Dict[str, int] = {
    "stories_added": 5,
    "assessments_added": 15,
    "attempts_added": 15,
    "entries_added": 0,
}

# Purchase bonus field -> counter it extends
BONUS_FIELDS: Dict[str, str] = {
    "stories_added": "stories_created",
    "assessments_added": "assessment_uploads",
    "attempts_added": "total_assessment_attempts",
    "entries_added": "competition_entries",
}

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def month_key_for(moment: datetime) -> str:
    """YYYY-MM of a timestamp, in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def month_start_for(month_key: str) -> datetime:
    match = _MONTH_KEY_RE.match(month_key or "")
    if not match:
        raise ValidationError(f"Invalid month key: {month_key!r}", code="invalid_month_key")
    return datetime(int(match.group(1)), int(match.group(2)), 1, tzinfo=timezone.utc)


def base_limits_for_tier(tier: str) -> EffectiveLimits:
    base = TIER_LIMITS.get(tier, TIER_LIMITS["free"])
    return EffectiveLimits(
        competition_entries=settings.MAX_ENTRIES_PER_MONTH,
        **base,
    )


def compute_limits(
    base_limits: EffectiveLimits,
    purchases: Iterable[PurchaseRecord],
    month_start: datetime,
) -> EffectiveLimits:
    """
    Merge tier base limits with in-month purchase bonuses.

    Purchases dated before month_start are ignored. Missing bonus fields count
    as zero. An unlimited (-1) base stays unlimited.
    """
    if month_start.tzinfo is None:
        month_start = month_start.replace(tzinfo=timezone.utc)

    totals = {counter: base_limits.for_counter(counter) for counter in COUNTERS}
    for purchase in purchases:
        purchase_date = purchase.purchase_date
        if purchase_date.tzinfo is None:
            purchase_date = purchase_date.replace(tzinfo=timezone.utc)
        if purchase_date < month_start:
            continue
        for bonus_field, counter in BONUS_FIELDS.items():
            if totals[counter] == UNLIMITED:
                continue
            totals[counter] += getattr(purchase, bonus_field) or 0

    return EffectiveLimits(**totals)


def next_month_start(month_start: datetime) -> datetime:
    if month_start.month == 12:
        return month_start.replace(year=month_start.year + 1, month=1)
    return month_start.replace(month=month_start.month + 1)


def load_month_purchases(user_id: str, month_start: datetime, session=None) -> List[PurchaseRecord]:
    query = (
        select(purchases_table)
        .where(purchases_table.c.user_id == user_id)
        .where(purchases_table.c.purchase_date >= month_start)
        .where(purchases_table.c.purchase_date < next_month_start(month_start))
        .order_by(purchases_table.c.purchase_date)
    )
    if session is not None:
        rows = session.execute(query).all()
    else:
        with get_db_session() as s:
            rows = s.execute(query).all()

    return [
        PurchaseRecord(
            id=row.id,
            user_id=row.user_id,
            purchase_type=row.purchase_type,
            amount=row.amount,
            purchase_date=as_utc(row.purchase_date),
            stories_added=row.stories_added,
            assessments_added=row.assessments_added,
            attempts_added=row.attempts_added,
            entries_added=row.entries_added,
            external_ref=row.external_ref,
        )
        for row in rows
    ]


def effective_limits_for(user_id: str, month_key: str, session=None, tier: Optional[str] = None) -> EffectiveLimits:
    """Limits for one user and month, read from the store."""
    from writeclub.features.users.service import get_user_tier

    month_start = month_start_for(month_key)
    user_tier = tier or get_user_tier(user_id, session=session)
    purchases = load_month_purchases(user_id, month_start, session=session)
    return compute_limits(base_limits_for_tier(user_tier), purchases, month_start)
