"""
writeclub/features/usage/service.py

Quota ledger.

One usage_counters row per user holds the counters for the month named by
month_key. Consumption is a single conditional UPDATE:

    UPDATE usage_counters SET c = c + 1
    WHERE user_id = :u AND month_key = :m AND c + 1 <= :limit

so concurrent callers can never push a counter past its limit. A row left
over from an earlier month is zeroed lazily before the increment (and in bulk
by the monthly reset sweep). Month keys only move forward.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from writeclub.core.clock import resolve_now
from writeclub.core.database import get_db_session, usage_counters, as_utc
from writeclub.core.errors import QuotaExceededError, ValidationError
from writeclub.features.limits.service import effective_limits_for, month_key_for, month_start_for
from writeclub.models.usage import (
    COUNTERS,
    UNLIMITED,
    ConsumeResult,
    UsageCounters,
    UsageSnapshot,
    remaining_for,
)

logger = logging.getLogger("writeclub.usage")

_ZEROED = {counter: 0 for counter in COUNTERS}


def _check_counter(counter: str) -> None:
    if counter not in COUNTERS:
        raise ValidationError(f"Unknown usage counter: {counter}", code="invalid_counter")


def _ensure_row(session, user_id: str, month_key: str) -> None:
    exists = session.execute(
        select(usage_counters.c.user_id).where(usage_counters.c.user_id == user_id)
    ).first()
    if exists:
        return
    try:
        with session.begin_nested():
            session.execute(
                insert(usage_counters).values(
                    user_id=user_id,
                    month_key=month_key,
                    version=0,
                    updated_at=datetime.now(timezone.utc),
                    **_ZEROED,
                )
            )
    except IntegrityError:
        # Row created by a concurrent request
        logger.debug("usage.row_exists", extra={"user_id": user_id})


def _lazy_reset(session, user_id: str, month_key: str) -> bool:
    result = session.execute(
        update(usage_counters)
        .where(usage_counters.c.user_id == user_id)
        .where(usage_counters.c.month_key < month_key)
        .values(
            month_key=month_key,
            version=usage_counters.c.version + 1,
            updated_at=datetime.now(timezone.utc),
            **_ZEROED,
        )
    )
    if result.rowcount:
        logger.info("usage.lazy_reset", extra={"user_id": user_id, "month_key": month_key})
    return bool(result.rowcount)


def _read_used(session, user_id: str, counter: str, month_key: str) -> int:
    row = session.execute(
        select(usage_counters.c[counter], usage_counters.c.month_key)
        .where(usage_counters.c.user_id == user_id)
    ).first()
    if not row or row.month_key != month_key:
        return 0
    return row[0]


def _consume(session, user_id: str, counter: str, month_key: str) -> ConsumeResult:
    _ensure_row(session, user_id, month_key)
    _lazy_reset(session, user_id, month_key)

    limit = effective_limits_for(user_id, month_key, session=session).for_counter(counter)
    column = usage_counters.c[counter]

    stmt = (
        update(usage_counters)
        .where(usage_counters.c.user_id == user_id)
        .where(usage_counters.c.month_key == month_key)
    )
    if limit != UNLIMITED:
        stmt = stmt.where(column + 1 <= limit)
    result = session.execute(
        stmt.values(
            {
                counter: column + 1,
                "version": usage_counters.c.version + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )
    )

    allowed = result.rowcount == 1
    used = _read_used(session, user_id, counter, month_key)
    consume = ConsumeResult(
        allowed=allowed,
        counter=counter,
        used=used,
        limit=limit,
        remaining=remaining_for(limit, used) if allowed else 0,
    )
    logger.info(
        "usage.consume",
        extra={
            "user_id": user_id,
            "counter": counter,
            "month_key": month_key,
            "allowed": allowed,
            "used": used,
            "limit": limit,
        },
    )
    return consume


def try_consume(
    user_id: str,
    counter: str,
    month_key: Optional[str] = None,
    *,
    session=None,
    now: Optional[datetime] = None,
) -> ConsumeResult:
    """
    Atomically take one token from a counter if the limit allows it.

    Args:
        user_id: Owner of the counters
        counter: One of COUNTERS
        month_key: YYYY-MM (defaults to the trusted clock's current month)
        session: Join the caller's transaction instead of opening one
        now: Fixed timestamp used when month_key is omitted

    Returns:
        ConsumeResult. allowed=False leaves the counter untouched.
    """
    _check_counter(counter)
    key = month_key or month_key_for(resolve_now(now))
    month_start_for(key)

    if session is not None:
        return _consume(session, user_id, counter, key)
    with get_db_session() as s:
        return _consume(s, user_id, counter, key)


def consume_or_raise(
    user_id: str,
    counter: str,
    month_key: Optional[str] = None,
    *,
    session=None,
    now: Optional[datetime] = None,
) -> ConsumeResult:
    """try_consume that raises QuotaExceededError (remaining=0) on denial."""
    result = try_consume(user_id, counter, month_key, session=session, now=now)
    if not result.allowed:
        raise QuotaExceededError(
            f"Monthly limit reached for {counter}",
            counter=counter,
            limit=result.limit,
        )
    return result


def get_counters(user_id: str, session=None) -> Optional[UsageCounters]:
    query = select(usage_counters).where(usage_counters.c.user_id == user_id)
    if session is not None:
        row = session.execute(query).first()
    else:
        with get_db_session() as s:
            row = s.execute(query).first()
    if not row:
        return None
    return UsageCounters(
        user_id=row.user_id,
        month_key=row.month_key,
        stories_created=row.stories_created,
        assessment_uploads=row.assessment_uploads,
        competition_entries=row.competition_entries,
        total_assessment_attempts=row.total_assessment_attempts,
        version=row.version,
        updated_at=as_utc(row.updated_at),
    )


def peek(user_id: str, month_key: Optional[str] = None, *, now: Optional[datetime] = None) -> UsageSnapshot:
    """
    Read-only view of a user's usage, limits and remaining tokens.

    A row still on an earlier month reads as zero; nothing is written.
    """
    from writeclub.features.users.service import get_user_tier

    key = month_key or month_key_for(resolve_now(now))
    month_start_for(key)

    with get_db_session() as session:
        counters = get_counters(user_id, session=session)
        tier = get_user_tier(user_id, session=session)
        limits = effective_limits_for(user_id, key, session=session, tier=tier)

    if counters is None or counters.month_key != key:
        used = dict(_ZEROED)
    else:
        used = {counter: getattr(counters, counter) for counter in COUNTERS}

    return UsageSnapshot(
        user_id=user_id,
        month_key=key,
        tier=tier,
        used=used,
        limits=limits,
        remaining={c: remaining_for(limits.for_counter(c), used[c]) for c in COUNTERS},
    )


def reset_all_usage(current_month_key: str) -> int:
    """
    Monthly reset sweep: zero every row still on an earlier month.

    Returns the number of rows reset. Running it again in the same month is a
    no-op and returns 0.
    """
    month_start_for(current_month_key)
    with get_db_session() as session:
        result = session.execute(
            update(usage_counters)
            .where(usage_counters.c.month_key < current_month_key)
            .values(
                month_key=current_month_key,
                version=usage_counters.c.version + 1,
                updated_at=datetime.now(timezone.utc),
                **_ZEROED,
            )
        )
        count = result.rowcount or 0

    logger.info("usage.monthly_reset", extra={"month_key": current_month_key, "users_reset": count})
    return count
