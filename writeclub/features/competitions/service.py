"""
writeclub/features/competitions/service.py

Competition factory and queries.

- create_monthly_competition(year, month): idempotent per calendar month
- get_competition / get_active_competition / list_previous_competitions
- archive_competition
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, insert, select, true, update
from sqlalchemy.exc import IntegrityError

from writeclub.core.clock import resolve_now
from writeclub.core.config import settings
from writeclub.core.database import competitions, get_db_session, as_utc
from writeclub.core.errors import (
    ConflictError,
    DuplicateCreationError,
    NotFoundError,
    PhaseViolationError,
    ValidationError,
)
from writeclub.features.competitions.schedule import build_schedule, competition_zone, month_name
from writeclub.models.competition import (
    Competition,
    CompetitionSchedule,
    JudgingCriteria,
    WinnerRecord,
)

logger = logging.getLogger("writeclub.competitions")

ARCHIVABLE_PHASES = ("ended", "results_published")
MAX_CREATE_ATTEMPTS = 3


def row_to_competition(row) -> Competition:
    return Competition(
        id=row.id,
        month=row.month,
        year=row.year,
        phase=row.phase,
        is_active=bool(row.is_active),
        is_archived=bool(row.is_archived),
        schedule=CompetitionSchedule(
            submission_start=as_utc(row.submission_start),
            submission_end=as_utc(row.submission_end),
            judging_start=as_utc(row.judging_start),
            judging_end=as_utc(row.judging_end),
            results_date=as_utc(row.results_date),
        ),
        judging_criteria=JudgingCriteria(**(row.judging_criteria or {})),
        total_submissions=row.total_submissions,
        total_participants=row.total_participants,
        winners=[WinnerRecord(**w) for w in (row.winners or [])],
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def validate_criteria(raw: Union[JudgingCriteria, Dict[str, Any], None]) -> JudgingCriteria:
    """Default weights when raw is None; otherwise the six weights must sum to 1.0."""
    if raw is None:
        return JudgingCriteria()
    if isinstance(raw, JudgingCriteria):
        return raw
    try:
        return JudgingCriteria(**raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid judging criteria",
            code="invalid_judging_criteria",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


def _fetch_one(session, *conditions):
    query = select(competitions)
    for condition in conditions:
        query = query.where(condition)
    return session.execute(query).first()


def get_competition(competition_id: str, session=None) -> Competition:
    if session is not None:
        row = _fetch_one(session, competitions.c.id == competition_id)
    else:
        with get_db_session() as s:
            row = _fetch_one(s, competitions.c.id == competition_id)
    if not row:
        raise NotFoundError(f"Competition {competition_id} not found")
    return row_to_competition(row)


def get_active_competition(session=None) -> Optional[Competition]:
    condition = competitions.c.is_active == true()
    if session is not None:
        row = _fetch_one(session, condition)
    else:
        with get_db_session() as s:
            row = _fetch_one(s, condition)
    return row_to_competition(row) if row else None


def find_competition_for_month(year: int, month: int) -> Optional[Competition]:
    with get_db_session() as session:
        row = _fetch_one(
            session,
            competitions.c.month == month_name(month),
            competitions.c.year == year,
        )
    return row_to_competition(row) if row else None


def list_previous_competitions(limit: int = 10, page: int = 1) -> Dict[str, Any]:
    """Archived competitions, newest first, with simple pagination."""
    limit = max(1, min(limit, 100))
    page = max(1, page)
    with get_db_session() as session:
        total = session.execute(
            select(func.count()).select_from(competitions).where(competitions.c.is_archived == true())
        ).scalar() or 0
        rows = session.execute(
            select(competitions)
            .where(competitions.c.is_archived == true())
            .order_by(competitions.c.submission_start.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()

    return {
        "competitions": [row_to_competition(r) for r in rows],
        "pagination": {
            "current_page": page,
            "total_pages": (total + limit - 1) // limit,
            "total_items": total,
            "has_next": page * limit < total,
            "has_prev": page > 1,
        },
    }


def _insert_competition(
    competition_id: str,
    year: int,
    month: int,
    schedule: CompetitionSchedule,
    criteria: JudgingCriteria,
    now: datetime,
) -> None:
    try:
        with get_db_session() as session:
            deactivated = session.execute(
                update(competitions)
                .where(competitions.c.is_active == true())
                .values(is_active=False, updated_at=now)
            ).rowcount
            session.execute(
                insert(competitions).values(
                    id=competition_id,
                    month=month_name(month),
                    year=year,
                    phase="submission",
                    is_active=True,
                    is_archived=False,
                    judging_criteria=criteria.model_dump(),
                    total_submissions=0,
                    total_participants=0,
                    winners=[],
                    created_at=now,
                    updated_at=now,
                    **schedule.model_dump(),
                )
            )
    except IntegrityError as e:
        raise DuplicateCreationError(
            f"Competition for {month_name(month)} {year} already exists or another is being activated"
        ) from e

    if deactivated:
        logger.info("competition.deactivated_previous", extra={"count": deactivated})


def create_monthly_competition(
    year: Optional[int] = None,
    month: Optional[int] = None,
    *,
    judging_criteria: Union[JudgingCriteria, Dict[str, Any], None] = None,
    now: Optional[datetime] = None,
) -> Competition:
    """
    Create the competition for a calendar month, or return the existing one.

    Args:
        year, month: Target month (defaults to the current month of the trusted clock)
        judging_criteria: Optional weights (defaults apply when omitted)
        now: Fixed timestamp for deterministic tests

    Returns:
        The competition for (month, year). Calling twice returns the same record.
    """
    current_time = resolve_now(now)
    if year is None or month is None:
        local = current_time.astimezone(competition_zone())
        year, month = local.year, local.month

    schedule = build_schedule(year, month)

    for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
        existing = find_competition_for_month(year, month)
        if existing:
            logger.info(
                "competition.exists",
                extra={"competition_id": existing.id, "month": existing.month, "year": year},
            )
            return existing

        criteria = validate_criteria(judging_criteria)
        competition_id = str(uuid.uuid4())
        try:
            _insert_competition(competition_id, year, month, schedule, criteria, current_time)
        except DuplicateCreationError:
            logger.info(
                "competition.duplicate_creation",
                extra={"month": month_name(month), "year": year, "attempt": attempt},
            )
            continue

        logger.info(
            "competition.created",
            extra={
                "competition_id": competition_id,
                "month": month_name(month),
                "year": year,
                "submission_end": schedule.submission_end.isoformat(),
                "timezone": settings.COMPETITION_TIMEZONE,
            },
        )
        return get_competition(competition_id)

    raise ConflictError(
        f"Could not create competition for {month_name(month)} {year}",
        code="competition_creation_conflict",
    )


def archive_competition(competition_id: str, *, now: Optional[datetime] = None) -> Competition:
    """Mark a finished competition archived and inactive. Archiving twice is a no-op."""
    competition = get_competition(competition_id)
    if competition.is_archived:
        return competition
    if competition.phase not in ARCHIVABLE_PHASES:
        raise PhaseViolationError(
            f"Competition in phase '{competition.phase}' cannot be archived",
            details={"phase": competition.phase, "allowed": list(ARCHIVABLE_PHASES)},
        )

    updated_at = now or datetime.now(timezone.utc)
    with get_db_session() as session:
        session.execute(
            update(competitions)
            .where(competitions.c.id == competition_id)
            .values(is_archived=True, is_active=False, updated_at=updated_at)
        )

    logger.info("competition.archived", extra={"competition_id": competition_id})
    return get_competition(competition_id)
