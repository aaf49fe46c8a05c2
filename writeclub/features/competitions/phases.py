"""
Phase controller.

The phase a competition should be in is a pure function of the trusted time
and its fixed boundaries. advance_phase writes only when that target is
strictly later than the stored phase, using a compare-and-set on the stored
value, so repeated or concurrent triggers converge without redundant writes
and a skewed clock can never move a competition backwards.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import false, select, update

from writeclub.core.clock import resolve_now
from writeclub.core.database import competitions, get_db_session
from writeclub.core.errors import ConflictError
from writeclub.features.competitions.service import get_competition
from writeclub.models.competition import Competition, CompetitionSchedule, phase_rank

logger = logging.getLogger("writeclub.phases")

# Phases the controller still has work to do for
TIME_DRIVEN_OPEN_PHASES = ("submission", "judging", "results")
MAX_CAS_ATTEMPTS = 3


def target_phase(now: datetime, schedule: CompetitionSchedule) -> str:
    """Phase implied by the clock alone. Never returns results_published."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if now > schedule.results_date:
        return "ended"
    if now > schedule.judging_end:
        return "results"
    if now > schedule.submission_end:
        return "judging"
    return "submission"


def advance_phase(competition_id: str, *, now: Optional[datetime] = None) -> Competition:
    """
    Move a competition forward to the phase its boundaries imply.

    Idempotent: when the stored phase already matches (or is later) nothing is
    written.

    Raises:
        NotFoundError: unknown competition
        ConflictError: compare-and-set kept losing to concurrent writers
    """
    current_time = resolve_now(now)

    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        competition = get_competition(competition_id)
        stored = competition.phase
        target = target_phase(current_time, competition.schedule)

        if phase_rank(target) == phase_rank(stored):
            return competition

        if phase_rank(target) < phase_rank(stored):
            # results_published is set by the winner publisher and is always ahead of the clock
            level = logging.DEBUG if stored == "results_published" else logging.WARNING
            logger.log(
                level,
                "phase.regression_rejected",
                extra={
                    "competition_id": competition_id,
                    "stored_phase": stored,
                    "target_phase": target,
                    "now": current_time.isoformat(),
                },
            )
            return competition

        with get_db_session() as session:
            result = session.execute(
                update(competitions)
                .where(competitions.c.id == competition_id)
                .where(competitions.c.phase == stored)
                .values(phase=target, updated_at=current_time)
            )
            swapped = result.rowcount == 1

        if swapped:
            logger.info(
                "phase.advanced",
                extra={
                    "competition_id": competition_id,
                    "from_phase": stored,
                    "to_phase": target,
                    "now": current_time.isoformat(),
                },
            )
            return get_competition(competition_id)

        logger.info(
            "phase.cas_conflict",
            extra={"competition_id": competition_id, "stored_phase": stored, "attempt": attempt},
        )

    raise ConflictError(
        f"Phase of competition {competition_id} changed concurrently",
        code="phase_conflict",
    )


def advance_all_phases(*, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Advance every non-archived competition that has not ended yet.

    Returns:
        Summary dict: checked, advanced (list of {competition_id, from, to}), unchanged
    """
    current_time = resolve_now(now)

    with get_db_session() as session:
        rows = session.execute(
            select(competitions.c.id, competitions.c.phase)
            .where(competitions.c.is_archived == false())
            .where(competitions.c.phase.in_(TIME_DRIVEN_OPEN_PHASES))
            .order_by(competitions.c.submission_start)
        ).all()

    advanced = []
    for row in rows:
        competition = advance_phase(row.id, now=current_time)
        if competition.phase != row.phase:
            advanced.append({"competition_id": row.id, "from": row.phase, "to": competition.phase})

    summary = {
        "checked": len(rows),
        "advanced": advanced,
        "unchanged": len(rows) - len(advanced),
    }
    logger.info("phase.sweep_complete", extra={"checked": len(rows), "advanced_count": len(advanced)})
    return summary
