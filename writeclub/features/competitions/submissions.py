"""
Submission gate.

submit() runs its checks in a fixed order, each with its own error:

1. active competition in the submission phase, before submission_end (phase_closed)
2. story exists (not_found), belongs to the caller (not_story_owner) and has not
   been entered in an open competition (already_submitted)
3. word count within [MIN_WORD_COUNT, MAX_WORD_COUNT] (word_count_out_of_range)
4. a competition_entries token from the quota ledger (quota_exceeded)

The token, the entry row and the competition aggregates are written in one
transaction.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError

from writeclub.core.clock import resolve_now
from writeclub.core.config import settings
from writeclub.core.database import competition_entries, competitions, get_db_session, as_utc
from writeclub.core.errors import ConflictError, PhaseViolationError, ValidationError
from writeclub.features.competitions.service import get_active_competition
from writeclub.features.limits.service import month_key_for
from writeclub.features.stories.service import get_owned_story
from writeclub.features.usage.service import consume_or_raise, peek
from writeclub.models.competition import Competition, Eligibility, Entry, SubmissionResult

logger = logging.getLogger("writeclub.submissions")

# A story entered in a competition in one of these phases cannot be entered again
OPEN_PHASES = ("submission", "judging", "results")


def row_to_entry(row) -> Entry:
    return Entry(
        id=row.id,
        competition_id=row.competition_id,
        user_id=row.user_id,
        story_id=row.story_id,
        word_count=row.word_count,
        submitted_at=as_utc(row.submitted_at),
        score=row.score,
        rank=row.rank,
        is_winner=bool(row.is_winner),
    )


def _submission_window_error(competition: Optional[Competition], now: datetime) -> Optional[PhaseViolationError]:
    if competition is None:
        return PhaseViolationError(
            "No active competition is accepting submissions",
            code="phase_closed",
        )
    schedule = competition.schedule
    if competition.phase != "submission" or now > schedule.submission_end or now < schedule.submission_start:
        return PhaseViolationError(
            "Submissions are closed for this competition",
            code="phase_closed",
            details={
                "competition_id": competition.id,
                "phase": competition.phase,
                "submission_end": schedule.submission_end.isoformat(),
            },
        )
    return None


def check_word_count(word_count: int) -> None:
    if not settings.MIN_WORD_COUNT <= word_count <= settings.MAX_WORD_COUNT:
        raise ValidationError(
            f"Stories must be between {settings.MIN_WORD_COUNT} and {settings.MAX_WORD_COUNT} words",
            code="word_count_out_of_range",
            details={
                "word_count": word_count,
                "min": settings.MIN_WORD_COUNT,
                "max": settings.MAX_WORD_COUNT,
            },
        )


def _story_already_entered(session, story_id: str) -> bool:
    row = session.execute(
        select(competition_entries.c.id)
        .select_from(
            competition_entries.join(competitions, competitions.c.id == competition_entries.c.competition_id)
        )
        .where(competition_entries.c.story_id == story_id)
        .where(competitions.c.phase.in_(OPEN_PHASES))
        .limit(1)
    ).first()
    return row is not None


def submit(user_id: str, story_id: str, *, now: Optional[datetime] = None) -> SubmissionResult:
    """
    Enter a story into the active competition.

    Raises:
        PhaseViolationError (phase_closed), NotFoundError, PermissionError,
        ConflictError (already_submitted), ValidationError
        (word_count_out_of_range), QuotaExceededError (quota_exceeded)
    """
    current_time = resolve_now(now)
    entry_id = str(uuid.uuid4())

    try:
        with get_db_session() as session:
            competition = get_active_competition(session=session)
            window_error = _submission_window_error(competition, current_time)
            if window_error:
                raise window_error

            story = get_owned_story(user_id, story_id, session=session)
            if _story_already_entered(session, story_id):
                raise ConflictError(
                    "Story has already been entered in a competition",
                    code="already_submitted",
                    details={"story_id": story_id},
                )

            check_word_count(story.word_count)

            usage = consume_or_raise(
                user_id,
                "competition_entries",
                month_key_for(current_time),
                session=session,
            )

            prior_entries = session.execute(
                select(func.count())
                .select_from(competition_entries)
                .where(competition_entries.c.competition_id == competition.id)
                .where(competition_entries.c.user_id == user_id)
            ).scalar() or 0

            session.execute(
                insert(competition_entries).values(
                    id=entry_id,
                    competition_id=competition.id,
                    user_id=user_id,
                    story_id=story_id,
                    word_count=story.word_count,
                    submitted_at=current_time,
                    is_winner=False,
                )
            )
            session.execute(
                update(competitions)
                .where(competitions.c.id == competition.id)
                .values(
                    total_submissions=competitions.c.total_submissions + 1,
                    total_participants=competitions.c.total_participants + (0 if prior_entries else 1),
                    updated_at=current_time,
                )
            )
    except IntegrityError as e:
        # Lost a race with a concurrent submission of the same story
        raise ConflictError(
            "Story has already been entered in a competition",
            code="already_submitted",
            details={"story_id": story_id},
        ) from e

    logger.info(
        "competition.entry_submitted",
        extra={
            "user_id": user_id,
            "competition_id": competition.id,
            "entry_id": entry_id,
            "story_id": story_id,
            "new_participant": not prior_entries,
            "entries_remaining": usage.remaining,
        },
    )
    return SubmissionResult(competition_id=competition.id, entry_id=entry_id, remaining=usage.remaining)


def check_eligibility(user_id: str, *, now: Optional[datetime] = None) -> Eligibility:
    """Read-only check of the phase window and the entry quota. Writes nothing."""
    current_time = resolve_now(now)
    competition = get_active_competition()
    usage = peek(user_id, month_key_for(current_time))
    used = usage.used["competition_entries"]
    limit = usage.limits.competition_entries
    remaining = usage.remaining["competition_entries"]

    eligibility = Eligibility(
        eligible=True,
        competition_id=competition.id if competition else None,
        phase=competition.phase if competition else None,
        entries_used=used,
        entries_limit=limit,
        entries_remaining=remaining,
        submission_end=competition.schedule.submission_end if competition else None,
    )

    window_error = _submission_window_error(competition, current_time)
    if window_error:
        eligibility.eligible = False
        eligibility.reason = window_error.code
    elif remaining == 0:
        eligibility.eligible = False
        eligibility.reason = "quota_exceeded"
    return eligibility


def list_user_entries(user_id: str, competition_id: Optional[str] = None) -> List[Entry]:
    query = select(competition_entries).where(competition_entries.c.user_id == user_id)
    if competition_id:
        query = query.where(competition_entries.c.competition_id == competition_id)
    with get_db_session() as session:
        rows = session.execute(query.order_by(competition_entries.c.submitted_at)).all()
    return [row_to_entry(r) for r in rows]
