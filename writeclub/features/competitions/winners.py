"""
Winner publication and judging scores.

publish_winners clears every is_winner/rank flag in the competition before
applying the new selection, so republishing replaces rather than merges.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update

from writeclub.core.clock import resolve_now
from writeclub.core.database import competition_entries, competitions, get_db_session
from writeclub.core.errors import NotFoundError, PhaseViolationError, ValidationError
from writeclub.features.competitions.service import get_competition
from writeclub.features.competitions.submissions import row_to_entry
from writeclub.models.competition import Competition, Entry, WinnerRecord, WinnerSelection

logger = logging.getLogger("writeclub.winners")

PUBLISHABLE_PHASES = ("ended", "results_published")
SCORING_PHASES = ("judging", "results", "ended")
MIN_SCORE = 0.0
MAX_SCORE = 100.0


def _validate_selection(selections: List[WinnerSelection]) -> None:
    if not selections:
        raise ValidationError("At least one winner is required", code="invalid_winners")
    positions = [s.position for s in selections]
    if any(p < 1 for p in positions):
        raise ValidationError("Winner positions must be positive integers", code="invalid_winners")
    if len(set(positions)) != len(positions):
        raise ValidationError("Winner positions must be unique", code="invalid_winners")
    entry_ids = [s.entry_id for s in selections]
    if len(set(entry_ids)) != len(entry_ids):
        raise ValidationError("An entry can only be selected once", code="invalid_winners")


def publish_winners(
    competition_id: str,
    winners: Iterable[WinnerSelection],
    *,
    now: Optional[datetime] = None,
) -> Competition:
    """
    Record the winning entries and move the competition to results_published.

    Raises:
        NotFoundError: unknown competition
        PhaseViolationError: competition has not ended yet
        ValidationError: bad positions, or an entry outside this competition
    """
    selections = sorted(winners, key=lambda s: s.position)
    _validate_selection(selections)
    current_time = resolve_now(now)

    with get_db_session() as session:
        competition = get_competition(competition_id, session=session)
        if competition.phase not in PUBLISHABLE_PHASES:
            raise PhaseViolationError(
                f"Winners can only be published after the competition ends (phase: {competition.phase})",
                details={"phase": competition.phase, "allowed": list(PUBLISHABLE_PHASES)},
            )

        rows = session.execute(
            select(competition_entries)
            .where(competition_entries.c.competition_id == competition_id)
            .where(competition_entries.c.id.in_([s.entry_id for s in selections]))
        ).all()
        entries = {row.id: row_to_entry(row) for row in rows}
        unknown = [s.entry_id for s in selections if s.entry_id not in entries]
        if unknown:
            raise ValidationError(
                "Winner entries must belong to this competition",
                code="invalid_winners",
                details={"entry_ids": unknown},
            )

        session.execute(
            update(competition_entries)
            .where(competition_entries.c.competition_id == competition_id)
            .values(is_winner=False, rank=None)
        )
        records = []
        for selection in selections:
            entry = entries[selection.entry_id]
            session.execute(
                update(competition_entries)
                .where(competition_entries.c.id == entry.id)
                .values(is_winner=True, rank=selection.position)
            )
            records.append(
                WinnerRecord(
                    position=selection.position,
                    entry_id=entry.id,
                    story_id=entry.story_id,
                    user_id=entry.user_id,
                    score=entry.score,
                )
            )

        session.execute(
            update(competitions)
            .where(competitions.c.id == competition_id)
            .values(
                winners=[r.model_dump() for r in records],
                phase="results_published",
                updated_at=current_time,
            )
        )

    logger.info(
        "competition.winners_published",
        extra={
            "competition_id": competition_id,
            "winner_count": len(records),
            "previous_phase": competition.phase,
        },
    )
    return get_competition(competition_id)


def score_entry(entry_id: str, score: float) -> Entry:
    """Record a judging score (0-100) for an entry."""
    if score is None or not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(
            f"Score must be between {MIN_SCORE:g} and {MAX_SCORE:g}",
            code="invalid_score",
            details={"score": score},
        )

    with get_db_session() as session:
        row = session.execute(select(competition_entries).where(competition_entries.c.id == entry_id)).first()
        if not row:
            raise NotFoundError(f"Entry {entry_id} not found")
        competition = get_competition(row.competition_id, session=session)
        if competition.phase not in SCORING_PHASES:
            raise PhaseViolationError(
                f"Entries cannot be scored in phase '{competition.phase}'",
                details={"phase": competition.phase, "allowed": list(SCORING_PHASES)},
            )
        session.execute(
            update(competition_entries)
            .where(competition_entries.c.id == entry_id)
            .values(score=score)
        )
        updated = session.execute(select(competition_entries).where(competition_entries.c.id == entry_id)).first()

    logger.info(
        "competition.entry_scored",
        extra={"competition_id": row.competition_id, "entry_id": entry_id, "score": score},
    )
    return row_to_entry(updated)


def rank_entries(competition_id: str) -> List[Entry]:
    """Scored entries, highest first; ties go to the earlier submission."""
    get_competition(competition_id)
    with get_db_session() as session:
        rows = session.execute(
            select(competition_entries)
            .where(competition_entries.c.competition_id == competition_id)
            .where(competition_entries.c.score.is_not(None))
            .order_by(competition_entries.c.score.desc(), competition_entries.c.submitted_at.asc())
        ).all()
    return [row_to_entry(r) for r in rows]


def suggest_winners(competition_id: str, top_n: int = 3) -> List[WinnerSelection]:
    if top_n < 1:
        raise ValidationError("top_n must be >= 1", code="invalid_top_n")
    ranked = rank_entries(competition_id)[:top_n]
    return [WinnerSelection(entry_id=e.id, position=i) for i, e in enumerate(ranked, start=1)]
