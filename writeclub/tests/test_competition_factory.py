from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, true

from writeclub.core.database import competitions, get_db_session
from writeclub.core.errors import PhaseViolationError, ValidationError
from writeclub.features.competitions.phases import advance_phase
from writeclub.features.competitions.service import (
    archive_competition,
    create_monthly_competition,
    get_active_competition,
    list_previous_competitions,
)

NOW = datetime(2025, 3, 1, 0, 5, tzinfo=timezone.utc)


def _active_count() -> int:
    with get_db_session() as session:
        return session.execute(
            select(func.count()).select_from(competitions).where(competitions.c.is_active == true())
        ).scalar()


def test_create_is_idempotent_for_same_month():
    """Creating (2025, 3) twice returns the same competition."""
    first = create_monthly_competition(2025, 3, now=NOW)
    second = create_monthly_competition(2025, 3, now=NOW)

    assert first.id == second.id
    assert first.month == "March"
    assert first.year == 2025
    with get_db_session() as session:
        assert session.execute(select(func.count()).select_from(competitions)).scalar() == 1


def test_new_competition_starts_in_submission_with_zero_aggregates():
    competition = create_monthly_competition(2025, 3, now=NOW)
    assert competition.phase == "submission"
    assert competition.is_active
    assert competition.total_submissions == 0
    assert competition.total_participants == 0
    assert competition.winners == []
    assert competition.schedule.submission_end == datetime(2025, 3, 25, tzinfo=timezone.utc)
    assert competition.judging_criteria.creativity == pytest.approx(0.25)


def test_new_month_deactivates_previous_without_touching_phase():
    march = create_monthly_competition(2025, 3, now=NOW)
    march = advance_phase(march.id, now=datetime(2025, 3, 27, tzinfo=timezone.utc))
    assert march.phase == "judging"

    april = create_monthly_competition(2025, 4, now=datetime(2025, 4, 1, tzinfo=timezone.utc))

    assert _active_count() == 1
    assert get_active_competition().id == april.id
    from writeclub.features.competitions.service import get_competition
    old = get_competition(march.id)
    assert not old.is_active
    assert old.phase == "judging"


def test_defaults_to_current_month_of_clock():
    competition = create_monthly_competition(now=datetime(2025, 7, 15, tzinfo=timezone.utc))
    assert (competition.month, competition.year) == ("July", 2025)


def test_custom_criteria_must_sum_to_one():
    bad = {
        "grammar": 0.5,
        "creativity": 0.5,
        "structure": 0.5,
        "character_development": 0.0,
        "plot_originality": 0.0,
        "vocabulary": 0.0,
    }
    with pytest.raises(ValidationError) as exc_info:
        create_monthly_competition(2025, 3, judging_criteria=bad, now=NOW)
    assert exc_info.value.code == "invalid_judging_criteria"
    assert _active_count() == 0


def test_custom_criteria_stored():
    weights = {
        "grammar": 0.1,
        "creativity": 0.4,
        "structure": 0.1,
        "character_development": 0.2,
        "plot_originality": 0.1,
        "vocabulary": 0.1,
    }
    competition = create_monthly_competition(2025, 3, judging_criteria=weights, now=NOW)
    assert competition.judging_criteria.creativity == pytest.approx(0.4)


def test_unknown_criterion_rejected():
    with pytest.raises(ValidationError):
        create_monthly_competition(2025, 3, judging_criteria={"humour": 1.0}, now=NOW)


def test_archive_requires_finished_competition():
    competition = create_monthly_competition(2025, 3, now=NOW)
    with pytest.raises(PhaseViolationError):
        archive_competition(competition.id)

    advance_phase(competition.id, now=datetime(2025, 4, 2, tzinfo=timezone.utc))
    archived = archive_competition(competition.id)
    assert archived.is_archived
    assert not archived.is_active
    assert archive_competition(competition.id).is_archived

    previous = list_previous_competitions()
    assert [c.id for c in previous["competitions"]] == [competition.id]
    assert previous["pagination"]["total_items"] == 1
