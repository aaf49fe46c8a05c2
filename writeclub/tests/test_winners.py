from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from writeclub.core.database import competition_entries, get_db_session
from writeclub.core.errors import PhaseViolationError, ValidationError
from writeclub.features.competitions.phases import advance_phase
from writeclub.features.competitions.service import create_monthly_competition
from writeclub.features.competitions.submissions import submit
from writeclub.features.competitions.winners import (
    publish_winners,
    rank_entries,
    score_entry,
    suggest_winners,
)
from writeclub.features.stories.service import create_story
from writeclub.models.competition import WinnerSelection

MARCH_10 = datetime(2025, 3, 10, 12, tzinfo=timezone.utc)
MARCH_27 = datetime(2025, 3, 27, tzinfo=timezone.utc)
APRIL_2 = datetime(2025, 4, 2, tzinfo=timezone.utc)


@pytest.fixture
def ended_competition(make_user):
    """March competition with three entries from three users, moved to ended."""
    competition = create_monthly_competition(2025, 3, now=datetime(2025, 3, 1, tzinfo=timezone.utc))
    entry_ids = []
    for minutes, user_id in enumerate(("ann", "ben", "cat")):
        make_user(user_id)
        story = create_story(user_id, f"{user_id}'s story", 1000, now=MARCH_10)
        submitted_at = MARCH_10 + timedelta(minutes=minutes)
        entry_ids.append(submit(user_id, story.story_id, now=submitted_at).entry_id)
    advance_phase(competition.id, now=APRIL_2)
    return competition, entry_ids


def _flags(competition_id):
    with get_db_session() as session:
        rows = session.execute(
            select(competition_entries).where(competition_entries.c.competition_id == competition_id)
        ).all()
    return {row.id: (bool(row.is_winner), row.rank) for row in rows}


def test_publish_sets_flags_and_phase(ended_competition):
    competition, (e1, e2, e3) = ended_competition
    result = publish_winners(
        competition.id,
        [WinnerSelection(entry_id=e2, position=2), WinnerSelection(entry_id=e1, position=1)],
        now=APRIL_2,
    )

    assert result.phase == "results_published"
    assert [w.entry_id for w in result.winners] == [e1, e2]
    assert [w.position for w in result.winners] == [1, 2]
    assert result.winners[0].user_id == "ann"
    assert _flags(competition.id) == {e1: (True, 1), e2: (True, 2), e3: (False, None)}


def test_republish_clears_previous_winners(ended_competition):
    """Publishing [e3] after [e1, e2] leaves only e3 flagged."""
    competition, (e1, e2, e3) = ended_competition
    publish_winners(
        competition.id,
        [WinnerSelection(entry_id=e1, position=1), WinnerSelection(entry_id=e2, position=2)],
        now=APRIL_2,
    )
    result = publish_winners(competition.id, [WinnerSelection(entry_id=e3, position=1)], now=APRIL_2)

    assert [w.entry_id for w in result.winners] == [e3]
    assert _flags(competition.id) == {e1: (False, None), e2: (False, None), e3: (True, 1)}


def test_publish_before_end_is_rejected(make_user):
    competition = create_monthly_competition(2025, 3, now=datetime(2025, 3, 1, tzinfo=timezone.utc))
    make_user("eager")
    story = create_story("eager", "Eager", 1000, now=MARCH_10)
    entry_id = submit("eager", story.story_id, now=MARCH_10).entry_id
    advance_phase(competition.id, now=MARCH_27)

    with pytest.raises(PhaseViolationError):
        publish_winners(competition.id, [WinnerSelection(entry_id=entry_id, position=1)])


def test_selection_validation(ended_competition):
    competition, (e1, e2, _) = ended_competition
    with pytest.raises(ValidationError):
        publish_winners(competition.id, [WinnerSelection(entry_id=e1, position=0)])
    with pytest.raises(ValidationError):
        publish_winners(
            competition.id,
            [WinnerSelection(entry_id=e1, position=1), WinnerSelection(entry_id=e2, position=1)],
        )
    with pytest.raises(ValidationError) as exc_info:
        publish_winners(competition.id, [WinnerSelection(entry_id="elsewhere", position=1)])
    assert exc_info.value.details["entry_ids"] == ["elsewhere"]
    with pytest.raises(ValidationError):
        publish_winners(competition.id, [])


def test_scores_drive_ranking_and_suggestions(ended_competition):
    competition, (e1, e2, e3) = ended_competition
    score_entry(e1, 71.5)
    score_entry(e2, 88.0)
    score_entry(e3, 71.5)

    assert [e.id for e in rank_entries(competition.id)] == [e2, e1, e3]
    suggestions = suggest_winners(competition.id, top_n=2)
    assert [(s.entry_id, s.position) for s in suggestions] == [(e2, 1), (e1, 2)]

    published = publish_winners(competition.id, suggestions, now=APRIL_2)
    assert published.winners[0].score == pytest.approx(88.0)


def test_score_bounds_and_phase(ended_competition, make_user):
    competition, (e1, _, _) = ended_competition
    with pytest.raises(ValidationError):
        score_entry(e1, 101)

    publish_winners(competition.id, [WinnerSelection(entry_id=e1, position=1)], now=APRIL_2)
    with pytest.raises(PhaseViolationError):
        score_entry(e1, 50)
