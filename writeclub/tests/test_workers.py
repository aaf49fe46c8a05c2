from datetime import datetime, timezone

import writeclub.workers.monthly_reset as monthly_reset_worker
from writeclub.conftest import FrozenClock
from writeclub.features.stories.service import create_story
from writeclub.workers.advance_phases import run_advance_phases
from writeclub.workers.create_monthly_competition import run_create_competition
from writeclub.workers.monthly_reset import run_monthly_reset

MARCH_10 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_create_then_advance_jobs():
    created = run_create_competition(2025, 3, now=MARCH_10)
    assert created["month"] == "March"
    assert created["phase"] == "submission"
    assert created["clock_degraded"] is False

    again = run_create_competition(2025, 3, now=MARCH_10)
    assert again["competition_id"] == created["competition_id"]

    result = run_advance_phases(now=datetime(2025, 3, 27, tzinfo=timezone.utc))
    assert result["checked"] == 1
    assert result["advanced"] == [
        {"competition_id": created["competition_id"], "from": "submission", "to": "judging"}
    ]


def test_late_created_competition_is_advanced_immediately():
    created = run_create_competition(2025, 3, now=datetime(2025, 3, 28, tzinfo=timezone.utc))
    assert created["phase"] == "judging"


def test_monthly_reset_job(make_user):
    make_user("writer")
    create_story("writer", "Spring", 800, now=MARCH_10)

    first = run_monthly_reset(now=datetime(2025, 4, 1, 0, 5, tzinfo=timezone.utc))
    second = run_monthly_reset(now=datetime(2025, 4, 1, 0, 10, tzinfo=timezone.utc))

    assert first["month_key"] == "2025-04"
    assert first["users_reset"] == 1
    assert second["users_reset"] == 0


def test_job_reports_degraded_clock(monkeypatch):
    clock = FrozenClock(datetime(2025, 5, 2, tzinfo=timezone.utc))
    clock.degraded = True
    monkeypatch.setattr(monthly_reset_worker, "get_trusted_now", clock.reading)

    result = run_monthly_reset()
    assert result["month_key"] == "2025-05"
    assert result["clock_degraded"] is True
