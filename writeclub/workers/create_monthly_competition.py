"""Competition creation job. Run on (or before) the 1st of each month."""
import argparse
import logging
from datetime import datetime
from typing import Optional

from writeclub.core.clock import get_trusted_now
from writeclub.core.config import settings
from writeclub.core.logging import configure_logging
from writeclub.features.competitions.phases import advance_phase
from writeclub.features.competitions.service import create_monthly_competition

logger = logging.getLogger("writeclub.workers.create_competition")


def run_create_competition(
    year: Optional[int] = None,
    month: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> dict:
    reading = get_trusted_now() if now is None else None
    current_time = now or reading.now

    competition = create_monthly_competition(year, month, now=current_time)
    # A competition created late in its month should not sit in submission until the next sweep
    competition = advance_phase(competition.id, now=current_time)

    result = {
        "competition_id": competition.id,
        "month": competition.month,
        "year": competition.year,
        "phase": competition.phase,
        "timestamp": current_time.isoformat(),
        "clock_degraded": bool(reading and reading.degraded),
    }
    logger.info("[create_competition] run complete", extra=result)
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the monthly writing competition")
    parser.add_argument("--year", type=int, default=None)
    parser.add_argument("--month", type=int, default=None)
    args = parser.parse_args()

    configure_logging(settings.ENV)
    result = run_create_competition(args.year, args.month)
    print(result)
