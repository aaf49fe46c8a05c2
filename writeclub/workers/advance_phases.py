"""Phase advancement job for the external timer (hourly is plenty)."""
import logging
from datetime import datetime
from typing import Optional

from writeclub.core.clock import get_trusted_now
from writeclub.core.config import settings
from writeclub.core.logging import configure_logging
from writeclub.features.competitions.phases import advance_all_phases

logger = logging.getLogger("writeclub.workers.advance_phases")


def run_advance_phases(*, now: Optional[datetime] = None) -> dict:
    reading = get_trusted_now() if now is None else None
    current_time = now or reading.now

    summary = advance_all_phases(now=current_time)
    result = {
        **summary,
        "timestamp": current_time.isoformat(),
        "clock_degraded": bool(reading and reading.degraded),
    }
    logger.info(
        "[advance_phases] run complete",
        extra={"checked": summary["checked"], "advanced_count": len(summary["advanced"])},
    )
    return result


if __name__ == "__main__":
    configure_logging(settings.ENV)
    result = run_advance_phases()
    print(result)
