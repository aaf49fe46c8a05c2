"""Monthly usage reset job. Safe to run any number of times per month."""
import logging
from datetime import datetime
from typing import Optional

from writeclub.core.clock import get_trusted_now
from writeclub.core.config import settings
from writeclub.core.logging import configure_logging
from writeclub.features.limits.service import month_key_for
from writeclub.features.usage.service import reset_all_usage

logger = logging.getLogger("writeclub.workers.monthly_reset")


def run_monthly_reset(*, now: Optional[datetime] = None) -> dict:
    reading = get_trusted_now() if now is None else None
    current_time = now or reading.now
    month_key = month_key_for(current_time)

    count = reset_all_usage(month_key)
    result = {
        "month_key": month_key,
        "users_reset": count,
        "timestamp": current_time.isoformat(),
        "clock_degraded": bool(reading and reading.degraded),
    }
    logger.info("[monthly_reset] sweep complete", extra=result)
    return result


if __name__ == "__main__":
    configure_logging(settings.ENV)
    result = run_monthly_reset()
    print(result)
