"""
Trigger endpoints for the external scheduler.

All three are idempotent and safe to call on any schedule; each response
carries the clock reading the work was done against.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from writeclub.core.admin_auth import AdminActor, require_scheduler
from writeclub.core.clock import ClockReading, get_trusted_now
from writeclub.features.competitions.phases import advance_all_phases, advance_phase
from writeclub.features.competitions.service import create_monthly_competition
from writeclub.features.limits.service import month_key_for
from writeclub.features.usage.service import reset_all_usage

logger = logging.getLogger("writeclub.cron")

router = APIRouter(prefix="/v1/cron", tags=["cron"])


class CreateCompetitionRequest(BaseModel):
    year: Optional[int] = Field(None, ge=1970, le=9998)
    month: Optional[int] = Field(None, ge=1, le=12)
    judging_criteria: Optional[Dict[str, float]] = None


def _stamped(reading: ClockReading, result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **result,
        "timestamp": reading.now.isoformat(),
        "clock_degraded": reading.degraded,
        "clock_source": reading.source,
    }


@router.post("/advance-phases")
def trigger_advance_phases(actor: AdminActor = Depends(require_scheduler)):
    reading = get_trusted_now()
    summary = advance_all_phases(now=reading.now)
    logger.info("cron.advance_phases", extra={"actor_id": actor.actor_id, "advanced": len(summary["advanced"])})
    return _stamped(reading, summary)


@router.post("/monthly-reset")
def trigger_monthly_reset(actor: AdminActor = Depends(require_scheduler)):
    reading = get_trusted_now()
    month_key = month_key_for(reading.now)
    count = reset_all_usage(month_key)
    logger.info("cron.monthly_reset", extra={"actor_id": actor.actor_id, "users_reset": count})
    return _stamped(reading, {"month_key": month_key, "users_reset": count})


@router.post("/create-monthly-competition")
def trigger_create_competition(
    req: Optional[CreateCompetitionRequest] = Body(None),
    actor: AdminActor = Depends(require_scheduler),
):
    reading = get_trusted_now()
    req = req or CreateCompetitionRequest()
    competition = create_monthly_competition(
        req.year,
        req.month,
        judging_criteria=req.judging_criteria,
        now=reading.now,
    )
    competition = advance_phase(competition.id, now=reading.now)
    logger.info("cron.create_competition", extra={"actor_id": actor.actor_id, "competition_id": competition.id})
    return _stamped(reading, {"competition": competition.to_public_dict()})
