"""
Admin-only competition operations.
Requires X-Admin-Key header for all endpoints.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from writeclub.core.admin_auth import AdminActor, require_admin
from writeclub.features.competitions.service import archive_competition
from writeclub.features.competitions.winners import publish_winners, rank_entries, score_entry, suggest_winners
from writeclub.features.purchases.service import record_purchase
from writeclub.features.users.service import get_or_create_user
from writeclub.models.competition import WinnerSelection

logger = logging.getLogger("writeclub.admin")

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class PublishWinnersRequest(BaseModel):
    winners: List[WinnerSelection] = Field(..., min_length=1)


class ScoreRequest(BaseModel):
    score: float = Field(..., ge=0, le=100)


class PurchaseRequest(BaseModel):
    """Completed payment reported by the payment collaborator."""
    user_id: str = Field(..., min_length=1)
    purchase_type: Literal["quota_pack", "individual_story"]
    amount: Decimal = Field(..., ge=0)
    purchase_date: Optional[datetime] = None
    stories_added: Optional[int] = None
    assessments_added: Optional[int] = None
    attempts_added: Optional[int] = None
    entries_added: Optional[int] = None
    external_ref: Optional[str] = None


@router.post("/competitions/{competition_id}/winners")
def publish(competition_id: str, req: PublishWinnersRequest, actor: AdminActor = Depends(require_admin)):
    competition = publish_winners(competition_id, req.winners)
    logger.info("admin.winners_published", extra={"actor_id": actor.actor_id, "competition_id": competition_id})
    return {"competition": competition.to_public_dict()}


@router.post("/competitions/{competition_id}/archive")
def archive(competition_id: str, actor: AdminActor = Depends(require_admin)):
    competition = archive_competition(competition_id)
    logger.info("admin.competition_archived", extra={"actor_id": actor.actor_id, "competition_id": competition_id})
    return {"competition": competition.to_public_dict()}


@router.post("/entries/{entry_id}/score")
def score(entry_id: str, req: ScoreRequest, actor: AdminActor = Depends(require_admin)):
    entry = score_entry(entry_id, req.score)
    return {"entry": asdict(entry)}


@router.get("/competitions/{competition_id}/ranking")
def ranking(
    competition_id: str,
    top_n: int = Query(3, ge=1, le=50),
    actor: AdminActor = Depends(require_admin),
):
    entries = rank_entries(competition_id)
    suggestions = suggest_winners(competition_id, top_n=top_n)
    return {
        "entries": [asdict(e) for e in entries],
        "suggested_winners": [s.model_dump() for s in suggestions],
    }


@router.post("/purchases", status_code=201)
def create_purchase(req: PurchaseRequest, actor: AdminActor = Depends(require_admin)):
    get_or_create_user(req.user_id)
    purchase = record_purchase(
        req.user_id,
        req.purchase_type,
        req.amount,
        purchase_date=req.purchase_date,
        stories_added=req.stories_added,
        assessments_added=req.assessments_added,
        attempts_added=req.attempts_added,
        entries_added=req.entries_added,
        external_ref=req.external_ref,
    )
    logger.info("admin.purchase_recorded", extra={"actor_id": actor.actor_id, "user_id": req.user_id})
    return {"purchase": purchase.model_dump(mode="json")}
