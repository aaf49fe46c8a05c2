from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from writeclub.core.auth import get_current_user_id
from writeclub.core.errors import NotFoundError
from writeclub.features.competitions.service import get_active_competition, list_previous_competitions
from writeclub.features.competitions.submissions import check_eligibility, list_user_entries, submit

router = APIRouter(prefix="/v1/competitions", tags=["competitions"])


class SubmitRequest(BaseModel):
    story_id: str = Field(..., min_length=1)


@router.post("/submit")
def submit_entry(req: SubmitRequest, user_id: str = Depends(get_current_user_id)):
    """Enter one of the caller's stories into the active competition."""
    result = submit(user_id, req.story_id)
    return {
        "success": True,
        "competition_id": result.competition_id,
        "entry_id": result.entry_id,
        "remaining": result.remaining,
    }


@router.get("/current")
def current_competition():
    competition = get_active_competition()
    if competition is None:
        raise NotFoundError("No active competition", code="no_active_competition")
    return {"competition": competition.to_public_dict()}


@router.get("/eligibility")
def eligibility(user_id: str = Depends(get_current_user_id)):
    return asdict(check_eligibility(user_id))


@router.get("/entries")
def my_entries(competition_id: Optional[str] = Query(None), user_id: str = Depends(get_current_user_id)):
    entries = list_user_entries(user_id, competition_id)
    return {"entries": [asdict(e) for e in entries], "count": len(entries)}


@router.get("/previous")
def previous_competitions(limit: int = Query(10, ge=1, le=100), page: int = Query(1, ge=1)):
    result = list_previous_competitions(limit=limit, page=page)
    return {
        "competitions": [c.to_public_dict() for c in result["competitions"]],
        "pagination": result["pagination"],
    }
