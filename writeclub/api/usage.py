from fastapi import APIRouter, Depends

from writeclub.core.auth import get_current_user_id
from writeclub.features.usage.service import peek

router = APIRouter(prefix="/v1/usage", tags=["usage"])


@router.get("")
def get_usage(user_id: str = Depends(get_current_user_id)):
    """Counters, effective limits and remaining tokens for the current month."""
    return peek(user_id).model_dump()
