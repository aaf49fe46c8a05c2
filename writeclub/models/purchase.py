"""
writeclub/models/purchase.py

Purchase records emitted by the payment collaborator. Only the bonus fields
are read when computing limits.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict

PurchaseType = Literal["quota_pack", "individual_story"]


class PurchaseRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    purchase_type: PurchaseType
    amount: Decimal
    purchase_date: datetime
    stories_added: Optional[int] = None
    assessments_added: Optional[int] = None
    attempts_added: Optional[int] = None
    entries_added: Optional[int] = None
    external_ref: Optional[str] = None
    id: Optional[int] = None
