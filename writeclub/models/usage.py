"""
writeclub/models/usage.py

Quota ledger models.

Counters:
- stories_created: stories written this month
- assessment_uploads: stories sent for AI assessment
- total_assessment_attempts: assessment calls including retries
- competition_entries: competition submissions
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict

COUNTERS: tuple = (
    "stories_created",
    "assessment_uploads",
    "competition_entries",
    "total_assessment_attempts",
)

UNLIMITED = -1


class EffectiveLimits(BaseModel):
    """Per-counter monthly caps after purchase bonuses (-1 = unlimited)."""
    model_config = ConfigDict(frozen=True)

    stories_created: int
    assessment_uploads: int
    competition_entries: int
    total_assessment_attempts: int

    def for_counter(self, counter: str) -> int:
        if counter not in COUNTERS:
            raise ValueError(f"Unknown usage counter: {counter}")
        return getattr(self, counter)


class UsageCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    month_key: str
    stories_created: int = 0
    assessment_uploads: int = 0
    competition_entries: int = 0
    total_assessment_attempts: int = 0
    version: int = 0
    updated_at: Optional[datetime] = None


def remaining_for(limit: int, used: int) -> int:
    if limit == UNLIMITED:
        return UNLIMITED
    return max(0, limit - used)


@dataclass
class ConsumeResult:
    allowed: bool
    counter: str
    used: int
    limit: int
    remaining: int


class UsageSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    month_key: str
    tier: str
    used: Dict[str, int]
    limits: EffectiveLimits
    remaining: Dict[str, int]
