"""
writeclub/models/competition.py

Competition domain models.

Phases advance strictly forward:
    submission -> judging -> results -> ended -> results_published

The first four are time-driven (Phase Controller); results_published is only
ever set by the Winner Publisher.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Phase = Literal["submission", "judging", "results", "ended", "results_published"]

PHASE_ORDER: tuple = ("submission", "judging", "results", "ended", "results_published")

CRITERIA_TOLERANCE = 1e-6


def phase_rank(phase: str) -> int:
    """Position of a phase in the forward order. Unknown phases raise ValueError."""
    return PHASE_ORDER.index(phase)


class JudgingCriteria(BaseModel):
    """Weights applied to assessment sub-scores. Must sum to 1.0."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    grammar: float = Field(0.20, ge=0.0, le=1.0)
    creativity: float = Field(0.25, ge=0.0, le=1.0)
    structure: float = Field(0.15, ge=0.0, le=1.0)
    character_development: float = Field(0.15, ge=0.0, le=1.0)
    plot_originality: float = Field(0.15, ge=0.0, le=1.0)
    vocabulary: float = Field(0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "JudgingCriteria":
        total = sum(self.model_dump().values())
        if abs(total - 1.0) > CRITERIA_TOLERANCE:
            raise ValueError(f"judging criteria weights must sum to 1.0 (got {total:.6f})")
        return self


class CompetitionSchedule(BaseModel):
    """Phase boundaries, fixed at creation. All values are UTC."""
    model_config = ConfigDict(frozen=True)

    submission_start: datetime
    submission_end: datetime
    judging_start: datetime
    judging_end: datetime
    results_date: datetime


class WinnerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: int
    entry_id: str
    story_id: str
    user_id: str
    score: Optional[float] = None


class Competition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    month: str
    year: int
    phase: Phase
    is_active: bool
    is_archived: bool = False
    schedule: CompetitionSchedule
    judging_criteria: JudgingCriteria
    total_submissions: int = 0
    total_participants: int = 0
    winners: List[WinnerRecord] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict:
        data = self.model_dump(mode="json")
        data.update(data.pop("schedule"))
        return data


class WinnerSelection(BaseModel):
    entry_id: str
    position: int


@dataclass
class Entry:
    """A story entered into a competition."""

    id: str
    competition_id: str
    user_id: str
    story_id: str
    word_count: int
    submitted_at: datetime
    score: Optional[float] = None
    rank: Optional[int] = None
    is_winner: bool = False


@dataclass
class SubmissionResult:
    competition_id: str
    entry_id: str
    remaining: int  # entry tokens left this month, -1 when unlimited


@dataclass
class Eligibility:
    """Read-only answer to "could this user submit right now"."""

    eligible: bool
    competition_id: Optional[str] = None
    phase: Optional[str] = None
    reason: Optional[str] = None  # error code of the first failing check
    entries_used: int = 0
    entries_limit: int = 0
    entries_remaining: int = 0
    submission_end: Optional[datetime] = None
