from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict

AssessmentStatus = Literal["none", "pending", "completed", "retry_pending"]


class Story(BaseModel):
    model_config = ConfigDict(frozen=True)

    story_id: str
    user_id: str
    title: str
    word_count: int
    assessment_status: AssessmentStatus = "none"
    assessment_score: Optional[float] = None
    assessment_attempts: int = 0
    assessment_error: Optional[str] = None
    created_at: Optional[datetime] = None
