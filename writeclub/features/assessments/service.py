"""
AI assessment collaborator.

The generative engine lives outside this service. AssessmentEngine is the
seam; HttpAssessmentEngine posts the story to ASSESSMENT_ENGINE_URL. A failed
call leaves the story in retry_pending and never touches competition state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

import httpx
from sqlalchemy import update

from writeclub.core.clock import resolve_now
from writeclub.core.config import settings
from writeclub.core.database import get_db_session, stories
from writeclub.core.errors import ConflictError, ExternalCollaboratorError
from writeclub.features.limits.service import month_key_for
from writeclub.features.stories.service import get_owned_story, get_story
from writeclub.features.usage.service import consume_or_raise
from writeclub.models.competition import JudgingCriteria
from writeclub.models.story import Story

logger = logging.getLogger("writeclub.assessments")


@dataclass
class AssessmentOutcome:
    score: float
    criteria_scores: Dict[str, float] = field(default_factory=dict)


class AssessmentEngine:
    """Interface to the external assessment engine."""

    def assess(self, story: Story) -> AssessmentOutcome:
        raise NotImplementedError


def weighted_score(criteria_scores: Dict[str, float], criteria: Optional[JudgingCriteria] = None) -> float:
    weights = (criteria or JudgingCriteria()).model_dump()
    return round(sum(criteria_scores.get(name, 0.0) * weight for name, weight in weights.items()), 2)


class HttpAssessmentEngine(AssessmentEngine):
    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url or settings.ASSESSMENT_ENGINE_URL
        self.timeout = timeout or settings.ASSESSMENT_TIMEOUT_SECONDS
        self.client = client

    def _post(self, payload: dict) -> httpx.Response:
        if self.client is not None:
            return self.client.post(self.url, json=payload)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=payload)

    def assess(self, story: Story) -> AssessmentOutcome:
        if not self.url:
            raise ExternalCollaboratorError("Assessment engine is not configured")

        payload = {
            "story_id": story.story_id,
            "title": story.title,
            "word_count": story.word_count,
        }
        try:
            response = self._post(payload)
        except httpx.HTTPError as e:
            raise ExternalCollaboratorError(f"Assessment engine unreachable: {e}") from e
        if response.status_code >= 300:
            raise ExternalCollaboratorError(
                f"Assessment engine failed: {response.status_code}",
                details={"status": response.status_code},
            )

        try:
            body = response.json()
            criteria_scores = {k: float(v) for k, v in (body.get("criteria_scores") or {}).items()}
            score = body.get("score")
            if score is not None:
                score = float(score)
        except (ValueError, TypeError, AttributeError) as e:
            raise ExternalCollaboratorError("Assessment engine returned an invalid body") from e

        if score is None:
            if not criteria_scores:
                raise ExternalCollaboratorError("Assessment engine returned no score")
            score = weighted_score(criteria_scores)
        return AssessmentOutcome(score=score, criteria_scores=criteria_scores)


def _set_status(story_id: str, **values) -> None:
    with get_db_session() as session:
        session.execute(update(stories).where(stories.c.story_id == story_id).values(**values))


def _mark_failed(user_id: str, story_id: str, message: str) -> None:
    _set_status(story_id, assessment_status="retry_pending", assessment_error=message)
    logger.warning(
        "assessment.failed",
        extra={"user_id": user_id, "story_id": story_id, "error_message": message},
    )


def request_assessment(
    user_id: str,
    story_id: str,
    *,
    engine: Optional[AssessmentEngine] = None,
    now: Optional[datetime] = None,
) -> Story:
    """
    Send a story to the assessment engine.

    The first attempt on a story costs an assessment_uploads token; every
    attempt costs a total_assessment_attempts token.

    Raises:
        ConflictError: already assessed or an attempt is in flight
        QuotaExceededError: no tokens left
        ExternalCollaboratorError: engine failed (story is left retry_pending)
    """
    story = get_owned_story(user_id, story_id)
    if story.assessment_status == "completed":
        raise ConflictError("Story has already been assessed", code="already_assessed")
    if story.assessment_status == "pending":
        raise ConflictError("An assessment is already in progress", code="assessment_in_progress")

    month_key = month_key_for(resolve_now(now))
    with get_db_session() as session:
        claimed = session.execute(
            update(stories)
            .where(stories.c.story_id == story_id)
            .where(stories.c.assessment_status == story.assessment_status)
            .values(
                assessment_status="pending",
                assessment_attempts=stories.c.assessment_attempts + 1,
                assessment_error=None,
            )
        ).rowcount
        if not claimed:
            raise ConflictError("An assessment is already in progress", code="assessment_in_progress")
        if story.assessment_attempts == 0:
            consume_or_raise(user_id, "assessment_uploads", month_key, session=session)
        consume_or_raise(user_id, "total_assessment_attempts", month_key, session=session)

    engine = engine or HttpAssessmentEngine()
    try:
        outcome = engine.assess(story)
    except ExternalCollaboratorError as e:
        _mark_failed(user_id, story_id, e.message)
        raise
    except Exception as e:
        _mark_failed(user_id, story_id, f"Assessment engine error: {e}")
        raise ExternalCollaboratorError(
            "Assessment engine failed unexpectedly",
            details={"error_type": type(e).__name__},
        ) from e

    _set_status(story_id, assessment_status="completed", assessment_score=outcome.score)
    logger.info(
        "assessment.completed",
        extra={"user_id": user_id, "story_id": story_id, "score": outcome.score},
    )
    return get_story(story_id)
