from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from writeclub.core.auth import get_current_user_id
from writeclub.features.assessments.service import AssessmentEngine, HttpAssessmentEngine, request_assessment
from writeclub.features.stories.service import create_story, list_user_stories

router = APIRouter(prefix="/v1/stories", tags=["stories"])


class CreateStoryRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    word_count: int = Field(..., ge=0)


def get_assessment_engine() -> AssessmentEngine:
    return HttpAssessmentEngine()


@router.post("", status_code=201)
def create(req: CreateStoryRequest, user_id: str = Depends(get_current_user_id)):
    story = create_story(user_id, req.title, req.word_count)
    return {"story": story.model_dump(mode="json")}


@router.get("")
def list_stories(user_id: str = Depends(get_current_user_id)):
    stories = list_user_stories(user_id)
    return {"stories": [s.model_dump(mode="json") for s in stories]}


@router.post("/{story_id}/assessment")
def assess(
    story_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: AssessmentEngine = Depends(get_assessment_engine),
):
    story = request_assessment(user_id, story_id, engine=engine)
    return {"story": story.model_dump(mode="json")}
