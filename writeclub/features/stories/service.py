"""
Story service.

Only the fields the competition and quota flows need: a story has an owner,
a word count and an assessment status. Creating one costs a stories_created
token.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import insert, select

from writeclub.core.clock import resolve_now
from writeclub.core.database import get_db_session, stories, as_utc
from writeclub.core.errors import NotFoundError, PermissionError, ValidationError
from writeclub.features.limits.service import month_key_for
from writeclub.features.usage.service import consume_or_raise
from writeclub.models.story import Story

logger = logging.getLogger("writeclub.stories")

MAX_TITLE_LENGTH = 200


def row_to_story(row) -> Story:
    return Story(
        story_id=row.story_id,
        user_id=row.user_id,
        title=row.title,
        word_count=row.word_count,
        assessment_status=row.assessment_status,
        assessment_score=row.assessment_score,
        assessment_attempts=row.assessment_attempts,
        assessment_error=row.assessment_error,
        created_at=as_utc(row.created_at),
    )


def get_story(story_id: str, session=None) -> Story:
    query = select(stories).where(stories.c.story_id == story_id)
    if session is not None:
        row = session.execute(query).first()
    else:
        with get_db_session() as s:
            row = s.execute(query).first()
    if not row:
        raise NotFoundError(f"Story {story_id} not found")
    return row_to_story(row)


def get_owned_story(user_id: str, story_id: str, session=None) -> Story:
    story = get_story(story_id, session=session)
    if story.user_id != user_id:
        raise PermissionError("Story belongs to another user", code="not_story_owner")
    return story


def list_user_stories(user_id: str) -> List[Story]:
    with get_db_session() as session:
        rows = session.execute(
            select(stories)
            .where(stories.c.user_id == user_id)
            .order_by(stories.c.created_at.desc())
        ).all()
    return [row_to_story(r) for r in rows]


def create_story(
    user_id: str,
    title: str,
    word_count: int,
    *,
    story_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Story:
    """Create a story, consuming one stories_created token for the month."""
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required", code="invalid_title")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title exceeds {MAX_TITLE_LENGTH} characters", code="invalid_title")
    if word_count < 0:
        raise ValidationError("word_count must be >= 0", code="invalid_word_count")

    current_time = resolve_now(now)
    new_id = story_id or str(uuid.uuid4())

    with get_db_session() as session:
        usage = consume_or_raise(user_id, "stories_created", month_key_for(current_time), session=session)
        session.execute(
            insert(stories).values(
                story_id=new_id,
                user_id=user_id,
                title=title,
                word_count=word_count,
                assessment_status="none",
                assessment_attempts=0,
                created_at=current_time,
            )
        )

    logger.info(
        "story.created",
        extra={"user_id": user_id, "story_id": new_id, "stories_remaining": usage.remaining},
    )
    return Story(
        story_id=new_id,
        user_id=user_id,
        title=title,
        word_count=word_count,
        created_at=current_time,
    )
