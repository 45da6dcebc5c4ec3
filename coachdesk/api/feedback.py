from datetime import datetime
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from coachdesk.db.models import WorkoutFeedback
from coachdesk.db.session import get_db

router = APIRouter(prefix="/feedback", tags=["feedback"])

FEEDBACK_LIST_LIMIT = 100


class FeedbackScope(str, Enum):
    general = "general"
    client = "client"


class FeedbackCategory(str, Enum):
    general = "general"
    difficulty = "difficulty"
    exercise_selection = "exercise_selection"
    duration = "duration"
    equipment = "equipment"
    other = "other"


class FeedbackCreateRequest(BaseModel):
    workout_id: str = Field(min_length=1, max_length=128)
    workout_title: Optional[str] = Field(default=None, max_length=255)
    rating: int = Field(ge=1, le=5)
    feedback: str = Field(min_length=1, max_length=4000)
    category: FeedbackCategory = FeedbackCategory.general
    scope: FeedbackScope = FeedbackScope.general
    client_id: Optional[int] = None
    client_name: Optional[str] = Field(default=None, max_length=255)


class FeedbackResponse(BaseModel):
    id: int
    workout_id: str
    workout_title: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    scope: str
    category: str
    rating: int
    feedback: str
    created_at: datetime


def _to_response(row: WorkoutFeedback) -> FeedbackResponse:
    return FeedbackResponse(
        id=row.id,
        workout_id=row.workout_id,
        workout_title=row.workout_title,
        client_id=row.client_id,
        client_name=row.client_name,
        scope=row.scope,
        category=row.category,
        rating=row.rating,
        feedback=row.feedback,
        created_at=row.created_at,
    )


@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
def create_feedback(payload: FeedbackCreateRequest, db: Session = Depends(get_db)) -> FeedbackResponse:
    # Client attribution only applies to client-scoped feedback.
    is_client_scope = payload.scope == FeedbackScope.client
    row = WorkoutFeedback(
        workout_id=payload.workout_id.strip(),
        workout_title=(payload.workout_title or "").strip() or None,
        client_id=payload.client_id if is_client_scope else None,
        client_name=((payload.client_name or "").strip() or None) if is_client_scope else None,
        scope=payload.scope.value,
        category=payload.category.value,
        rating=payload.rating,
        feedback=payload.feedback.strip(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return _to_response(row)


@router.get("", response_model=list[FeedbackResponse])
def list_feedback(
    workout_id: Optional[str] = Query(default=None, max_length=128),
    client_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> list[FeedbackResponse]:
    query = db.query(WorkoutFeedback)
    if workout_id:
        query = query.filter(WorkoutFeedback.workout_id == workout_id)
    if client_id is not None:
        query = query.filter(WorkoutFeedback.client_id == client_id)
    rows = (
        query.order_by(WorkoutFeedback.created_at.desc(), WorkoutFeedback.id.desc())
        .limit(FEEDBACK_LIST_LIMIT)
        .all()
    )
    return [_to_response(row) for row in rows]
