"""Attempt schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel

from examily.schemas.exam import QuestionType


class AnswersUpdate(BaseModel):
    """PUT /api/attempts/{id}/answers — autosave a batch of answers."""

    answers: dict[str, str | list[str]]  # {question_id: answer}


class AttemptRead(BaseModel):
    """Stored attempt record."""

    id: uuid.UUID
    exam_id: uuid.UUID
    student_id: uuid.UUID
    answers: dict[str, str | list[str]] = {}
    started_at: datetime
    submitted_at: datetime | None = None
    score: int | None = None
    completed: bool

    model_config = {"from_attributes": True}


class AttemptSession(AttemptRead):
    """Attempt plus the live lifecycle view (state, countdown)."""

    state: str
    remaining_seconds: int
    time_up: bool = False


class RemainingRead(BaseModel):
    attempt_id: uuid.UUID
    state: str
    remaining_seconds: int
    time_up: bool


class QuestionReview(BaseModel):
    """One question in the results review."""

    question_id: str
    type: QuestionType
    text: str
    points: float
    options: list[str] | None = None
    student_answer: str | list[str] | None = None
    correct_answer: str | list[str] | None = None
    is_correct: bool | None = None  # None → needs manual grading
    can_auto_grade: bool


class AttemptResult(AttemptRead):
    """Completed attempt with per-question review."""

    exam_title: str
    time_limit: int
    earned_points: float
    total_points: float
    duration_minutes: int | None = None
    questions: list[QuestionReview] = []
