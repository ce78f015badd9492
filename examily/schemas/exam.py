"""Exam authoring & discovery schemas."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    SHORT_ANSWER = "short-answer"
    LONG_ANSWER = "long-answer"
    TRUE_FALSE = "true-false"
    FILL_IN_BLANK = "fill-in-blank"


_OPTION_TYPES = {QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE}


class QuestionIn(BaseModel):
    """A question as authored by a teacher."""

    type: QuestionType
    text: str = Field(min_length=1)
    image: str | None = None
    options: list[str] | None = None
    correct_answer: str | list[str] | None = None
    points: float = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _options_only_for_choice(self):
        if self.type in _OPTION_TYPES:
            if not self.options:
                raise ValueError(f"{self.type.value} questions need options")
        else:
            self.options = None
        return self


class ExamCreate(BaseModel):
    """POST /api/exams and PUT /api/exams/{id}"""

    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    course_code: str = Field(min_length=4)
    time_limit: int = Field(ge=5, le=180)  # minutes
    questions: list[QuestionIn] = Field(min_length=1)


class QuestionRead(BaseModel):
    """Question as shown to a student — no correct answer."""

    id: uuid.UUID
    type: QuestionType
    text: str
    image: str | None = None
    options: list[str] | None = None
    points: float


class QuestionAuthorRead(QuestionRead):
    """Question as shown to its author."""

    correct_answer: str | list[str] | None = None


class ExamSummary(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    course_code: str
    time_limit: int
    question_count: int
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime


class ExamRead(ExamSummary):
    questions: list[QuestionRead] = []


class ExamAuthorRead(ExamSummary):
    questions: list[QuestionAuthorRead] = []


class ExamStats(BaseModel):
    """GET /api/exams/{id}/stats — teacher dashboard numbers."""

    exam_id: uuid.UUID
    attempt_count: int
    completed_count: int
    average_score: float
