"""Plain records exchanged between the attempt store and the exam-taking core.

The lifecycle controller never holds ORM objects; the store converts rows
to these records on read and back on write, so every save is a whole-record
overwrite.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime

Answer = str | list[str]

AUTO_GRADED_TYPES = frozenset({"multiple-choice", "true-false", "fill-in-blank"})


@dataclass(frozen=True)
class QuestionRecord:
    id: str
    question_type: str
    text: str
    points: float
    options: list[str] | None = None
    correct_answer: Answer | None = None
    image: str | None = None

    @property
    def auto_gradable(self) -> bool:
        return self.question_type in AUTO_GRADED_TYPES


@dataclass(frozen=True)
class ExamRecord:
    id: uuid.UUID
    title: str
    course_code: str
    time_limit: int  # minutes
    questions: tuple[QuestionRecord, ...]
    description: str = ""
    created_by: uuid.UUID | None = None

    @property
    def time_limit_seconds(self) -> int:
        return self.time_limit * 60


@dataclass
class AttemptRecord:
    id: uuid.UUID
    exam_id: uuid.UUID
    student_id: uuid.UUID
    started_at: datetime
    answers: dict[str, Answer] = field(default_factory=dict)
    submitted_at: datetime | None = None
    score: int | None = None
    completed: bool = False

    def copy(self) -> "AttemptRecord":
        """Independent copy, answers included."""
        return replace(self, answers=copy_answers(self.answers))


@dataclass(frozen=True)
class StudentContext:
    """The authenticated student a controller acts for."""

    id: uuid.UUID
    full_name: str = ""


def copy_answers(answers: dict[str, Answer]) -> dict[str, Answer]:
    return {k: list(v) if isinstance(v, list) else v for k, v in answers.items()}
