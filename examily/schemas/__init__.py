"""Pydantic schemas — re‑exported for convenience."""

from examily.schemas.common import ErrorResponse, SuccessResponse  # noqa: F401
from examily.schemas.user import (  # noqa: F401
    AuthResponse,
    Role,
    UserCreate,
    UserLogin,
    UserRead,
    UserUpdate,
)
from examily.schemas.exam import (  # noqa: F401
    ExamAuthorRead,
    ExamCreate,
    ExamRead,
    ExamStats,
    ExamSummary,
    QuestionIn,
    QuestionType,
)
from examily.schemas.attempt import (  # noqa: F401
    AnswersUpdate,
    AttemptRead,
    AttemptResult,
    AttemptSession,
    QuestionReview,
    RemainingRead,
)
