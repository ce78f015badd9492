"""API route package — imports all routers for main.py."""

from examily.api.health import router as health_router  # noqa: F401
from examily.api.users import router as users_router  # noqa: F401
from examily.api.exams import router as exams_router  # noqa: F401
from examily.api.attempts import router as attempts_router  # noqa: F401
from examily.api.attempt_ws import router as attempt_ws_router  # noqa: F401
