"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from examily.config import settings
from examily.api import (
    attempt_ws_router,
    attempts_router,
    exams_router,
    health_router,
    users_router,
)
from examily.schemas.common import ErrorResponse
from examily.services.errors import (
    AttemptCompletedError,
    ExamilyError,
    NotFoundError,
    PersistenceError,
)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Examily backend starting…")
    yield
    logger.info("✅ Examily backend shut down")


app = FastAPI(
    title="Examily API",
    description="Teachers author exams, students take them by course code",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# ── Domain errors that escape a router ────────────────────────────────────────

_ERROR_STATUS = {
    NotFoundError: (status.HTTP_404_NOT_FOUND, "not_found"),
    AttemptCompletedError: (status.HTTP_409_CONFLICT, "attempt_completed"),
    PersistenceError: (status.HTTP_503_SERVICE_UNAVAILABLE, "persistence_failure"),
}


@app.exception_handler(ExamilyError)
async def examily_error_handler(request: Request, exc: ExamilyError):
    code, error_code = _ERROR_STATUS.get(
        type(exc), (status.HTTP_400_BAD_REQUEST, "exam_error")
    )
    logger.warning("%s on %s: %s", error_code, request.url.path, exc)
    body = ErrorResponse(error_code=error_code, message=str(exc))
    return JSONResponse(status_code=code, content=body.model_dump())


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(exams_router, prefix="/api/exams", tags=["Exams"])
app.include_router(attempts_router, prefix="/api/attempts", tags=["Attempts"])
app.include_router(attempt_ws_router, prefix="/api/attempts", tags=["Attempts"])


@app.get("/")
async def root():
    return {
        "name": "Examily API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
