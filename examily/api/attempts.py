"""Exam-taking routes: open / resume, autosave, submit, review.

Every request builds a short-lived :class:`AttemptController` over the
request's DB session.  With no live countdown watching, each call first
enforces the deadline, so an attempt whose time (plus grace) ran out is
submitted before anything else happens.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from examily.api.deps import (
    get_attempt_store,
    get_clock,
    require_student,
    student_context,
)
from examily.db.models import User
from examily.schemas.attempt import (
    AnswersUpdate,
    AttemptRead,
    AttemptResult,
    AttemptSession,
    RemainingRead,
)
from examily.services.attempt_store import SqlAttemptStore
from examily.services.clock import Clock
from examily.services.errors import (
    AttemptCompletedError,
    NotFoundError,
    PersistenceError,
)
from examily.services.lifecycle import AttemptController
from examily.services.results import build_result

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Helpers ───────────────────────────────────────────────────────────────────


def _controller(
    student: User = Depends(require_student),
    store: SqlAttemptStore = Depends(get_attempt_store),
    clock: Clock = Depends(get_clock),
) -> AttemptController:
    return AttemptController(store, student_context(student), clock=clock)


def _load(controller: AttemptController, attempt_id: uuid.UUID) -> None:
    try:
        controller.load_attempt(attempt_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Attempt not found"
        )


def _enforce_deadline(controller: AttemptController) -> None:
    try:
        controller.enforce_deadline()
    except PersistenceError as exc:
        logger.error("Deadline submit failed for %s: %s", controller.attempt.id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save your attempt, please try again",
        )


def _session_view(controller: AttemptController) -> AttemptSession:
    attempt = controller.attempt
    return AttemptSession(
        id=attempt.id,
        exam_id=attempt.exam_id,
        student_id=attempt.student_id,
        answers=controller.sheet.snapshot() if not attempt.completed else attempt.answers,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        score=attempt.score,
        completed=attempt.completed,
        state=controller.state.value,
        remaining_seconds=controller.remaining,
        time_up=controller.time_up or (not attempt.completed and controller.remaining == 0),
    )


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("/exams/{exam_id}", response_model=AttemptSession)
def open_attempt(
    exam_id: uuid.UUID,
    controller: AttemptController = Depends(_controller),
):
    """Start the student's attempt at an exam, or resume the existing one."""
    try:
        controller.load(exam_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not start the attempt, please try again",
        )
    _enforce_deadline(controller)
    return _session_view(controller)


@router.get("/", response_model=list[AttemptRead])
def list_attempts(
    student: User = Depends(require_student),
    store: SqlAttemptStore = Depends(get_attempt_store),
):
    """The current student's attempts, newest first."""
    return [AttemptRead.model_validate(a) for a in store.list_attempts(student_id=student.id)]


@router.get("/{attempt_id}", response_model=AttemptResult)
def get_result(
    attempt_id: uuid.UUID,
    controller: AttemptController = Depends(_controller),
):
    """Score and per-question review of a completed attempt."""
    _load(controller, attempt_id)
    _enforce_deadline(controller)
    if not controller.attempt.completed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Attempt still in progress"
        )
    return build_result(controller.exam, controller.attempt)


@router.get("/{attempt_id}/remaining", response_model=RemainingRead)
def remaining_time(
    attempt_id: uuid.UUID,
    controller: AttemptController = Depends(_controller),
):
    """Seconds left on the countdown."""
    _load(controller, attempt_id)
    _enforce_deadline(controller)
    view = _session_view(controller)
    return RemainingRead(
        attempt_id=view.id,
        state=view.state,
        remaining_seconds=view.remaining_seconds,
        time_up=view.time_up,
    )


@router.put("/{attempt_id}/answers", response_model=AttemptSession)
def save_answers(
    attempt_id: uuid.UUID,
    body: AnswersUpdate,
    controller: AttemptController = Depends(_controller),
):
    """Autosave answers; each one overwrites the stored value for its question."""
    _load(controller, attempt_id)
    _enforce_deadline(controller)
    try:
        for question_id, value in body.answers.items():
            controller.set_answer_for(question_id, value)
    except AttemptCompletedError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Attempt already submitted"
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    if not controller.autosave():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save your answers, please try again",
        )
    return _session_view(controller)


@router.post("/{attempt_id}/submit", response_model=AttemptSession)
def submit_attempt(
    attempt_id: uuid.UUID,
    controller: AttemptController = Depends(_controller),
):
    """Score and complete the attempt.  Submitting twice returns the same result."""
    _load(controller, attempt_id)
    try:
        controller.submit()
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not submit your attempt, please try again",
        )
    return _session_view(controller)
