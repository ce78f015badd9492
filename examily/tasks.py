"""Background tasks executed by Celery workers."""

import logging
import uuid

from examily.celery_app import celery_app
from examily.db.session import get_session_factory
from examily.services.attempt_store import SqlAttemptStore
from examily.services.clock import Clock
from examily.services.errors import ExamilyError
from examily.services.lifecycle import AttemptController, AttemptTiming
from examily.services.records import StudentContext

logger = logging.getLogger(__name__)


def sweep_expired_attempts(
    store: SqlAttemptStore,
    clock: Clock | None = None,
    timing: AttemptTiming | None = None,
) -> list[uuid.UUID]:
    """Submit every open attempt whose deadline plus grace has passed.

    Catches students who closed the browser mid-exam.  One failing attempt
    does not stop the sweep.  Returns the ids that were submitted.
    """
    submitted = []
    for attempt in store.list_attempts(completed=False):
        controller = AttemptController(
            store,
            StudentContext(id=attempt.student_id),
            clock=clock,
            timing=timing,
        )
        try:
            controller.load_attempt(attempt.id)
            if controller.enforce_deadline():
                submitted.append(attempt.id)
        except ExamilyError as exc:
            logger.warning("Could not finalize attempt %s: %s", attempt.id, exc)
    return submitted


@celery_app.task(bind=True, name="finalize_expired_attempts", max_retries=3)
def finalize_expired_attempts(self) -> dict:
    """Periodic sweep: auto-submit abandoned attempts past their time limit."""
    store = SqlAttemptStore(session_factory=get_session_factory())
    try:
        submitted = sweep_expired_attempts(store)
    except Exception as exc:
        logger.exception("Expired-attempt sweep failed")
        # Retry with exponential back-off (10s, 30s, 90s)
        raise self.retry(exc=exc, countdown=10 * (3**self.request.retries))

    if submitted:
        logger.info("Auto-submitted %d expired attempt(s)", len(submitted))
    return {"success": True, "submitted": [str(a) for a in submitted]}
