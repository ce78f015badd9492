"""Lifecycle of one student's attempt at one exam.

States::

    LOADING ──load()──▶ ACTIVE ──submit() / time up──▶ SUBMITTING ──▶ COMPLETED

``COMPLETED`` is terminal.  A completed attempt is frozen: answers, score
and submission time never change again, and submitting it a second time
simply returns the stored result.

The controller is driven either synchronously (HTTP routes call ``load``,
``set_answer_for``, ``submit`` …) or live through :meth:`running`, which owns
two cancelable asyncio tasks: a per-second countdown and a periodic
autosave.  Neither task blocks the event loop: database writes run in a
worker thread (:meth:`aautosave`, :meth:`asubmit`), and the time-up
submission runs as its own task so the countdown keeps ticking while it
retries.  A failed time-up submission is tried again after a cooldown.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Protocol

from examily.config import settings
from examily.services.answers import AnswerSheet
from examily.services.clock import Clock, SystemClock
from examily.services.errors import (
    AttemptCompletedError,
    NotFoundError,
    PersistenceError,
)
from examily.services.records import (
    Answer,
    AttemptRecord,
    ExamRecord,
    StudentContext,
)
from examily.services.scoring import ScoreBreakdown, score_breakdown

logger = logging.getLogger(__name__)


class AttemptStore(Protocol):
    def get_exam(self, exam_id: uuid.UUID) -> ExamRecord | None: ...

    def get_attempt(
        self, exam_id: uuid.UUID, student_id: uuid.UUID
    ) -> AttemptRecord | None: ...

    def get_attempt_by_id(self, attempt_id: uuid.UUID) -> AttemptRecord | None: ...

    def save_attempt(self, attempt: AttemptRecord) -> None: ...


class AttemptState(str, enum.Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class SubmitReason(str, enum.Enum):
    MANUAL = "manual"
    TIME_UP = "time-up"


@dataclass(frozen=True)
class AttemptTiming:
    tick_seconds: float = 1.0
    autosave_seconds: float = 30.0
    grace_seconds: float = 5.0
    submit_retries: int = 3
    submit_backoff_seconds: float = 0.5
    resubmit_cooldown_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "AttemptTiming":
        return cls(
            tick_seconds=settings.ATTEMPT_TICK_SECONDS,
            autosave_seconds=settings.AUTOSAVE_INTERVAL_SECONDS,
            grace_seconds=settings.TIME_UP_GRACE_SECONDS,
            submit_retries=settings.SUBMIT_RETRY_ATTEMPTS,
            submit_backoff_seconds=settings.SUBMIT_RETRY_BACKOFF_SECONDS,
            resubmit_cooldown_seconds=settings.AUTO_SUBMIT_COOLDOWN_SECONDS,
        )


class AttemptController:
    """Owns the state machine, countdown and autosave of a single attempt."""

    def __init__(
        self,
        store: AttemptStore,
        student: StudentContext,
        clock: Clock | None = None,
        timing: AttemptTiming | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.student = student
        self.clock = clock or SystemClock()
        self.timing = timing or AttemptTiming.from_settings()
        self._sleep = sleep

        self.state = AttemptState.LOADING
        self.exam: ExamRecord | None = None
        self.attempt: AttemptRecord | None = None
        self.sheet: AnswerSheet | None = None
        self.remaining = 0
        self.submit_reason: SubmitReason | None = None
        self._time_up_at: datetime | None = None
        self._tasks: list[asyncio.Task] = []
        self._submit_task: asyncio.Task | None = None
        self._auto_retry_at: float | None = None

    # ── Initialization ───────────────────────────────────────────────────

    def load(self, exam_id: uuid.UUID) -> AttemptRecord:
        """Resume the student's attempt at *exam_id*, creating it if needed.

        Raises:
            NotFoundError: the exam does not exist.
        """
        exam = self.store.get_exam(exam_id)
        if exam is None:
            raise NotFoundError(f"Exam {exam_id} not found")

        attempt = self.store.get_attempt(exam_id, self.student.id)
        if attempt is None:
            attempt = self._create_attempt(exam)
        return self._activate(exam, attempt)

    def load_attempt(self, attempt_id: uuid.UUID) -> AttemptRecord:
        """Load an existing attempt by id; it must belong to the student."""
        attempt = self.store.get_attempt_by_id(attempt_id)
        if attempt is None or attempt.student_id != self.student.id:
            raise NotFoundError(f"Attempt {attempt_id} not found")
        exam = self.store.get_exam(attempt.exam_id)
        if exam is None:
            raise NotFoundError(f"Exam {attempt.exam_id} not found")
        return self._activate(exam, attempt)

    def _create_attempt(self, exam: ExamRecord) -> AttemptRecord:
        attempt = AttemptRecord(
            id=uuid.uuid4(),
            exam_id=exam.id,
            student_id=self.student.id,
            started_at=self.clock.now(),
        )
        try:
            self.store.save_attempt(attempt)
        except PersistenceError:
            # lost a creation race against another tab; resume theirs
            existing = self.store.get_attempt(exam.id, self.student.id)
            if existing is None:
                raise
            return existing
        logger.info(
            "Started attempt %s (exam=%s student=%s)",
            attempt.id, exam.id, self.student.id,
        )
        return attempt

    def _activate(self, exam: ExamRecord, attempt: AttemptRecord) -> AttemptRecord:
        self.exam = exam
        self.attempt = attempt
        self.sheet = AnswerSheet(exam.questions, attempt.answers)
        if attempt.completed:
            self.state = AttemptState.COMPLETED
            self.remaining = 0
        else:
            self.state = AttemptState.ACTIVE
            self.remaining = self._compute_remaining(self.clock.now())
        return attempt.copy()

    # ── Countdown ────────────────────────────────────────────────────────

    @property
    def deadline(self) -> datetime:
        self._require_loaded()
        return self.attempt.started_at + timedelta(seconds=self.exam.time_limit_seconds)

    @property
    def time_up(self) -> bool:
        return self._time_up_at is not None

    def _compute_remaining(self, now: datetime) -> int:
        elapsed = int((now - self.attempt.started_at).total_seconds())
        return max(0, self.exam.time_limit_seconds - elapsed)

    def _observe(self) -> bool:
        """Refresh ``remaining``; True once time is up and the grace has run out."""
        now = self.clock.now()
        self.remaining = self._compute_remaining(now)
        if self.remaining > 0:
            return False
        if self._time_up_at is None:
            self._time_up_at = now
            logger.info("Time's up for attempt %s", self.attempt.id)
        return now - self._time_up_at >= timedelta(seconds=self.timing.grace_seconds)

    def tick(self) -> int:
        """Recompute remaining seconds; auto-submit once time is up.

        The first tick that sees no time left raises the time-up warning;
        submission follows once the grace window has passed.
        """
        if self.state is not AttemptState.ACTIVE:
            return self.remaining
        if self._observe():
            self.submit(SubmitReason.TIME_UP)
        return self.remaining

    def enforce_deadline(self) -> bool:
        """Submit if the absolute deadline plus grace has passed.

        Used where no live countdown is observing the attempt (HTTP
        autosave, the expired-attempt sweep).  Returns True if it submitted.
        """
        if self.state is not AttemptState.ACTIVE:
            return False
        now = self.clock.now()
        self.remaining = self._compute_remaining(now)
        if now < self.deadline + timedelta(seconds=self.timing.grace_seconds):
            return False
        if self._time_up_at is None:
            self._time_up_at = now
        self.submit(SubmitReason.TIME_UP)
        return True

    # ── Answers & navigation ─────────────────────────────────────────────

    def _require_loaded(self) -> None:
        if self.attempt is None:
            raise RuntimeError("Attempt not loaded")

    def _require_active(self) -> None:
        self._require_loaded()
        if self.state is AttemptState.COMPLETED:
            raise AttemptCompletedError(f"Attempt {self.attempt.id} is completed")
        if self.state is not AttemptState.ACTIVE:
            raise RuntimeError(f"Attempt is {self.state.value}")

    def set_answer(self, value: Answer) -> None:
        """Overwrite the answer for the currently displayed question."""
        self._require_active()
        self.sheet.set_answer(value)

    def set_answer_for(self, question_id: str, value: Answer) -> None:
        self._require_active()
        self.sheet.set_answer_for(question_id, value)

    def next_question(self, autosave: bool = True) -> int:
        self._require_active()
        if autosave:
            self.autosave()
        return self.sheet.next()

    def previous_question(self, autosave: bool = True) -> int:
        self._require_active()
        if autosave:
            self.autosave()
        return self.sheet.previous()

    def go_to_question(self, index: int, autosave: bool = True) -> int:
        """Jump to *index* (clamped); ``autosave=False`` skips the save."""
        self._require_active()
        if autosave:
            self.autosave()
        return self.sheet.go_to(index)

    # ── Autosave ─────────────────────────────────────────────────────────

    def _answers_record(self) -> AttemptRecord:
        record = self.attempt.copy()
        record.answers = self.sheet.snapshot()
        return record

    def _write_answers(self, record: AttemptRecord) -> bool:
        try:
            self.store.save_attempt(record)
        except AttemptCompletedError:
            logger.info("Attempt %s already completed; autosave skipped", record.id)
            return False
        except PersistenceError as exc:
            logger.warning("Autosave failed for attempt %s: %s", record.id, exc)
            return False
        logger.debug("Autosaved attempt %s (%d answers)", record.id, len(record.answers))
        return True

    def autosave(self) -> bool:
        """Persist the current answers; never changes ``completed``.

        Failures are logged and left for the next trigger to retry.
        """
        if self.state is not AttemptState.ACTIVE:
            return False
        record = self._answers_record()
        saved = self._write_answers(record)
        if saved:
            self.attempt.answers = record.answers
        return saved

    async def aautosave(self) -> bool:
        """:meth:`autosave` with the write in a worker thread."""
        if self.state is not AttemptState.ACTIVE:
            return False
        record = self._answers_record()
        saved = await asyncio.to_thread(self._write_answers, record)
        if saved and self.state is AttemptState.ACTIVE:
            self.attempt.answers = record.answers
        return saved

    # ── Submission ───────────────────────────────────────────────────────

    def submit(self, reason: SubmitReason = SubmitReason.MANUAL) -> AttemptRecord:
        """Score and complete the attempt.  Idempotent once completed.

        Raises:
            PersistenceError: the final write failed after every retry; the
                attempt stays active so the caller can alert and retry.
        """
        record = self._begin_submit()
        if record is None:
            return self.attempt.copy()
        try:
            self._write_answers(record)
            final = self._save_final(self._scored(record))
        except PersistenceError:
            self.state = AttemptState.ACTIVE
            raise
        return self._finish_submit(final, reason)

    async def asubmit(self, reason: SubmitReason = SubmitReason.MANUAL) -> AttemptRecord:
        """:meth:`submit` for the event loop.

        Writes run in a worker thread and the retry backoff is awaited, so
        the loop keeps serving the countdown and the socket meanwhile.
        """
        record = self._begin_submit()
        if record is None:
            return self.attempt.copy()
        try:
            await asyncio.to_thread(self._write_answers, record)
            final = await self._asave_final(self._scored(record))
        except (PersistenceError, asyncio.CancelledError):
            self.state = AttemptState.ACTIVE
            raise
        return self._finish_submit(final, reason)

    def _begin_submit(self) -> AttemptRecord | None:
        """Enter SUBMITTING; the answers to submit, or None if already completed."""
        self._require_loaded()
        if self.state is AttemptState.COMPLETED or self.attempt.completed:
            return None
        if self.state is not AttemptState.ACTIVE:
            raise RuntimeError(f"Attempt is {self.state.value}")
        self.state = AttemptState.SUBMITTING
        return self._answers_record()

    def _scored(self, record: AttemptRecord) -> AttemptRecord:
        final = record.copy()
        final.submitted_at = self.clock.now()
        final.score = score_breakdown(self.exam.questions, record.answers).score
        final.completed = True
        return final

    def _finish_submit(self, final: AttemptRecord, reason: SubmitReason) -> AttemptRecord:
        self.attempt = final
        self.remaining = 0
        self.submit_reason = reason
        self.state = AttemptState.COMPLETED
        result = score_breakdown(self.exam.questions, final.answers)
        logger.info(
            "Submitted attempt %s (%s): %s/%s points → %d%%",
            final.id, reason.value, result.earned_points, result.total_points,
            final.score,
        )
        return final.copy()

    def _stored_result(self, attempt_id: uuid.UUID) -> AttemptRecord:
        # another submission got there first; its result stands
        stored = self.store.get_attempt_by_id(attempt_id)
        if stored is None:
            raise PersistenceError(f"Attempt {attempt_id} vanished during submit")
        return stored

    def _retry_wait(self, attempt_id: uuid.UUID, attempt_no: int, exc: Exception) -> float | None:
        """Backoff before the next try of the final write; None when out of tries."""
        retries = max(1, self.timing.submit_retries)
        if attempt_no >= retries - 1:
            logger.error(
                "Submit of attempt %s failed after %d tries: %s", attempt_id, retries, exc
            )
            return None
        wait_time = self.timing.submit_backoff_seconds * (2**attempt_no)
        logger.warning(
            "Submit of attempt %s failed (try %d/%d): %s. Retrying in %ss",
            attempt_id, attempt_no + 1, retries, exc, wait_time,
        )
        return wait_time

    def _save_final(self, final: AttemptRecord) -> AttemptRecord:
        """Write the completed record, retrying with exponential backoff."""
        for attempt_no in range(max(1, self.timing.submit_retries)):
            try:
                self.store.save_attempt(final)
                return final
            except AttemptCompletedError:
                return self._stored_result(final.id)
            except PersistenceError as exc:
                wait_time = self._retry_wait(final.id, attempt_no, exc)
                if wait_time is None:
                    raise
                self._sleep(wait_time)

    async def _asave_final(self, final: AttemptRecord) -> AttemptRecord:
        for attempt_no in range(max(1, self.timing.submit_retries)):
            try:
                await asyncio.to_thread(self.store.save_attempt, final)
                return final
            except AttemptCompletedError:
                return await asyncio.to_thread(self._stored_result, final.id)
            except PersistenceError as exc:
                wait_time = self._retry_wait(final.id, attempt_no, exc)
                if wait_time is None:
                    raise
                await asyncio.sleep(wait_time)

    def breakdown(self) -> ScoreBreakdown:
        """Per-question verdicts for the current answers."""
        self._require_loaded()
        answers = self.attempt.answers if self.attempt.completed else self.sheet.snapshot()
        return score_breakdown(self.exam.questions, answers)


    # ── Scheduled tasks ──────────────────────────────────────────────────

    async def _countdown_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self.state is not AttemptState.COMPLETED:
            await asyncio.sleep(self.timing.tick_seconds)
            if self.state is not AttemptState.ACTIVE:
                continue
            if self._observe() and self._auto_submit_due(loop.time()):
                self._submit_task = asyncio.create_task(
                    self._auto_submit(), name=f"submit-{self.attempt.id}"
                )

    def _auto_submit_due(self, now: float) -> bool:
        if self._submit_task is not None and not self._submit_task.done():
            return False
        return self._auto_retry_at is None or now >= self._auto_retry_at

    async def _auto_submit(self) -> None:
        try:
            await self.asubmit(SubmitReason.TIME_UP)
        except PersistenceError as exc:
            cooldown = self.timing.resubmit_cooldown_seconds
            self._auto_retry_at = asyncio.get_running_loop().time() + cooldown
            logger.error(
                "Auto-submit of attempt %s failed, next try in %ss: %s",
                self.attempt.id, cooldown, exc,
            )

    async def _autosave_loop(self) -> None:
        while self.state is AttemptState.ACTIVE:
            await asyncio.sleep(self.timing.autosave_seconds)
            await self.aautosave()

    @asynccontextmanager
    async def running(self) -> AsyncIterator["AttemptController"]:
        """Run countdown and autosave for the duration of the block.

        Both tasks are cancelled on exit, including on error.
        """
        self._require_loaded()
        if self.state is AttemptState.ACTIVE:
            self._tasks = [
                asyncio.create_task(self._countdown_loop(), name=f"countdown-{self.attempt.id}"),
                asyncio.create_task(self._autosave_loop(), name=f"autosave-{self.attempt.id}"),
            ]
        try:
            yield self
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Cancel the scheduled tasks and wait for them to finish.

        A time-up submission already under way is awaited, not cancelled.
        """
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._submit_task is not None:
            await asyncio.gather(self._submit_task, return_exceptions=True)
            self._submit_task = None

    @property
    def tasks_running(self) -> bool:
        tasks = [*self._tasks, self._submit_task] if self._submit_task else self._tasks
        return any(not t.done() for t in tasks)
