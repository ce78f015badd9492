"""SQL-backed store for exams and exam attempts.

Saves are whole-record overwrites (last write wins) of rows that are not yet
completed.  The completed check is part of the UPDATE itself, so a late
autosave can never land on a row a submission has already frozen.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from examily.db.models import Exam, ExamAttempt
from examily.services.clock import as_utc
from examily.services.errors import AttemptCompletedError, PersistenceError
from examily.services.records import (
    AttemptRecord,
    ExamRecord,
    QuestionRecord,
    copy_answers,
)

logger = logging.getLogger(__name__)


# ── Row ↔ record conversion ───────────────────────────────────────────────────


def exam_to_record(exam: Exam) -> ExamRecord:
    questions = tuple(
        QuestionRecord(
            id=str(q.id),
            question_type=q.question_type.value,
            text=q.text,
            points=q.points,
            options=list(q.options) if q.options is not None else None,
            correct_answer=q.correct_answer,
            image=q.image,
        )
        for q in sorted(exam.questions, key=lambda q: q.position)
    )
    return ExamRecord(
        id=exam.id,
        title=exam.title,
        description=exam.description,
        course_code=exam.course_code,
        time_limit=exam.time_limit,
        questions=questions,
        created_by=exam.created_by,
    )


def attempt_to_record(row: ExamAttempt) -> AttemptRecord:
    return AttemptRecord(
        id=row.id,
        exam_id=row.exam_id,
        student_id=row.student_id,
        started_at=as_utc(row.started_at),
        answers=copy_answers(row.answers or {}),
        submitted_at=as_utc(row.submitted_at) if row.submitted_at else None,
        score=row.score,
        completed=bool(row.completed),
    )


def _same_outcome(stored: AttemptRecord, attempt: AttemptRecord) -> bool:
    """True if writing *attempt* would leave the completed *stored* row as is."""
    submitted = as_utc(attempt.submitted_at) if attempt.submitted_at else None
    return (
        attempt.completed
        and stored.answers == attempt.answers
        and stored.score == attempt.score
        and stored.submitted_at == submitted
    )


def _expire_cached(db: Session, attempt_id: uuid.UUID) -> None:
    # the UPDATE bypasses the identity map; drop any stale copy of the row
    cached = db.identity_map.get(db.identity_key(ExamAttempt, attempt_id))
    if cached is not None:
        db.expire(cached)


# ── Store ─────────────────────────────────────────────────────────────────────


class SqlAttemptStore:
    """Attempt store over SQLAlchemy.

    Bind it either to a request-scoped *session* (HTTP routes) or to a
    *session_factory*, in which case every call opens and closes its own
    session so calls may run from worker threads.
    """

    def __init__(
        self,
        session: Session | None = None,
        session_factory: Callable[[], Session] | None = None,
    ):
        if (session is None) == (session_factory is None):
            raise ValueError("Pass exactly one of session / session_factory")
        self._session = session
        self._session_factory = session_factory

    @contextmanager
    def _db(self) -> Iterator[Session]:
        if self._session is not None:
            yield self._session
            return
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    # ── exams ────────────────────────────────────────────────────────────

    def get_exam(self, exam_id: uuid.UUID) -> ExamRecord | None:
        with self._db() as db:
            exam = (
                db.query(Exam)
                .options(selectinload(Exam.questions))
                .filter(Exam.id == exam_id)
                .first()
            )
            return exam_to_record(exam) if exam else None

    # ── attempts ─────────────────────────────────────────────────────────

    def get_attempt(
        self, exam_id: uuid.UUID, student_id: uuid.UUID
    ) -> AttemptRecord | None:
        with self._db() as db:
            row = (
                db.query(ExamAttempt)
                .filter(
                    ExamAttempt.exam_id == exam_id,
                    ExamAttempt.student_id == student_id,
                )
                .first()
            )
            return attempt_to_record(row) if row else None

    def get_attempt_by_id(self, attempt_id: uuid.UUID) -> AttemptRecord | None:
        with self._db() as db:
            row = db.query(ExamAttempt).filter(ExamAttempt.id == attempt_id).first()
            return attempt_to_record(row) if row else None

    def list_attempts(
        self,
        student_id: uuid.UUID | None = None,
        exam_id: uuid.UUID | None = None,
        completed: bool | None = None,
    ) -> list[AttemptRecord]:
        with self._db() as db:
            query = db.query(ExamAttempt)
            if student_id is not None:
                query = query.filter(ExamAttempt.student_id == student_id)
            if exam_id is not None:
                query = query.filter(ExamAttempt.exam_id == exam_id)
            if completed is not None:
                query = query.filter(ExamAttempt.completed == completed)
            rows = query.order_by(ExamAttempt.started_at.desc()).all()
            return [attempt_to_record(r) for r in rows]

    def save_attempt(self, attempt: AttemptRecord) -> None:
        """Insert or overwrite *attempt*.

        The overwrite only applies while the stored row is not completed, so
        a write racing a submission can never change a frozen record.
        Rewriting a completed record with its own stored values is a no-op.

        Raises:
            AttemptCompletedError: the stored record is completed and differs.
            PersistenceError: the database write failed.
        """
        values = {
            "answers": copy_answers(attempt.answers),
            "started_at": attempt.started_at,
            "submitted_at": attempt.submitted_at,
            "score": attempt.score,
            "completed": attempt.completed,
        }
        with self._db() as db:
            try:
                result = db.execute(
                    update(ExamAttempt)
                    .where(
                        ExamAttempt.id == attempt.id,
                        ExamAttempt.completed.is_(False),
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    stored = db.execute(
                        select(ExamAttempt)
                        .where(ExamAttempt.id == attempt.id)
                        .execution_options(populate_existing=True)
                    ).scalar_one_or_none()
                    if stored is None:
                        db.add(
                            ExamAttempt(
                                id=attempt.id,
                                exam_id=attempt.exam_id,
                                student_id=attempt.student_id,
                                **values,
                            )
                        )
                    elif not _same_outcome(attempt_to_record(stored), attempt):
                        db.rollback()
                        raise AttemptCompletedError(
                            f"Attempt {attempt.id} is completed and cannot change"
                        )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Saving attempt %s failed: %s", attempt.id, exc)
                raise PersistenceError(str(exc)) from exc
            _expire_cached(db, attempt.id)

    def delete_attempt(self, attempt_id: uuid.UUID) -> bool:
        with self._db() as db:
            try:
                row = db.get(ExamAttempt, attempt_id)
                if row is None:
                    return False
                db.delete(row)
                db.commit()
                return True
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(str(exc)) from exc
