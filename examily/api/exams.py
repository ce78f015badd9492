"""Exam authoring (teachers) and course-code discovery (students)."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from examily.api.deps import get_current_user, require_teacher
from examily.db.models import Exam, ExamAttempt, Question, QuestionTypeEnum, User
from examily.db.session import get_db
from examily.schemas.attempt import AttemptRead
from examily.schemas.common import SuccessResponse
from examily.schemas.exam import (
    ExamAuthorRead,
    ExamCreate,
    ExamRead,
    ExamStats,
    ExamSummary,
    QuestionAuthorRead,
    QuestionRead,
)
from examily.services.attempt_store import attempt_to_record

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Helpers ───────────────────────────────────────────────────────────────────


def _summary_fields(exam: Exam) -> dict:
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "course_code": exam.course_code,
        "time_limit": exam.time_limit,
        "question_count": len(exam.questions),
        "created_by": exam.created_by,
        "created_at": exam.created_at,
        "updated_at": exam.updated_at,
    }


def _to_summary(exam: Exam) -> ExamSummary:
    return ExamSummary(**_summary_fields(exam))


def _to_student_view(exam: Exam) -> ExamRead:
    return ExamRead(
        **_summary_fields(exam),
        questions=[
            QuestionRead(
                id=q.id,
                type=q.question_type.value,
                text=q.text,
                image=q.image,
                options=q.options,
                points=q.points,
            )
            for q in exam.questions
        ],
    )


def _to_author_view(exam: Exam) -> ExamAuthorRead:
    return ExamAuthorRead(
        **_summary_fields(exam),
        questions=[
            QuestionAuthorRead(
                id=q.id,
                type=q.question_type.value,
                text=q.text,
                image=q.image,
                options=q.options,
                points=q.points,
                correct_answer=q.correct_answer,
            )
            for q in exam.questions
        ],
    )


def _build_questions(body: ExamCreate) -> list[Question]:
    return [
        Question(
            position=i,
            question_type=QuestionTypeEnum(q.type.value),
            text=q.text,
            image=q.image,
            options=q.options,
            correct_answer=q.correct_answer,
            points=q.points,
        )
        for i, q in enumerate(body.questions)
    ]


def _get_exam_or_404(db: Session, exam_id: uuid.UUID) -> Exam:
    exam = (
        db.query(Exam)
        .options(selectinload(Exam.questions))
        .filter(Exam.id == exam_id)
        .first()
    )
    if exam is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")
    return exam


def _get_owned_exam(db: Session, exam_id: uuid.UUID, teacher: User) -> Exam:
    exam = _get_exam_or_404(db, exam_id)
    if exam.created_by != teacher.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not the author of this exam"
        )
    return exam


def _attempt_count(db: Session, exam_id: uuid.UUID) -> int:
    return (
        db.query(func.count(ExamAttempt.id))
        .filter(ExamAttempt.exam_id == exam_id)
        .scalar()
    )


# ── Authoring ─────────────────────────────────────────────────────────────────


@router.post("/", response_model=ExamAuthorRead, status_code=status.HTTP_201_CREATED)
def create_exam(
    body: ExamCreate,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """Create an exam with its ordered question list."""
    exam = Exam(
        title=body.title,
        description=body.description,
        course_code=body.course_code,
        time_limit=body.time_limit,
        created_by=teacher.id,
        questions=_build_questions(body),
    )
    db.add(exam)
    db.commit()
    db.refresh(exam)
    logger.info("Teacher %s created exam %s (%s)", teacher.id, exam.id, exam.course_code)
    return _to_author_view(exam)


@router.get("/", response_model=list[ExamSummary])
def list_my_exams(
    q: str | None = None,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """List the teacher's exams, optionally filtered by title / course code."""
    query = (
        db.query(Exam)
        .options(selectinload(Exam.questions))
        .filter(Exam.created_by == teacher.id)
    )
    if q:
        pattern = f"%{q.lower()}%"
        query = query.filter(
            or_(
                func.lower(Exam.title).like(pattern),
                func.lower(Exam.course_code).like(pattern),
            )
        )
    return [_to_summary(e) for e in query.order_by(Exam.created_at.desc()).all()]


@router.get("/course/{course_code}", response_model=list[ExamSummary])
def find_by_course_code(
    course_code: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Discover the exams published under a course code."""
    exams = (
        db.query(Exam)
        .options(selectinload(Exam.questions))
        .filter(Exam.course_code == course_code)
        .order_by(Exam.created_at)
        .all()
    )
    if not exams:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Course code not found"
        )
    return [_to_summary(e) for e in exams]


@router.get("/{exam_id}", response_model=None)
def get_exam(
    exam_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExamRead | ExamAuthorRead:
    """Exam with questions; correct answers only for its author."""
    exam = _get_exam_or_404(db, exam_id)
    if exam.created_by == current_user.id:
        return _to_author_view(exam)
    return _to_student_view(exam)


@router.put("/{exam_id}", response_model=ExamAuthorRead)
def update_exam(
    exam_id: uuid.UUID,
    body: ExamCreate,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """Replace an exam's details and questions.

    Refused once students have attempts, whose answers are keyed by the
    current question ids.
    """
    exam = _get_owned_exam(db, exam_id, teacher)
    if _attempt_count(db, exam.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This exam has student attempts and cannot be edited",
        )
    exam.title = body.title
    exam.description = body.description
    exam.course_code = body.course_code
    exam.time_limit = body.time_limit
    exam.questions = _build_questions(body)
    db.commit()
    db.refresh(exam)
    return _to_author_view(exam)


@router.delete("/{exam_id}", response_model=SuccessResponse)
def delete_exam(
    exam_id: uuid.UUID,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """Delete an exam that nobody has attempted yet."""
    exam = _get_owned_exam(db, exam_id, teacher)
    if _attempt_count(db, exam.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This exam has student attempts and cannot be deleted",
        )
    db.delete(exam)
    db.commit()
    logger.info("Teacher %s deleted exam %s", teacher.id, exam_id)
    return SuccessResponse(message="Exam deleted", data={"id": str(exam_id)})


# ── Teacher views of attempts ────────────────────────────────────────────────


@router.get("/{exam_id}/attempts", response_model=list[AttemptRead])
def list_exam_attempts(
    exam_id: uuid.UUID,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """All attempts at one of the teacher's exams."""
    exam = _get_owned_exam(db, exam_id, teacher)
    rows = (
        db.query(ExamAttempt)
        .filter(ExamAttempt.exam_id == exam.id)
        .order_by(ExamAttempt.started_at.desc())
        .all()
    )
    return [AttemptRead.model_validate(attempt_to_record(r)) for r in rows]


@router.get("/{exam_id}/stats", response_model=ExamStats)
def exam_stats(
    exam_id: uuid.UUID,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """Attempt counts and the average score of completed attempts."""
    exam = _get_owned_exam(db, exam_id, teacher)
    total = _attempt_count(db, exam.id)
    completed_count, average = (
        db.query(func.count(ExamAttempt.id), func.avg(ExamAttempt.score))
        .filter(ExamAttempt.exam_id == exam.id, ExamAttempt.completed.is_(True))
        .one()
    )
    return ExamStats(
        exam_id=exam.id,
        attempt_count=total,
        completed_count=completed_count,
        average_score=round(float(average or 0.0), 2),
    )
