"""Results review for completed attempts."""

from examily.schemas.attempt import AttemptResult, QuestionReview
from examily.services.records import AttemptRecord, ExamRecord
from examily.services.scoring import score_breakdown


def build_result(exam: ExamRecord, attempt: AttemptRecord) -> AttemptResult:
    """Stored score plus a per-question review of the frozen answers.

    The headline score is the one persisted at submission; the breakdown is
    recomputed only for the per-question verdicts and point totals.
    """
    breakdown = score_breakdown(exam.questions, attempt.answers)
    verdicts = {v.question_id: v for v in breakdown.verdicts}

    duration = None
    if attempt.submitted_at is not None:
        elapsed = (attempt.submitted_at - attempt.started_at).total_seconds()
        duration = round(elapsed / 60)

    return AttemptResult(
        id=attempt.id,
        exam_id=attempt.exam_id,
        student_id=attempt.student_id,
        answers=attempt.answers,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        score=attempt.score,
        completed=attempt.completed,
        exam_title=exam.title,
        time_limit=exam.time_limit,
        earned_points=breakdown.earned_points,
        total_points=breakdown.total_points,
        duration_minutes=duration,
        questions=[
            QuestionReview(
                question_id=q.id,
                type=q.question_type,
                text=q.text,
                points=q.points,
                options=q.options,
                student_answer=attempt.answers.get(q.id),
                correct_answer=q.correct_answer if q.auto_gradable else None,
                is_correct=verdicts[q.id].is_correct,
                can_auto_grade=q.auto_gradable,
            )
            for q in exam.questions
        ],
    )
