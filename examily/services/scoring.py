"""Autograding for exam attempts.

Only objective question types are graded automatically:

  multiple-choice / true-false  exact, case-sensitive match on the option index
  fill-in-blank                 case-insensitive match, whitespace preserved

Short- and long-answer questions still count towards the total points but
never earn any, so they pull the percentage down until a human grades them.

The percentage is rounded half-up (62.5 → 63) rather than with Python's
banker's rounding.  An exam whose total points is zero scores 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from examily.services.records import Answer, QuestionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionVerdict:
    question_id: str
    points: float
    answered: bool
    is_correct: bool | None  # None → not auto-gradable


@dataclass(frozen=True)
class ScoreBreakdown:
    earned_points: float
    total_points: float
    score: int
    verdicts: tuple[QuestionVerdict, ...]


# ── Per-question grading ──────────────────────────────────────────────────────


def _lists_match(student: list[str], correct: list[str]) -> bool:
    """Multi-select: same size and every correct option selected."""
    return len(student) == len(correct) and all(c in student for c in correct)


def grade_question(question: QuestionRecord, answer: Answer | None) -> bool | None:
    """Return True/False for auto-gradable questions, None otherwise.

    A missing answer never matches.  List answers only match list correct
    answers; mixing a list with a string is always wrong.
    """
    if not question.auto_gradable:
        return None
    correct = question.correct_answer
    if answer is None or correct is None:
        return False

    if isinstance(answer, list) or isinstance(correct, list):
        if isinstance(answer, list) and isinstance(correct, list):
            return _lists_match(answer, correct)
        return False

    if question.question_type == "fill-in-blank":
        return answer.lower() == correct.lower()
    return answer == correct


# ── Percentage ────────────────────────────────────────────────────────────────


def _percentage(earned: float, total: float) -> int:
    if total <= 0:
        return 0
    ratio = Decimal(str(earned)) / Decimal(str(total)) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score_breakdown(
    questions: Iterable[QuestionRecord],
    answers: Mapping[str, Answer],
) -> ScoreBreakdown:
    """Grade every question and aggregate earned / total points."""
    earned = 0.0
    total = 0.0
    verdicts = []
    for question in questions:
        total += question.points
        answer = answers.get(question.id)
        verdict = grade_question(question, answer)
        if verdict:
            earned += question.points
        verdicts.append(
            QuestionVerdict(
                question_id=question.id,
                points=question.points,
                answered=bool(answer),
                is_correct=verdict,
            )
        )

    if total <= 0:
        logger.warning("Scoring an exam with no points, defaulting to 0")

    return ScoreBreakdown(
        earned_points=earned,
        total_points=total,
        score=_percentage(earned, total),
        verdicts=tuple(verdicts),
    )


def score(questions: Iterable[QuestionRecord], answers: Mapping[str, Answer]) -> int:
    """Percentage score in [0, 100] for *answers* against *questions*."""
    return score_breakdown(questions, answers).score
