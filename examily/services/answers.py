"""Per-question answer capture for one attempt.

An absent key means the question was never visited; an empty string means
it was visited but left blank.  Both are unanswered for scoring.
"""

from examily.services.records import Answer, QuestionRecord, copy_answers


class AnswerSheet:
    """Answers keyed by question id plus the currently displayed question."""

    def __init__(
        self,
        questions: tuple[QuestionRecord, ...],
        answers: dict[str, Answer] | None = None,
    ):
        self._questions = questions
        self._ids = {q.id for q in questions}
        self._answers: dict[str, Answer] = copy_answers(answers or {})
        self.current_index = 0

    def __len__(self) -> int:
        return len(self._questions)

    @property
    def current_question(self) -> QuestionRecord | None:
        if not self._questions:
            return None
        return self._questions[self.current_index]

    def get(self, question_id: str) -> Answer | None:
        return self._answers.get(question_id)

    # ── updates ──────────────────────────────────────────────────────────

    def set_answer(self, value: Answer) -> None:
        """Overwrite the answer for the current question."""
        question = self.current_question
        if question is None:
            raise ValueError("Exam has no questions")
        self._answers[question.id] = list(value) if isinstance(value, list) else value

    def set_answer_for(self, question_id: str, value: Answer) -> None:
        if question_id not in self._ids:
            raise ValueError(f"Unknown question id: {question_id}")
        self._answers[question_id] = list(value) if isinstance(value, list) else value

    # ── navigation ───────────────────────────────────────────────────────

    def next(self) -> int:
        self.current_index = min(self.current_index + 1, max(len(self) - 1, 0))
        return self.current_index

    def previous(self) -> int:
        self.current_index = max(self.current_index - 1, 0)
        return self.current_index

    def go_to(self, index: int) -> int:
        if not 0 <= index < len(self):
            raise IndexError(f"Question index {index} out of range")
        self.current_index = index
        return self.current_index

    def snapshot(self) -> dict[str, Answer]:
        """Independent copy of the answer mapping."""
        return copy_answers(self._answers)
