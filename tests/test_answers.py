"""Tests for per-question answer capture and navigation."""

import pytest

from examily.services.answers import AnswerSheet
from examily.services.records import QuestionRecord


def _sheet(n: int = 3, answers=None) -> AnswerSheet:
    questions = tuple(
        QuestionRecord(id=f"q{i}", question_type="multiple-choice", text="?", points=1)
        for i in range(n)
    )
    return AnswerSheet(questions, answers)


def test_set_answer_targets_current_question():
    sheet = _sheet()
    sheet.set_answer("1")
    sheet.next()
    sheet.set_answer("2")
    assert sheet.snapshot() == {"q0": "1", "q1": "2"}


def test_set_answer_overwrites_previous_value():
    sheet = _sheet()
    sheet.set_answer("1")
    sheet.set_answer("")
    assert sheet.get("q0") == ""


def test_unvisited_question_has_no_key():
    sheet = _sheet()
    sheet.set_answer("0")
    assert "q2" not in sheet.snapshot()


def test_navigation_clamps_to_bounds():
    sheet = _sheet(3)
    assert sheet.previous() == 0
    sheet.next()
    sheet.next()
    assert sheet.next() == 2


def test_go_to_rejects_out_of_range():
    sheet = _sheet(3)
    assert sheet.go_to(2) == 2
    with pytest.raises(IndexError):
        sheet.go_to(3)


def test_set_answer_for_unknown_question():
    with pytest.raises(ValueError):
        _sheet().set_answer_for("nope", "1")


def test_snapshot_is_independent():
    sheet = _sheet(answers={"q0": ["0", "1"]})
    snap = sheet.snapshot()
    snap["q0"].append("2")
    snap["q1"] = "x"
    assert sheet.snapshot() == {"q0": ["0", "1"]}


def test_empty_exam_has_no_current_question():
    sheet = _sheet(0)
    assert sheet.current_question is None
    with pytest.raises(ValueError):
        sheet.set_answer("1")
