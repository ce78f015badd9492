"""Tests for the attempt lifecycle controller (state machine, timer, autosave)."""

import asyncio
import time
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session, sessionmaker

from examily.db.models import Exam, Question, QuestionTypeEnum, RoleEnum, User
from examily.services.attempt_store import SqlAttemptStore
from examily.services.errors import (
    AttemptCompletedError,
    NotFoundError,
    PersistenceError,
)
from examily.services.lifecycle import (
    AttemptController,
    AttemptState,
    AttemptTiming,
    SubmitReason,
)
from examily.services.records import StudentContext

FAST = AttemptTiming(grace_seconds=0, submit_retries=3, submit_backoff_seconds=0)


# ── Helpers ────────────────────────────────────────────────────────────────────


def _user(db: Session, role: RoleEnum) -> User:
    user = User(
        email=f"{role.value}_{uuid.uuid4().hex[:8]}@ex.com",
        hashed_password="x",
        full_name=f"Test {role.value}",
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _exam(db: Session, time_limit: int = 30) -> Exam:
    """Two 2-point multiple-choice questions and a 1-point short answer."""
    teacher = _user(db, RoleEnum.TEACHER)
    exam = Exam(
        title="Lifecycle exam",
        description="Exam used by lifecycle tests",
        course_code="LIFE101",
        time_limit=time_limit,
        created_by=teacher.id,
        questions=[
            Question(position=0, question_type=QuestionTypeEnum.MULTIPLE_CHOICE,
                     text="Pick A", options=["A", "B"], correct_answer="0", points=2),
            Question(position=1, question_type=QuestionTypeEnum.MULTIPLE_CHOICE,
                     text="Pick B", options=["A", "B"], correct_answer="1", points=2),
            Question(position=2, question_type=QuestionTypeEnum.SHORT_ANSWER,
                     text="Explain", points=1),
        ],
    )
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


def _student(db: Session) -> StudentContext:
    return StudentContext(id=_user(db, RoleEnum.STUDENT).id)


def _controller(store, student, clock, timing=FAST) -> AttemptController:
    return AttemptController(store, student, clock=clock, timing=timing, sleep=lambda s: None)


def _final_saves(spy) -> list:
    return [c for c in spy.call_args_list if c.args[0].completed]


def _racing_factory(session_factory, before_write: list) -> sessionmaker:
    """Sessions that run ``before_write.pop()`` just ahead of their next write."""

    class RacingSession(Session):
        def _race(self):
            if before_write:
                before_write.pop()()

        def execute(self, statement, *args, **kwargs):
            if getattr(statement, "is_dml", False):
                self._race()
            return super().execute(statement, *args, **kwargs)

        def flush(self, objects=None):
            if self.new or self.dirty:
                self._race()
            super().flush(objects)

    return sessionmaker(
        bind=session_factory.kw["bind"],
        class_=RacingSession,
        autoflush=False,
        expire_on_commit=False,
    )


# ── Initialization ─────────────────────────────────────────────────────────────


class TestLoad:
    def test_fresh_attempt_has_full_time(self, db, clock):
        exam = _exam(db, time_limit=30)
        controller = _controller(SqlAttemptStore(session=db), _student(db), clock)

        attempt = controller.load(exam.id)

        assert controller.state is AttemptState.ACTIVE
        assert controller.remaining == 30 * 60
        assert attempt.completed is False
        assert attempt.answers == {}
        assert attempt.started_at == clock.now()

    def test_missing_exam_raises_not_found(self, db, clock):
        controller = _controller(SqlAttemptStore(session=db), _student(db), clock)
        with pytest.raises(NotFoundError):
            controller.load(uuid.uuid4())

    def test_resume_returns_same_attempt(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)

        first = _controller(store, student, clock).load(exam.id)
        clock.advance(minutes=5)
        second_controller = _controller(store, student, clock)
        second = second_controller.load(exam.id)

        assert first.id == second.id
        assert len(store.list_attempts(student_id=student.id)) == 1
        assert second_controller.remaining == 25 * 60

    def test_resume_restores_saved_answers(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        first = _controller(store, student, clock)
        first.load(exam.id)
        first.set_answer("1")
        first.autosave()

        again = _controller(store, student, clock)
        again.load(exam.id)
        assert again.sheet.snapshot() == {str(exam.questions[0].id): "1"}

    def test_resume_after_deadline_clamps_to_zero(self, db, clock):
        exam = _exam(db, time_limit=30)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        _controller(store, student, clock).load(exam.id)

        clock.advance(minutes=45)
        late = _controller(store, student, clock)
        late.load(exam.id)
        assert late.remaining == 0
        assert late.state is AttemptState.ACTIVE

    def test_completed_attempt_loads_read_only(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        first = _controller(store, student, clock)
        first.load(exam.id)
        first.submit()

        again = _controller(store, student, clock)
        again.load(exam.id)
        assert again.state is AttemptState.COMPLETED
        with pytest.raises(AttemptCompletedError):
            again.set_answer("0")

    def test_load_attempt_of_other_student_is_not_found(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        attempt = _controller(store, _student(db), clock).load(exam.id)

        stranger = _controller(store, _student(db), clock)
        with pytest.raises(NotFoundError):
            stranger.load_attempt(attempt.id)


# ── Countdown ──────────────────────────────────────────────────────────────────


class TestCountdown:
    def test_tick_counts_down_with_the_clock(self, db, clock):
        controller = _controller(SqlAttemptStore(session=db), _student(db), clock)
        controller.load(_exam(db, time_limit=10).id)
        clock.advance(seconds=1)
        assert controller.tick() == 599
        clock.advance(seconds=59)
        assert controller.tick() == 540

    def test_expiry_submits_exactly_once(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db, time_limit=30).id)

        clock.advance(minutes=31)
        with patch.object(store, "save_attempt", wraps=store.save_attempt) as spy:
            assert controller.tick() == 0
            assert controller.tick() == 0
            clock.advance(seconds=10)
            assert controller.tick() == 0

        assert len(_final_saves(spy)) == 1
        assert controller.state is AttemptState.COMPLETED
        assert controller.submit_reason is SubmitReason.TIME_UP

    def test_grace_window_delays_auto_submit(self, db, clock):
        timing = AttemptTiming(grace_seconds=5, submit_backoff_seconds=0)
        controller = _controller(SqlAttemptStore(session=db), _student(db), clock, timing)
        controller.load(_exam(db, time_limit=5).id)

        clock.advance(minutes=5)
        controller.tick()
        assert controller.time_up is True
        assert controller.state is AttemptState.ACTIVE

        controller.set_answer("0")  # still allowed during the warning
        clock.advance(seconds=4)
        controller.tick()
        assert controller.state is AttemptState.ACTIVE

        clock.advance(seconds=1)
        controller.tick()
        assert controller.state is AttemptState.COMPLETED
        assert controller.attempt.score == 40

    def test_manual_submit_during_grace_wins(self, db, clock):
        timing = AttemptTiming(grace_seconds=5, submit_backoff_seconds=0)
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock, timing)
        controller.load(_exam(db, time_limit=5).id)

        clock.advance(minutes=5)
        controller.tick()
        controller.submit()
        clock.advance(seconds=10)
        with patch.object(store, "save_attempt") as spy:
            controller.tick()
        spy.assert_not_called()
        assert controller.submit_reason is SubmitReason.MANUAL

    def test_enforce_deadline_uses_absolute_deadline(self, db, clock):
        timing = AttemptTiming(grace_seconds=5, submit_backoff_seconds=0)
        controller = _controller(SqlAttemptStore(session=db), _student(db), clock, timing)
        controller.load(_exam(db, time_limit=5).id)

        clock.advance(minutes=5, seconds=4)
        assert controller.enforce_deadline() is False
        clock.advance(seconds=1)
        assert controller.enforce_deadline() is True
        assert controller.enforce_deadline() is False
        assert controller.state is AttemptState.COMPLETED


# ── Answers, navigation, autosave ─────────────────────────────────────────────


class TestAutosave:
    def test_navigation_triggers_autosave(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        controller = _controller(store, student, clock)
        controller.load(exam.id)

        controller.set_answer("0")
        with patch.object(store, "save_attempt", wraps=store.save_attempt) as spy:
            controller.next_question()
            controller.previous_question()
            controller.go_to_question(2)
        assert spy.call_count == 3

        stored = store.get_attempt(exam.id, student.id)
        assert stored.answers == {str(exam.questions[0].id): "0"}

    def test_autosave_never_completes_or_moves_start(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        controller = _controller(store, student, clock)
        started = controller.load(exam.id).started_at

        clock.advance(minutes=3)
        controller.set_answer("1")
        assert controller.autosave() is True

        stored = store.get_attempt(exam.id, student.id)
        assert stored.completed is False
        assert stored.score is None
        assert stored.started_at == started

    def test_autosave_failure_is_swallowed_and_retried(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db).id)
        controller.set_answer("0")

        with patch.object(store, "save_attempt", side_effect=PersistenceError("db down")):
            assert controller.autosave() is False
        assert controller.autosave() is True

    def test_autosave_after_completion_is_noop(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db).id)
        controller.submit()
        with patch.object(store, "save_attempt") as spy:
            assert controller.autosave() is False
        spy.assert_not_called()

    def test_stale_autosave_cannot_overwrite_submitted_attempt(self, db, clock, session_factory):
        exam = _exam(db)
        student = _student(db)
        before_write = []
        store = SqlAttemptStore(session_factory=_racing_factory(session_factory, before_write))
        controller = _controller(store, student, clock)
        controller.load(exam.id)
        controller.set_answer("0")

        def change_mind_and_submit():
            controller.set_answer("1")
            controller.submit()

        # the submission commits while the autosave of "0" is still in flight
        before_write.append(change_mind_and_submit)
        assert asyncio.run(controller.aautosave()) is False
        assert before_write == []

        q0 = str(exam.questions[0].id)
        stored = SqlAttemptStore(session_factory=session_factory).get_attempt(exam.id, student.id)
        assert stored.completed is True
        assert stored.answers == {q0: "1"}
        assert stored.score == 0
        assert controller.attempt.answers == {q0: "1"}


# ── Submission ────────────────────────────────────────────────────────────────


class TestSubmit:
    def test_submit_scores_and_freezes(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        controller = _controller(store, student, clock)
        controller.load(exam.id)

        controller.set_answer("0")
        controller.next_question()
        controller.set_answer("1")
        clock.advance(minutes=12)
        result = controller.submit()

        assert result.completed is True
        assert result.score == 80
        assert result.submitted_at == clock.now()
        stored = store.get_attempt(exam.id, student.id)
        assert stored.completed is True
        assert stored.score == 80

    def test_submit_is_idempotent(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db).id)
        controller.set_answer("0")
        first = controller.submit()

        clock.advance(minutes=1)
        with patch.object(store, "save_attempt") as spy:
            second = controller.submit()
        spy.assert_not_called()
        assert second.score == first.score
        assert second.submitted_at == first.submitted_at
        assert second.answers == first.answers

    def test_store_refuses_to_modify_completed_attempt(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db).id)
        done = controller.submit()

        tampered = done.copy()
        tampered.score = 100
        with pytest.raises(AttemptCompletedError):
            store.save_attempt(tampered)

    def test_submit_retries_then_succeeds(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db).id)
        real_save = store.save_attempt
        failures = {"left": 2}

        def flaky(record):
            if record.completed and failures["left"]:
                failures["left"] -= 1
                raise PersistenceError("timeout")
            real_save(record)

        with patch.object(store, "save_attempt", side_effect=flaky):
            result = controller.submit()
        assert result.completed is True
        assert controller.state is AttemptState.COMPLETED

    def test_submit_failure_keeps_attempt_active(self, db, clock):
        exam = _exam(db)
        store = SqlAttemptStore(session=db)
        student = _student(db)
        controller = _controller(store, student, clock)
        controller.load(exam.id)
        controller.set_answer("0")

        with patch.object(store, "save_attempt", side_effect=PersistenceError("down")) as spy:
            with pytest.raises(PersistenceError):
                controller.submit()
        # one answer save + three tries at the final write
        assert len(_final_saves(spy)) == 3
        assert controller.state is AttemptState.ACTIVE
        assert controller.attempt.completed is False
        assert store.get_attempt(exam.id, student.id).completed is False

        assert controller.submit().completed is True

    def test_submit_backs_off_exponentially(self, db, clock):
        timing = AttemptTiming(grace_seconds=0, submit_retries=3, submit_backoff_seconds=0.5)
        waits = []
        store = SqlAttemptStore(session=db)
        controller = AttemptController(
            store, _student(db), clock=clock, timing=timing, sleep=waits.append
        )
        controller.load(_exam(db).id)
        with patch.object(store, "save_attempt", side_effect=PersistenceError("down")):
            with pytest.raises(PersistenceError):
                controller.submit()
        assert waits == [0.5, 1.0]

    def test_asubmit_scores_and_freezes(self, db, clock, session_factory):
        exam = _exam(db)
        student = _student(db)
        store = SqlAttemptStore(session_factory=session_factory)
        controller = _controller(store, student, clock)
        controller.load(exam.id)
        controller.set_answer("0")

        result = asyncio.run(controller.asubmit())
        assert result.completed is True
        assert result.score == 40
        assert controller.state is AttemptState.COMPLETED

        clock.advance(minutes=1)
        again = asyncio.run(controller.asubmit())
        assert again.submitted_at == result.submitted_at
        assert store.get_attempt(exam.id, student.id).score == 40


# ── Scheduled tasks ───────────────────────────────────────────────────────────


class TestRunning:
    def test_tasks_are_cancelled_on_exit(self, db, clock, session_factory):
        exam = _exam(db)
        student = _student(db)
        store = SqlAttemptStore(session_factory=session_factory)
        timing = AttemptTiming(tick_seconds=0.01, autosave_seconds=0.1, grace_seconds=0)
        controller = _controller(store, student, clock, timing)
        controller.load(exam.id)

        async def scenario():
            async with controller.running():
                assert controller.tasks_running
                controller.set_answer("1")
                await asyncio.sleep(0.15)
            return controller.tasks_running

        assert asyncio.run(scenario()) is False
        stored = store.get_attempt(exam.id, student.id)
        assert stored.answers == {str(exam.questions[0].id): "1"}
        assert stored.completed is False

    def test_countdown_task_auto_submits(self, db, clock, session_factory):
        exam = _exam(db, time_limit=5)
        student = _student(db)
        store = SqlAttemptStore(session_factory=session_factory)
        timing = AttemptTiming(tick_seconds=0.01, autosave_seconds=60, grace_seconds=0)
        controller = _controller(store, student, clock, timing)
        controller.load(exam.id)

        async def scenario():
            async with controller.running():
                controller.set_answer("0")
                clock.advance(minutes=6)
                for _ in range(100):
                    if controller.state is AttemptState.COMPLETED:
                        break
                    await asyncio.sleep(0.01)

        asyncio.run(scenario())
        assert controller.state is AttemptState.COMPLETED
        assert controller.submit_reason is SubmitReason.TIME_UP
        stored = store.get_attempt(exam.id, student.id)
        assert stored.completed is True
        assert stored.score == 40

    def test_completed_attempt_starts_no_tasks(self, db, clock):
        store = SqlAttemptStore(session=db)
        controller = _controller(store, _student(db), clock)
        controller.load(_exam(db).id)
        controller.submit()

        async def scenario():
            async with controller.running():
                return controller.tasks_running

        assert asyncio.run(scenario()) is False

    def test_countdown_keeps_ticking_while_auto_submit_fails(self, db, clock, session_factory):
        exam = _exam(db, time_limit=5)
        student = _student(db)
        store = SqlAttemptStore(session_factory=session_factory)
        timing = AttemptTiming(
            tick_seconds=0.01,
            autosave_seconds=60,
            grace_seconds=0,
            submit_retries=3,
            submit_backoff_seconds=0.1,
            resubmit_cooldown_seconds=0.2,
        )
        controller = _controller(store, student, clock, timing)
        controller.load(exam.id)
        real_save = store.save_attempt

        def slow_outage(record):
            if not record.completed:
                return real_save(record)
            time.sleep(0.1)
            raise PersistenceError("database unreachable")

        async def scenario():
            loop = asyncio.get_running_loop()
            gaps = []
            async with controller.running():
                clock.advance(minutes=6)
                last = loop.time()
                for _ in range(80):
                    await asyncio.sleep(0.01)
                    now = loop.time()
                    gaps.append(now - last)
                    last = now
            return max(gaps)

        with patch.object(store, "save_attempt", side_effect=slow_outage) as spy:
            with patch.object(controller, "_observe", wraps=controller._observe) as ticks:
                worst_gap = asyncio.run(scenario())

        assert worst_gap < 0.2
        assert ticks.call_count >= 20
        assert controller.time_up is True
        assert controller.state is AttemptState.ACTIVE
        # one failed submission of three tries, at most one more after the cooldown
        assert len(_final_saves(spy)) in (3, 6)
        assert store.get_attempt(exam.id, student.id).completed is False
