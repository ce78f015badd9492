"""Live exam-taking session over a WebSocket.

Connect to ``/api/attempts/ws/{exam_id}?token=<jwt>``.  While the attempt is
active the server pushes a ``status`` message every tick and after every
client message; it runs the controller's countdown and autosave tasks for
as long as the socket is open.

Client messages::

    {"action": "answer", "value": "1"}              current question
    {"action": "answer", "question_id": "…", "value": ["0", "2"]}
    {"action": "next"} / {"action": "previous"} / {"action": "goto", "index": 3}
    {"action": "save"}
    {"action": "submit"}

Once the attempt completes (manual submit or time up) the server sends a
``result`` message and closes the socket.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from examily.api.deps import (
    get_clock,
    get_store_session_factory,
    student_context,
    user_from_token,
)
from examily.db.models import RoleEnum
from examily.schemas.attempt import AttemptRead
from examily.services.attempt_store import SqlAttemptStore
from examily.services.clock import Clock
from examily.services.errors import ExamilyError, NotFoundError, PersistenceError
from examily.services.lifecycle import AttemptController, AttemptState

logger = logging.getLogger(__name__)
router = APIRouter()


def _status_message(controller: AttemptController) -> dict:
    return {
        "type": "status",
        "attempt_id": str(controller.attempt.id),
        "state": controller.state.value,
        "remaining": controller.remaining,
        "time_up": controller.time_up,
        "current_index": controller.sheet.current_index,
        "question_count": len(controller.sheet),
    }


def _result_message(controller: AttemptController) -> dict:
    return {
        "type": "result",
        "reason": controller.submit_reason.value if controller.submit_reason else None,
        "attempt": AttemptRead.model_validate(controller.attempt).model_dump(mode="json"),
    }


async def _handle(controller: AttemptController, message: dict) -> None:
    # the countdown shares this loop; store writes go through worker threads
    action = message.get("action")
    if action == "answer":
        question_id = message.get("question_id")
        if question_id is None:
            controller.set_answer(message.get("value", ""))
        else:
            controller.set_answer_for(str(question_id), message.get("value", ""))
    elif action == "next":
        await controller.aautosave()
        controller.next_question(autosave=False)
    elif action == "previous":
        await controller.aautosave()
        controller.previous_question(autosave=False)
    elif action == "goto":
        index = int(message.get("index", 0))
        await controller.aautosave()
        controller.go_to_question(index, autosave=False)
    elif action == "save":
        await controller.aautosave()
    elif action == "submit":
        await controller.asubmit()
    else:
        raise ValueError(f"Unknown action: {action!r}")


@router.websocket("/ws/{exam_id}")
async def attempt_session(
    websocket: WebSocket,
    exam_id: uuid.UUID,
    token: str = Query(...),
    session_factory=Depends(get_store_session_factory),
    clock: Clock = Depends(get_clock),
):
    with session_factory() as db:
        user = user_from_token(token, db)
        student = student_context(user) if user is not None else None
        is_student = user is not None and user.role == RoleEnum.STUDENT
    if not is_student:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    store = SqlAttemptStore(session_factory=session_factory)
    controller = AttemptController(store, student, clock=clock)
    try:
        controller.load(exam_id)
    except NotFoundError:
        await websocket.send_json({"type": "error", "detail": "Exam not found"})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        async with controller.running():
            while controller.state is not AttemptState.COMPLETED:
                await websocket.send_json(_status_message(controller))
                try:
                    message = await asyncio.wait_for(
                        websocket.receive_json(), timeout=controller.timing.tick_seconds
                    )
                except asyncio.TimeoutError:
                    continue
                try:
                    await _handle(controller, message)
                except PersistenceError:
                    await websocket.send_json(
                        {"type": "error", "detail": "Could not submit, please try again"}
                    )
                except (ExamilyError, RuntimeError, ValueError, IndexError, TypeError) as exc:
                    await websocket.send_json({"type": "error", "detail": str(exc)})
        await websocket.send_json(_result_message(controller))
        await websocket.close()
    except WebSocketDisconnect:
        # navigating away: keep what was typed, timers already cancelled
        await controller.aautosave()
        logger.info("Student %s left attempt %s", student.id, controller.attempt.id)
