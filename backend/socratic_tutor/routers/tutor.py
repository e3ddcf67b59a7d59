from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..controller import MIN_ANSWER_LENGTH, DialogueController, TurnOutcome
from ..db import get_db
from ..dependencies import get_oracle, get_owned_session
from ..errors import TutorError, ok
from ..models import LearningSession, Message, Progress, User
from ..oracle import TutorOracle
from ..progress import compute_thinking_score, compute_time_spent
from ..registry import LiveSession, controllers
from ..session_state import SessionState
from ..settings import settings
from .auth import get_current_user
from .sessions import append_message


router = APIRouter(prefix="/sessions/{session_id}/tutor", tags=["tutor"])

logger = logging.getLogger(__name__)


class AnswerRequest(BaseModel):
	answer: str = ""


def _new_controller(oracle: TutorOracle, state: SessionState | None = None) -> DialogueController:
	return DialogueController(oracle, advance_delay=settings.advance_delay_seconds, state=state)


def _restore(row: LearningSession, oracle: TutorOracle) -> LiveSession:
	state = SessionState.restore(
		difficulty=row.difficulty,
		question_number=row.current_question,
		messages=[(m.type, m.content) for m in row.messages],
		started_at=row.progress.started_at if row.progress is not None else row.created_at,
	)
	if row.progress is not None:
		state.questions_asked = row.progress.questions_asked
		state.correct_answers = row.progress.correct_answers
		state.hints_used = row.progress.hints_used
	controller = DialogueController.resume(
		oracle, state, row.pdf.extracted_text, row.pdf.topics, advance_delay=settings.advance_delay_seconds,
	)
	logger.info("Restored session %s at question %d (%s)", row.id, state.question_number, controller.phase.value)
	return controllers.put(row.id, controller, persisted=len(state.messages))


def _live(row: LearningSession, oracle: TutorOracle) -> LiveSession:
	return controllers.get(row.id) or _restore(row, oracle)


def _clear_history(db: Session, row: LearningSession) -> None:
	db.query(Message).filter(Message.session_id == row.id).delete(synchronize_session=False)
	db.expire(row, ["messages"])


def _sync(db: Session, row: LearningSession, live: LiveSession) -> None:
	"""Write new display messages, the session cursor and progress counters."""
	if controllers.get(row.id) is not live:
		# replaced by a newer run (or evicted) while this turn was in flight
		return
	state = live.controller.state
	for message in state.messages[live.persisted:]:
		if message.persisted:
			append_message(db, row, message.type, message.content)
	live.persisted = len(state.messages)

	row.difficulty = int(state.difficulty)
	row.current_question = state.question_number
	progress = row.progress
	if progress is None:
		progress = Progress(session_id=row.id)
		row.progress = progress
	progress.questions_asked = state.questions_asked
	progress.correct_answers = state.correct_answers
	progress.hints_used = state.hints_used
	# statistics recompute the score from started_at..updated_at, so both are written here
	now = datetime.utcnow()
	if state.started_at is None:
		state.started_at = now
	progress.started_at = state.started_at
	progress.updated_at = now
	if state.questions_asked > 0:
		progress.thinking_score = compute_thinking_score(
			state.correct_answers, state.hints_used, compute_time_spent(state.started_at, now), state.questions_asked,
		)
	else:
		progress.thinking_score = None
	db.commit()


def _begin_run(db: Session, row: LearningSession, controller: DialogueController) -> LiveSession:
	"""Replace the stored run with the one the new controller just opened."""
	controllers.forget(row.id)
	_clear_history(db, row)
	live = controllers.put(row.id, controller)
	_sync(db, row, live)
	return live


def _serialize(result: Any) -> Any:
	if isinstance(result, TurnOutcome):
		return result.to_dict()
	return result


async def _run_turn(
	db: Session,
	row: LearningSession,
	live: LiveSession,
	op: Callable[[DialogueController], Awaitable[Any]],
) -> Any:
	controller = live.controller
	async with controller.lock:
		try:
			return await op(controller)
		finally:
			_sync(db, row, live)


def _payload(live: LiveSession, result: Any = None) -> dict:
	return {"result": _serialize(result), "state": live.controller.to_dict()}


@router.post("/start")
async def start(
	session_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	controller = _new_controller(oracle)
	pdf = row.pdf
	try:
		intro = await controller.start_session(pdf.extracted_text, pdf.topics)
	except TutorError:
		# without an intro the previous run stays as it was
		if controller.started:
			_begin_run(db, row, controller)
		raise
	live = _begin_run(db, row, controller)
	return ok(_payload(live, intro), "Session started")


@router.post("/question")
async def next_question(
	session_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	live = _live(row, oracle)
	question = await _run_turn(db, row, live, lambda c: c.request_next_question())
	return ok(_payload(live, question))


@router.post("/answer")
async def answer(
	session_id: str,
	req: AnswerRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	live = _live(row, oracle)
	outcome = await _run_turn(db, row, live, lambda c: c.submit_answer(req.answer))
	message = None
	if outcome is None:
		if len(req.answer.strip()) < MIN_ANSWER_LENGTH:
			message = f"Answers need at least {MIN_ANSWER_LENGTH} characters"
		else:
			message = "No question is waiting for an answer"
	return ok(_payload(live, outcome), message)


@router.post("/hint")
async def hint(
	session_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	live = _live(row, oracle)
	text = await _run_turn(db, row, live, lambda c: c.request_hint())
	return ok(_payload(live, text), None if text is not None else "No hint available")


@router.post("/retry")
async def retry(
	session_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	live = _live(row, oracle)
	if not live.controller.can_retry:
		return ok(_payload(live), "Nothing to retry")
	result = await _run_turn(db, row, live, lambda c: c.retry())
	return ok(_payload(live, result))


@router.post("/reset")
async def reset(
	session_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	live = _live(row, oracle)
	# outside the lock, so a turn waiting out the advance pause is cut short
	live.controller.reset_session()
	async with live.controller.lock:
		_clear_history(db, row)
		live.persisted = 0
		_sync(db, row, live)
	return ok(_payload(live), "Session reset")


@router.get("/state")
async def state(
	session_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
):
	row = get_owned_session(db, user, session_id)
	live = _live(row, oracle)
	return ok(_payload(live))
