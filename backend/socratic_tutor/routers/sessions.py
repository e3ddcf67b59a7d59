from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies import get_owned_pdf, get_owned_session, paginate, pagination_meta
from ..difficulty import Difficulty
from ..errors import ValidationError, ok
from ..registry import controllers
from ..models import MESSAGE_TYPES, LearningSession, Message, Progress, User
from .auth import get_current_user


router = APIRouter(prefix="/sessions", tags=["sessions"])

logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
	pdf_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("pdfId", "pdf_id"))
	difficulty: Optional[int] = None


class ProgressUpdate(BaseModel):
	questions_asked: Optional[int] = Field(default=None, validation_alias=AliasChoices("questionsAsked", "questions_asked"))
	correct_answers: Optional[int] = Field(default=None, validation_alias=AliasChoices("correctAnswers", "correct_answers"))
	hints_used: Optional[int] = Field(default=None, validation_alias=AliasChoices("hintsUsed", "hints_used"))
	thinking_score: Optional[float] = Field(default=None, validation_alias=AliasChoices("thinkingScore", "thinking_score"))


class UpdateSessionRequest(BaseModel):
	difficulty: Optional[int] = None
	current_question: Optional[int] = Field(default=None, validation_alias=AliasChoices("currentQuestion", "current_question"))
	progress: Optional[ProgressUpdate] = None


class MessageRequest(BaseModel):
	type: str = ""
	content: str = ""


def progress_to_dict(progress: Optional[Progress]) -> Optional[dict]:
	if progress is None:
		return None
	return {
		"questionsAsked": progress.questions_asked,
		"correctAnswers": progress.correct_answers,
		"hintsUsed": progress.hints_used,
		"thinkingScore": progress.thinking_score,
	}


def message_to_dict(message: Message) -> dict:
	return {
		"id": message.id,
		"type": message.type,
		"content": message.content,
		"createdAt": message.created_at.isoformat() if message.created_at else None,
	}


def session_to_dict(row: LearningSession, *, with_messages: bool = False) -> dict:
	data = {
		"id": row.id,
		"pdfId": row.pdf_id,
		"difficulty": row.difficulty,
		"currentQuestion": row.current_question,
		"createdAt": row.created_at.isoformat() if row.created_at else None,
		"updatedAt": row.updated_at.isoformat() if row.updated_at else None,
		"pdf": {"id": row.pdf.id, "fileName": row.pdf.file_name, "topics": row.pdf.topics, "concepts": row.pdf.concepts},
		"progress": progress_to_dict(row.progress),
	}
	if with_messages:
		data["messages"] = [message_to_dict(m) for m in row.messages]
	else:
		data["messageCount"] = len(row.messages)
	return data


def append_message(db: Session, row: LearningSession, message_type: str, content: str) -> Message:
	"""Add a message after the session's last one; the caller commits."""
	position = db.query(func.coalesce(func.max(Message.position), -1)).filter(Message.session_id == row.id).scalar() + 1
	message = Message(session_id=row.id, type=message_type, content=content, position=position)
	db.add(message)
	db.flush()
	return message


@router.post("", status_code=201)
async def create_session(req: CreateSessionRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.pdf_id:
		raise ValidationError("pdfId is required")
	difficulty = Difficulty.parse(req.difficulty) if req.difficulty is not None else Difficulty.BASIC
	pdf = get_owned_pdf(db, user, req.pdf_id)
	row = LearningSession(user_id=user.id, pdf_id=pdf.id, difficulty=int(difficulty), current_question=1)
	row.progress = Progress(questions_asked=0, correct_answers=0, hints_used=0, thinking_score=None)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("User %s created session %s for %s", user.id, row.id, pdf.id)
	return ok({"session": session_to_dict(row)}, "Session created successfully")


@router.get("")
async def list_sessions(
	page: int = 1,
	limit: int = 10,
	pdfId: Optional[str] = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	offset, limit = paginate(page, limit)
	query = db.query(LearningSession).filter(LearningSession.user_id == user.id)
	if pdfId:
		query = query.filter(LearningSession.pdf_id == pdfId)
	total = query.count()
	rows = query.order_by(LearningSession.updated_at.desc()).offset(offset).limit(limit).all()
	return ok({"sessions": [session_to_dict(r) for r in rows], "pagination": pagination_meta(page, limit, total)})


@router.get("/{session_id}")
async def get_session(session_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_session(db, user, session_id)
	return ok({"session": session_to_dict(row, with_messages=True)})


@router.put("/{session_id}")
async def update_session(
	session_id: str,
	req: UpdateSessionRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	row = get_owned_session(db, user, session_id)
	if req.difficulty is not None:
		row.difficulty = int(Difficulty.parse(req.difficulty))
	if req.current_question is not None:
		if req.current_question < 1:
			raise ValidationError("Current question must be positive")
		row.current_question = req.current_question
	if req.progress is not None:
		progress = row.progress or Progress(session_id=row.id)
		for field_name in ("questions_asked", "correct_answers", "hints_used", "thinking_score"):
			value = getattr(req.progress, field_name)
			if value is None:
				continue
			if value < 0:
				raise ValidationError(f"{field_name} must not be negative")
			setattr(progress, field_name, value)
		row.progress = progress
	db.commit()
	db.refresh(row)
	# a live tutor controller no longer matches the stored session
	controllers.forget(row.id)
	return ok({"session": session_to_dict(row)}, "Session updated successfully")


@router.post("/{session_id}/messages", status_code=201)
async def add_message(
	session_id: str,
	req: MessageRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if not req.type or not req.content:
		raise ValidationError("type and content are required")
	if req.type not in MESSAGE_TYPES:
		raise ValidationError(f"Invalid message type. Must be one of: {', '.join(MESSAGE_TYPES)}")
	row = get_owned_session(db, user, session_id)
	message = append_message(db, row, req.type, req.content)
	db.commit()
	controllers.forget(row.id)
	return ok({"message": message_to_dict(message)}, "Message saved successfully")
