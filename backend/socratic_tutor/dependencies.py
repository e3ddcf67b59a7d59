from __future__ import annotations
from typing import Optional

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from .gemini_client import GeminiClient
from .models import LearningSession, PDFDocument, User
from .oracle import GeminiTutorOracle, TutorOracle
from .storage import FileStorage


def get_oracle(request: Request) -> TutorOracle:
	"""One Gemini-backed oracle per app, created on first use and closed at shutdown."""
	oracle: Optional[TutorOracle] = getattr(request.app.state, "oracle", None)
	if oracle is None:
		oracle = GeminiTutorOracle(GeminiClient())
		request.app.state.oracle = oracle
	return oracle


def get_storage() -> FileStorage:
	return FileStorage()


def get_owned_pdf(db: Session, user: User, pdf_id: str) -> PDFDocument:
	pdf = db.query(PDFDocument).filter(PDFDocument.id == pdf_id, PDFDocument.user_id == user.id).first()
	if pdf is None:
		raise HTTPException(status_code=404, detail="PDF not found")
	return pdf


def get_owned_session(db: Session, user: User, session_id: str) -> LearningSession:
	row = db.query(LearningSession).filter(LearningSession.id == session_id, LearningSession.user_id == user.id).first()
	if row is None:
		raise HTTPException(status_code=404, detail="Session not found")
	return row


def paginate(page: int, limit: int) -> tuple[int, int]:
	if page < 1:
		raise HTTPException(status_code=400, detail="page must be a positive integer")
	if not 1 <= limit <= 100:
		raise HTTPException(status_code=400, detail="limit must be between 1 and 100")
	return (page - 1) * limit, limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
	pages = (total + limit - 1) // limit if total else 0
	return {"page": page, "limit": limit, "total": total, "totalPages": pages}
