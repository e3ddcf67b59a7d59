from __future__ import annotations
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies import get_owned_pdf
from ..errors import ok
from ..models import LearningSession, Message, PDFDocument, User
from ..progress import SessionSummary, summarize_sessions
from .auth import get_current_user


router = APIRouter(prefix="/progress", tags=["progress"])

ACTIVE_WINDOW = timedelta(days=7)


def _summary(row: LearningSession) -> SessionSummary:
	progress = row.progress
	if progress is None:
		return SessionSummary.build(row.id, 0, 0, 0, row.created_at, row.updated_at)
	# same clock the tutor uses when it stores thinking_score
	return SessionSummary.build(
		row.id,
		progress.questions_asked,
		progress.correct_answers,
		progress.hints_used,
		progress.started_at,
		progress.updated_at,
	)


@router.get("/stats")
async def overall_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = db.query(LearningSession).filter(LearningSession.user_id == user.id).all()
	stats = summarize_sessions(_summary(r) for r in rows if r.progress is not None)
	since = datetime.utcnow() - ACTIVE_WINDOW
	active = (
		db.query(LearningSession.id)
		.join(Message, Message.session_id == LearningSession.id)
		.filter(LearningSession.user_id == user.id, Message.created_at >= since)
		.distinct()
		.count()
	)
	data = stats.to_dict()
	data.update(
		{
			"totalPDFs": db.query(PDFDocument).filter(PDFDocument.user_id == user.id).count(),
			"totalSessions": len(rows),
			"activeSessions": active,
		}
	)
	return ok({"stats": data})


@router.get("/pdfs/{pdf_id}")
async def pdf_progress(pdf_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	pdf = get_owned_pdf(db, user, pdf_id)
	rows = (
		db.query(LearningSession)
		.filter(LearningSession.user_id == user.id, LearningSession.pdf_id == pdf.id)
		.order_by(LearningSession.created_at.desc())
		.all()
	)
	summaries = [_summary(r) for r in rows]
	sessions = []
	for row, summary in zip(rows, summaries):
		item = summary.to_dict()
		item.update(
			{
				"difficulty": row.difficulty,
				"currentQuestion": row.current_question,
				"createdAt": row.created_at.isoformat(),
				"updatedAt": row.updated_at.isoformat(),
				"messageCount": len(row.messages),
			}
		)
		sessions.append(item)
	return ok(
		{
			"pdf": {"id": pdf.id, "fileName": pdf.file_name},
			"statistics": summarize_sessions(summaries).to_dict(),
			"sessions": sessions,
		}
	)
