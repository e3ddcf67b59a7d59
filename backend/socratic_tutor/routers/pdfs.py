from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies import get_oracle, get_owned_pdf, get_storage, paginate, pagination_meta
from ..errors import ExtractionError, ok
from ..models import PDFDocument, User
from ..oracle import PDF_MIME_TYPE, TutorOracle
from ..registry import controllers
from ..settings import settings
from ..storage import FileStorage
from .auth import get_current_user


router = APIRouter(prefix="/pdfs", tags=["pdfs"])

logger = logging.getLogger(__name__)


class UpdatePDFRequest(BaseModel):
	file_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("fileName", "file_name"))


def pdf_to_dict(pdf: PDFDocument, *, full: bool = False) -> dict:
	data = {
		"id": pdf.id,
		"fileName": pdf.file_name,
		"fileSize": pdf.file_size,
		"fileUrl": pdf.file_url,
		"topics": pdf.topics,
		"concepts": pdf.concepts,
		"createdAt": pdf.created_at.isoformat() if pdf.created_at else None,
		"updatedAt": pdf.updated_at.isoformat() if pdf.updated_at else None,
	}
	if full:
		data["extractedText"] = pdf.extracted_text
	return data


def _looks_like_pdf(upload: UploadFile, data: bytes) -> bool:
	name_ok = (upload.filename or "").lower().endswith(".pdf")
	type_ok = (upload.content_type or "") in (PDF_MIME_TYPE, "application/octet-stream", "")
	return name_ok and type_ok and data.startswith(b"%PDF")


@router.post("/upload", status_code=201)
async def upload_pdf(
	file: UploadFile = File(...),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	oracle: TutorOracle = Depends(get_oracle),
	storage: FileStorage = Depends(get_storage),
):
	data = await file.read()
	if not data:
		raise HTTPException(status_code=400, detail="No PDF file uploaded")
	if len(data) > settings.max_upload_bytes:
		raise HTTPException(status_code=413, detail=f"File too large. Maximum size is {settings.max_upload_bytes // (1024 * 1024)}MB")
	if not _looks_like_pdf(file, data):
		raise HTTPException(status_code=400, detail="Only PDF files are allowed")

	text = await oracle.extract_text(data, PDF_MIME_TYPE)
	if not text.strip():
		raise ExtractionError("No text could be extracted from the PDF")
	analysis = await oracle.analyze_content(text)

	file_name = file.filename or "document.pdf"
	key = storage.save(data, file_name)
	pdf = PDFDocument(
		user_id=user.id,
		file_name=file_name,
		file_size=len(data),
		file_url=key,
		extracted_text=text,
	)
	pdf.topics = analysis.topics
	pdf.concepts = analysis.concepts
	try:
		db.add(pdf)
		db.commit()
	except Exception:
		db.rollback()
		storage.delete(key)
		raise
	db.refresh(pdf)
	logger.info("User %s uploaded %s (%d topics)", user.id, pdf.id, len(analysis.topics))
	return ok({"pdf": pdf_to_dict(pdf)}, "PDF uploaded and processed successfully")


@router.get("")
async def list_pdfs(
	page: int = 1,
	limit: int = 10,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	offset, limit = paginate(page, limit)
	query = db.query(PDFDocument).filter(PDFDocument.user_id == user.id)
	total = query.count()
	rows = query.order_by(PDFDocument.created_at.desc()).offset(offset).limit(limit).all()
	return ok({"pdfs": [pdf_to_dict(p) for p in rows], "pagination": pagination_meta(page, limit, total)})


@router.get("/{pdf_id}")
async def get_pdf(pdf_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	pdf = get_owned_pdf(db, user, pdf_id)
	return ok({"pdf": pdf_to_dict(pdf, full=True)})


@router.put("/{pdf_id}")
async def update_pdf(
	pdf_id: str,
	req: UpdatePDFRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if req.file_name is None:
		raise HTTPException(status_code=400, detail="No fields to update")
	if not req.file_name.strip():
		raise HTTPException(status_code=400, detail="Invalid fileName")
	pdf = get_owned_pdf(db, user, pdf_id)
	pdf.file_name = req.file_name.strip()
	db.commit()
	db.refresh(pdf)
	return ok({"pdf": pdf_to_dict(pdf)}, "PDF updated successfully")


@router.delete("/{pdf_id}")
async def delete_pdf(
	pdf_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: FileStorage = Depends(get_storage),
):
	pdf = get_owned_pdf(db, user, pdf_id)
	session_ids = [s.id for s in pdf.sessions]
	storage.delete(pdf.file_url)
	db.delete(pdf)
	db.commit()
	controllers.forget_many(session_ids)
	logger.info("User %s deleted %s", user.id, pdf_id)
	return ok(message="PDF deleted successfully")
