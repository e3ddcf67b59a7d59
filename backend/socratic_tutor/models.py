from __future__ import annotations
import json
import uuid
from datetime import datetime
from typing import List

from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, Float, ForeignKey
from sqlalchemy.orm import relationship
from .db import Base


MESSAGE_TYPES = ("ai-question", "user-answer", "ai-explanation", "intro")


def _new_id() -> str:
	return uuid.uuid4().hex


class User(Base):
	__tablename__ = "users"
	id = Column(String(32), primary_key=True, default=_new_id)
	email = Column(String(256), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=False)
	name = Column(String(100), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	pdfs = relationship("PDFDocument", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
	sessions = relationship("LearningSession", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)


class PDFDocument(Base):
	__tablename__ = "pdfs"
	id = Column(String(32), primary_key=True, default=_new_id)
	user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	file_name = Column(String(256), nullable=False)
	file_size = Column(Integer, nullable=False, default=0)
	file_url = Column(String(512), nullable=False)
	extracted_text = Column(Text, nullable=False)
	topics_json = Column(Text, nullable=False, default="[]")  # JSON array of strings
	concepts_json = Column(Text, nullable=False, default="[]")  # JSON array of strings
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	user = relationship("User", back_populates="pdfs")
	sessions = relationship("LearningSession", back_populates="pdf", cascade="all, delete-orphan", passive_deletes=True)

	@property
	def topics(self) -> List[str]:
		return json.loads(self.topics_json or "[]")

	@topics.setter
	def topics(self, value: List[str]) -> None:
		self.topics_json = json.dumps(list(value or []))

	@property
	def concepts(self) -> List[str]:
		return json.loads(self.concepts_json or "[]")

	@concepts.setter
	def concepts(self, value: List[str]) -> None:
		self.concepts_json = json.dumps(list(value or []))


class LearningSession(Base):
	__tablename__ = "sessions"
	id = Column(String(32), primary_key=True, default=_new_id)
	user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	pdf_id = Column(String(32), ForeignKey("pdfs.id", ondelete="CASCADE"), index=True, nullable=False)
	difficulty = Column(Integer, default=1, nullable=False)
	current_question = Column(Integer, default=1, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	user = relationship("User", back_populates="sessions")
	pdf = relationship("PDFDocument", back_populates="sessions")
	messages = relationship(
		"Message",
		back_populates="session",
		cascade="all, delete-orphan",
		passive_deletes=True,
		order_by="Message.position",
	)
	progress = relationship(
		"Progress",
		back_populates="session",
		uselist=False,
		cascade="all, delete-orphan",
		passive_deletes=True,
	)


class Message(Base):
	__tablename__ = "messages"
	id = Column(String(32), primary_key=True, default=_new_id)
	session_id = Column(String(32), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
	type = Column(String(32), nullable=False)  # one of MESSAGE_TYPES
	content = Column(Text, nullable=False)
	position = Column(Integer, nullable=False, default=0)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	session = relationship("LearningSession", back_populates="messages")


class Progress(Base):
	__tablename__ = "progress"
	id = Column(String(32), primary_key=True, default=_new_id)
	session_id = Column(String(32), ForeignKey("sessions.id", ondelete="CASCADE"), unique=True, nullable=False)
	questions_asked = Column(Integer, default=0, nullable=False)
	correct_answers = Column(Integer, default=0, nullable=False)
	hints_used = Column(Integer, default=0, nullable=False)
	thinking_score = Column(Float, nullable=True)
	# start of the current tutoring run; reset by tutor start/reset
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	session = relationship("LearningSession", back_populates="progress")


class LoginAttempt(Base):
	__tablename__ = "login_attempts"
	id = Column(Integer, primary_key=True, autoincrement=True)
	email = Column(String(256), index=True, nullable=False)
	ip_address = Column(String(64), nullable=True)
	success = Column(Boolean, default=False, nullable=False)
	attempted_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
