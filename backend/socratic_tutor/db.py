from __future__ import annotations
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./socratic_tutor.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


if DATABASE_URL.startswith("sqlite"):
	# SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
	@event.listens_for(engine, "connect")
	def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
		cursor = dbapi_connection.cursor()
		cursor.execute("PRAGMA foreign_keys=ON")
		cursor.close()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def init_db() -> None:
	# Import models so they register on Base.metadata before create_all
	from . import models  # noqa: F401
	Base.metadata.create_all(bind=engine)
