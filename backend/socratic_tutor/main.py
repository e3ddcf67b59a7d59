import logging
from pathlib import Path

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .db import init_db
from .errors import (
	TutorError,
	http_exception_handler,
	ok,
	tutor_exception_handler,
	unhandled_exception_handler,
	validation_exception_handler,
)
from .logging_config import configure_logging
from .registry import controllers
from .settings import settings
from .routers import auth
from .routers import pdfs
from .routers import sessions
from .routers import tutor
from .routers import progress

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Socratic Tutor API")

app.add_middleware(
	CORSMiddleware,
	allow_origins=[settings.frontend_url],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.add_exception_handler(TutorError, tutor_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(auth.router, prefix="/api")
app.include_router(pdfs.router, prefix="/api")
app.include_router(sessions.router, prefix="/api")
app.include_router(tutor.router, prefix="/api")
app.include_router(progress.router, prefix="/api")


@app.get("/health")
def health():
	return ok({"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}, "Server is running")


@app.get("/")
def root():
	return ok(
		{
			"name": "Socratic Tutor API",
			"endpoints": ["/api/auth", "/api/pdfs", "/api/sessions", "/api/progress", "/health"],
		}
	)


@app.on_event("startup")
async def startup_event():
	init_db()
	Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
	logger.info("Socratic Tutor API ready (model=%s, provider=%s)", settings.gemini_model, settings.gemini_provider)


@app.on_event("shutdown")
async def shutdown_event():
	controllers.clear()
	oracle = getattr(app.state, "oracle", None)
	if oracle is not None:
		await oracle.aclose()
