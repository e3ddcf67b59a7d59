from __future__ import annotations
import logging
from typing import Any, Optional

import httpx
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


_RATE_LIMIT_MARKERS = ("rate limit", "ratelimit", "quota", "resource exhausted", "resource_exhausted", "429")


class TutorError(Exception):
	"""Base class for every failure the tutoring core surfaces to callers."""

	status_code = 500
	# envelope "error" field; the class name when unset
	error_code: Optional[str] = None

	def __init__(self, message: str, *, retry_later: bool = False) -> None:
		super().__init__(message)
		self.message = message
		self.retry_later = retry_later


class ValidationError(TutorError):
	status_code = 400


class RateLimitError(TutorError):
	"""Too many failed sign-in attempts; the client has to wait out the lockout."""

	status_code = 429
	error_code = "RATE_LIMIT_EXCEEDED"


class OracleError(TutorError):
	"""Generic failure talking to the generative model (transport, auth, bad input)."""

	status_code = 502


class ExtractionError(OracleError):
	pass


class AnalysisError(OracleError):
	pass


class GenerationError(OracleError):
	pass


class EvaluationError(OracleError):
	pass


class HintError(OracleError):
	pass


def is_rate_limited(exc: BaseException) -> bool:
	"""True when the failure is a quota/rate-limit condition (remedy: wait, then retry)."""
	if isinstance(exc, TutorError) and exc.retry_later:
		return True
	if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
		return True
	text = str(exc).lower()
	return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def wrap_oracle_error(error_cls: type[OracleError], exc: BaseException, context: str) -> TutorError:
	"""Re-type an arbitrary oracle failure, keeping its message and rate-limit flag."""
	if isinstance(exc, error_cls) or isinstance(exc, ValidationError):
		return exc
	return error_cls(f"{context}: {exc}", retry_later=is_rate_limited(exc))


# ---- HTTP envelope: {success, message?, data?, error?} ----

def ok(data: Any = None, message: Optional[str] = None) -> dict:
	payload: dict = {"success": True}
	if message:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	return payload


def error_response(*, status_code: int, message: str, error: Optional[str] = None, details: Any = None) -> JSONResponse:
	payload: dict = {"success": False, "message": message}
	if error:
		payload["error"] = error
	if details is not None:
		payload["details"] = details
	return JSONResponse(status_code=status_code, content=payload)


async def tutor_exception_handler(request: Request, exc: TutorError):
	if exc.retry_later:
		logger.warning("Rate limited by model provider on %s: %s", request.url.path, exc.message)
		return error_response(
			status_code=429,
			message="API rate limit reached. Please wait a moment and try again.",
			error="RATE_LIMITED",
		)
	if isinstance(exc, OracleError):
		logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
	return error_response(status_code=exc.status_code, message=exc.message, error=exc.error_code or type(exc).__name__)


async def http_exception_handler(request: Request, exc: HTTPException):
	return error_response(status_code=exc.status_code, message=str(exc.detail), error="HTTP_ERROR")


async def validation_exception_handler(request: Request, exc: RequestValidationError):
	return error_response(
		status_code=422,
		message="Request validation failed",
		error="VALIDATION_ERROR",
		details=jsonable_encoder(exc.errors()),
	)


async def unhandled_exception_handler(request: Request, exc: Exception):
	logger.exception("Unhandled exception on %s", request.url.path, exc_info=exc)
	return error_response(status_code=500, message="Internal server error", error="INTERNAL_ERROR")
