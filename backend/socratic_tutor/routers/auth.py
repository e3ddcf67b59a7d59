from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import re

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import AliasChoices, BaseModel, Field

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import RateLimitError, ValidationError, ok
from ..models import LoginAttempt, User

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class SignupRequest(BaseModel):
	email: str
	password: str
	name: Optional[str] = None


class LoginRequest(BaseModel):
	email: str
	password: str


class RefreshRequest(BaseModel):
	refresh_token: str = Field(default="", validation_alias=AliasChoices("refreshToken", "refresh_token"))


def _normalize_email(email: str) -> str:
	email = (email or "").strip().lower()
	if not _EMAIL_RE.match(email):
		raise ValidationError("Please provide a valid email address")
	return email


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def _encode(user: User, token_type: str, expires_delta: timedelta, secret: str) -> str:
	now = datetime.now(timezone.utc)
	payload = {
		"sub": user.id,
		"email": user.email,
		"type": token_type,
		"iat": now,
		"exp": now + expires_delta,
	}
	return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user: User) -> str:
	return _encode(user, ACCESS_TOKEN, timedelta(minutes=settings.access_token_expire_minutes), settings.jwt_secret_key)


def create_refresh_token(user: User) -> str:
	return _encode(user, REFRESH_TOKEN, timedelta(days=settings.refresh_token_expire_days), settings.jwt_refresh_secret_key)


def _token_pair(user: User) -> dict:
	return {"accessToken": create_access_token(user), "refreshToken": create_refresh_token(user)}


def _decode(token: str, secret: str, token_type: str) -> dict:
	label = "Refresh token" if token_type == REFRESH_TOKEN else "Token"
	try:
		payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
	except ExpiredSignatureError:
		raise HTTPException(status_code=401, detail=f"{label} has expired")
	except JWTError:
		raise HTTPException(status_code=401, detail=f"Invalid {label.lower()}")
	if payload.get("type") != token_type or not payload.get("sub"):
		raise HTTPException(status_code=401, detail=f"Invalid {label.lower()}")
	return payload


def user_to_dict(user: User) -> dict:
	return {
		"id": user.id,
		"email": user.email,
		"name": user.name,
		"createdAt": user.created_at.isoformat() if user.created_at else None,
	}


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
	row = db.query(User).filter(User.email == email).first()
	if row and verify_password(password, row.password_hash):
		return row
	return None


def _client_ip(request: Request) -> str:
	return request.client.host if request.client else "unknown"


def _check_rate_limit(db: Session, email: str) -> None:
	"""Refuse sign-in for an email with too many recent failures."""
	cutoff = datetime.utcnow() - timedelta(minutes=settings.auth_lockout_minutes)
	recent_failures = (
		db.query(LoginAttempt)
		.filter(
			LoginAttempt.email == email,
			LoginAttempt.success.is_(False),
			LoginAttempt.attempted_at >= cutoff,
		)
		.count()
	)
	if recent_failures >= settings.auth_max_failed_attempts:
		logger.warning("Sign-in locked for %s after %d failures", email, recent_failures)
		raise RateLimitError(
			f"Too many authentication attempts, please try again in {settings.auth_lockout_minutes} minutes"
		)


def _log_attempt(db: Session, email: str, success: bool, ip: str) -> None:
	db.add(LoginAttempt(email=email, success=success, ip_address=ip))
	db.commit()


def _sign_in(db: Session, email: str, password: str, ip: str) -> Optional[User]:
	_check_rate_limit(db, email)
	user = authenticate_user(db, email, password)
	_log_attempt(db, email, user is not None, ip)
	return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	payload = _decode(token, settings.jwt_secret_key, ACCESS_TOKEN)
	user = db.get(User, payload["sub"])
	if user is None:
		raise HTTPException(status_code=401, detail="User not found")
	return user


@router.post("/signup", status_code=201)
async def signup(req: SignupRequest, db: Session = Depends(get_db)):
	email = _normalize_email(req.email)
	password = req.password or ""
	if len(password) < 6:
		raise ValidationError("Password must be at least 6 characters long")
	if not _PASSWORD_RE.match(password):
		raise ValidationError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
	name = req.name.strip() if req.name is not None else None
	if name is not None and not 1 <= len(name) <= 100:
		raise ValidationError("Name must be between 1 and 100 characters")
	if db.query(User).filter(User.email == email).first():
		raise HTTPException(status_code=409, detail="User with this email already exists")
	user = User(email=email, password_hash=hash_password(password), name=name)
	db.add(user)
	db.commit()
	db.refresh(user)
	logger.info("Created user %s", user.id)
	return ok({"user": user_to_dict(user), **_token_pair(user)}, "User created successfully")


@router.post("/login")
async def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
	email = _normalize_email(req.email)
	if not req.password:
		raise ValidationError("Password is required")
	user = _sign_in(db, email, req.password, _client_ip(request))
	if not user:
		raise HTTPException(status_code=401, detail="Invalid email or password")
	return ok({"user": user_to_dict(user), **_token_pair(user)}, "Login successful")


@router.post("/token", response_model=Token)
async def token(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	# OAuth2 password flow for the interactive docs; the username field carries the email
	email = (form_data.username or "").strip().lower()
	user = _sign_in(db, email, form_data.password, _client_ip(request))
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	return Token(access_token=create_access_token(user))


@router.post("/refresh")
async def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
	if not req.refresh_token:
		raise ValidationError("Refresh token is required")
	payload = _decode(req.refresh_token, settings.jwt_refresh_secret_key, REFRESH_TOKEN)
	user = db.get(User, payload["sub"])
	if user is None:
		raise HTTPException(status_code=401, detail="User not found")
	return ok(_token_pair(user), "Token refreshed successfully")


@router.post("/logout")
async def logout():
	# Tokens are stateless; the client drops them
	return ok(message="Logout successful")


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
	return ok({"user": user_to_dict(user)})
