from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	# PDF extraction sends the whole document inline, so it gets a longer budget
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_refresh_secret_key: str = Field(default="change-me-too", validation_alias="JWT_REFRESH_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=15, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	refresh_token_expire_days: int = Field(default=7, validation_alias="REFRESH_TOKEN_EXPIRE_DAYS")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Uploaded lecture PDFs
	upload_dir: str = Field(default="./uploads", validation_alias="UPLOAD_DIR")
	max_upload_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")

	frontend_url: str = Field(default="http://localhost:5173", validation_alias="FRONTEND_URL")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Pause between a finished question and the next one (0 disables it)
	advance_delay_seconds: float = Field(default=0.0, validation_alias="ADVANCE_DELAY_SECONDS")
	# Dialogue controllers kept in memory; idle ones beyond this are rebuilt from the database
	max_live_sessions: int = Field(default=256, validation_alias="MAX_LIVE_SESSIONS")

	# Failed logins per email allowed inside the lockout window
	auth_max_failed_attempts: int = Field(default=5, validation_alias="AUTH_MAX_FAILED_ATTEMPTS")
	auth_lockout_minutes: int = Field(default=15, validation_alias="AUTH_LOCKOUT_MINUTES")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
