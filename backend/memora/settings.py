from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Quiz generation asks for very long outputs, keep the timeout generous
	gemini_timeout_seconds: float = Field(default=120.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Memora", validation_alias="OPENROUTER_TITLE")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=7 * 24 * 60, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Uploads
	upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")
	max_upload_mb: int = Field(default=10, validation_alias="MAX_UPLOAD_MB")
	max_files_per_upload: int = Field(default=10, validation_alias="MAX_FILES_PER_UPLOAD")

	# Quiz pipeline
	quiz_text_max_chars: int = Field(default=30000, validation_alias="QUIZ_TEXT_MAX_CHARS")
	quiz_max_questions: int = Field(default=50, validation_alias="QUIZ_MAX_QUESTIONS")
	ocr_min_chars: int = Field(default=50, validation_alias="OCR_MIN_CHARS")
	ocr_render_zoom: float = Field(default=2.0, validation_alias="OCR_RENDER_ZOOM")
	# Seconds of slack before a timed quiz is submitted on the student's behalf
	timer_grace_seconds: int = Field(default=5, validation_alias="TIMER_GRACE_SECONDS")

	# Tutor
	tutor_history_limit: int = Field(default=10, validation_alias="TUTOR_HISTORY_LIMIT")
	tutor_context_max_chars: int = Field(default=20000, validation_alias="TUTOR_CONTEXT_MAX_CHARS")

	# Housekeeping (0 disables the periodic loop; the startup pass still runs)
	progress_retention_days: int = Field(default=7, validation_alias="PROGRESS_RETENTION_DAYS")
	cleanup_interval_seconds: int = Field(default=24 * 60 * 60, validation_alias="CLEANUP_INTERVAL_SECONDS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	cors_origins: str = Field(default="*", validation_alias="CORS_ORIGINS")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def max_upload_bytes(self) -> int:
		return self.max_upload_mb * 1024 * 1024

	@property
	def cors_origin_list(self) -> list[str]:
		return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

settings = Settings()
