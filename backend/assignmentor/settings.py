from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# OpenAI-compatible completion endpoint used for generation and chat
	llm_api_key: str | None = Field(default=None, validation_alias="LLM_API_KEY")
	llm_base_url: str = Field(default="https://api.llm7.io/v1", validation_alias="LLM_BASE_URL")
	llm_model: str = Field(default="default", validation_alias="LLM_MODEL")
	llm_timeout_seconds: float = Field(default=30.0, validation_alias="LLM_TIMEOUT_SECONDS")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Assignmentor", validation_alias="OPENROUTER_TITLE")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Sessions idle longer than this are purged by the cleanup loop
	session_retention_days: int = Field(default=7, validation_alias="SESSION_RETENTION_DAYS")
	default_requests_limit: int = Field(default=1000, validation_alias="DEFAULT_REQUESTS_LIMIT")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Approximate printable characters per A4 page at 12pt with the print margins
	chars_per_page: int = Field(default=2200, validation_alias="CHARS_PER_PAGE")

	# Export
	export_scale: int = Field(default=2, validation_alias="EXPORT_SCALE")
	export_jpeg_quality: int = Field(default=95, validation_alias="EXPORT_JPEG_QUALITY")
	export_font_path: str | None = Field(default=None, validation_alias="EXPORT_FONT_PATH")
	export_font_bold_path: str | None = Field(default=None, validation_alias="EXPORT_FONT_BOLD_PATH")
	export_font_mono_path: str | None = Field(default=None, validation_alias="EXPORT_FONT_MONO_PATH")
	# When set, the first rasterized page of every export is also saved here as PNG
	export_debug_dir: str | None = Field(default=None, validation_alias="EXPORT_DEBUG_DIR")

	# Document frame printed on exported pages
	institution_name: str = Field(default="", validation_alias="INSTITUTION_NAME")
	institution_lines: List[str] = Field(default_factory=list, validation_alias="INSTITUTION_LINES")
	department_name: str = Field(default="", validation_alias="DEPARTMENT_NAME")
	sheet_title: str = Field(default="Internal Assessment Sheet", validation_alias="SHEET_TITLE")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
