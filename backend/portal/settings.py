from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database
	database_url: str = Field(default="sqlite:///./portal.db", validation_alias="DATABASE_URL")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed admin account, created at startup when both email and password are set
	seed_admin_email: str | None = Field(default=None, validation_alias="SEED_ADMIN_EMAIL")
	seed_admin_password: str | None = Field(default=None, validation_alias="SEED_ADMIN_PASSWORD")
	seed_admin_name: str = Field(default="Administrator", validation_alias="SEED_ADMIN_NAME")
	seed_admin_school: str | None = Field(default=None, validation_alias="SEED_ADMIN_SCHOOL")

	# Password reset: the emailed link is PASSWORD_RESET_URL?token=...
	password_reset_url: str = Field(default="http://localhost:3000/reset-password", validation_alias="PASSWORD_RESET_URL")
	reset_token_expire_minutes: int = Field(default=30, validation_alias="RESET_TOKEN_EXPIRE_MINUTES")
	# "log" writes outgoing mail to the application log
	mail_backend: str = Field(default="log", validation_alias="MAIL_BACKEND")
	mail_from: str = Field(default="no-reply@portal.local", validation_alias="MAIL_FROM")

	# Blob storage: "local" writes under upload_dir, "http" posts to blob_store_url
	blob_backend: str = Field(default="local", validation_alias="BLOB_BACKEND")
	upload_dir: str = Field(default="./uploads", validation_alias="UPLOAD_DIR")
	public_base_url: str = Field(default="http://localhost:8000", validation_alias="PUBLIC_BASE_URL")
	blob_store_url: str | None = Field(default=None, validation_alias="BLOB_STORE_URL")
	blob_store_token: str | None = Field(default=None, validation_alias="BLOB_STORE_TOKEN")
	blob_store_timeout_seconds: float = Field(default=30.0, validation_alias="BLOB_STORE_TIMEOUT_SECONDS")
	max_upload_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")
	allowed_upload_extensions: str = Field(
		default="pdf,doc,docx,xls,xlsx,ppt,pptx,jpg,jpeg,png,txt,csv",
		validation_alias="ALLOWED_UPLOAD_EXTENSIONS",
	)

	# HTTP
	cors_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ORIGINS")
	# Echo internal error detail in 500 responses (never enable in production)
	debug_errors: bool = Field(default=False, validation_alias="DEBUG_ERRORS")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def allowed_extensions(self) -> List[str]:
		return [x.strip().lower().lstrip(".") for x in self.allowed_upload_extensions.split(",") if x.strip()]

	@property
	def cors_origin_list(self) -> List[str]:
		return [x.strip() for x in self.cors_origins.split(",") if x.strip()]

settings = Settings()
