from __future__ import annotations

import json
from typing import List, Optional

from pydantic import Field, AliasChoices, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---- App ----
    APP_NAME: str = "EduLearn API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"))
    PORT: int = 8000
    BASE_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"

    # ---- Database ----
    DATABASE_URL: str = Field(
        default="mongodb://localhost:27017",
        validation_alias=AliasChoices("DATABASE_URL", "MONGODB_URI"),
    )
    DATABASE_NAME: str = "education_app"
    CREATE_INDEXES: bool = True

    # ---- Auth ----
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_DAYS: int = 7
    OTP_EXPIRES_MINUTES: int = 10
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    AUTH_RATE_LIMIT_MAX_REQUESTS: int = 100

    # ---- Web / CORS ----
    cors_origins_raw: Optional[str] = Field(default=None, validation_alias=AliasChoices("CORS_ORIGINS"))
    cors_origins: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("CORS_ORIGINS_PARSED_DO_NOT_USE"),
    )

    # ---- Email ----
    EMAIL_USER: Optional[str] = None
    EMAIL_PASSWORD: Optional[str] = None
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587

    # ---- Storage ----
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_KEY"),
    )
    SUPABASE_BUCKET_NAME: str = "education-app-uploads"
    LOCAL_UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024
    MAX_FILES_PER_REQUEST: int = 10

    # ---- Gemini ----
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TIMEOUT_SECONDS: float = 60.0
    AI_RETRY_ATTEMPTS: int = 3
    AI_RETRY_BASE_DELAY_SECONDS: float = 2.0

    # ---- Keep-alive ----
    ENABLE_KEEP_ALIVE: bool = False
    KEEP_ALIVE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KEEP_ALIVE_URL", "RENDER_EXTERNAL_URL", "APP_URL"),
    )
    KEEP_ALIVE_INTERVAL_SECONDS: int = 10 * 60

    # ---- Mobile app version defaults (seed for the persisted record) ----
    APP_LATEST_VERSION: str = "2.1.0"
    APP_MINIMUM_SUPPORTED_VERSION: str = "2.1.0"
    APP_DOWNLOAD_URL: str = "https://github.com/PatelMitanshu/edufrontend/releases/latest/app-release.apk"
    APP_UPDATE_MESSAGE: str = "A new version of the Education App is available."

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _compute_cors(self) -> "Settings":
        """
        Populate `cors_origins` from CORS_ORIGINS (JSON array or CSV),
        falling back to "*" when nothing is provided.
        """
        parsed: list[str] = []
        raw = self.cors_origins_raw
        if raw:
            raw = raw.strip()
            if raw.startswith("["):
                try:
                    data = json.loads(raw)
                    if isinstance(data, list):
                        parsed = [str(x).strip() for x in data if x]
                except ValueError:
                    parsed = []
            if not parsed:
                parsed = [p.strip() for p in raw.split(",") if p.strip()]
        self.cors_origins = parsed or ["*"]
        return self

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def email_configured(self) -> bool:
        return bool(self.EMAIL_USER and self.EMAIL_PASSWORD and self.EMAIL_USER != "your-email@gmail.com")

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY)


settings = Settings()
__all__ = ["settings", "Settings"]
