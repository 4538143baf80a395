from __future__ import annotations

import json
from typing import Any, List, Literal

from pydantic import AliasChoices, AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # .env is optional; unknown keys in it are rejected to catch typos
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    # Service
    APP_NAME: str = "LiveQuiz Backend"
    API_V1_PREFIX: str = "/api/v1"
    APP_ENV: Literal["dev", "staging", "prod"] = Field(
        "dev",
        validation_alias=AliasChoices("APP_ENV", "app_env"),
    )
    LOG_LEVEL: str = Field("INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))
    BACKEND_PORT: int = Field(
        8000,
        validation_alias=AliasChoices("BACKEND_PORT", "backend_port", "app_port"),
        description="Port uvicorn binds to",
    )

    # Which store backs sessions, participants and answers
    STORE_BACKEND: Literal["supabase", "redis"] = Field(
        "supabase",
        validation_alias=AliasChoices("STORE_BACKEND", "store_backend"),
    )

    # Supabase (PostgREST reads/writes, Realtime push)
    SUPABASE_URL: AnyUrl | None = Field(None, validation_alias=AliasChoices("SUPABASE_URL", "supabase_url"))
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(
        None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "supabase_service_role_key"),
        description="Preferred server-side key",
    )
    SUPABASE_ANON_KEY: str | None = Field(
        None,
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "supabase_anon_key"),
        description="Fallback when no service role key is set",
    )
    SUPABASE_SCHEMA: str = Field("public", validation_alias=AliasChoices("SUPABASE_SCHEMA", "supabase_schema"))

    # Redis (hashes + pub/sub)
    REDIS_URL: str = Field(
        "redis://localhost:6379/0",
        validation_alias=AliasChoices("REDIS_URL", "redis_url"),
        description="redis:// or rediss:// URL",
    )
    REDIS_MAX_CONNECTIONS: int = Field(50, gt=0)

    # Live synchronization
    REALTIME_GRACE_MS: int = Field(2000, ge=0, description="Push channel must go live within this window")
    SESSION_POLL_INTERVAL_MS: int = Field(1000, gt=0)
    COLLECTION_POLL_INTERVAL_MS: int = Field(2000, gt=0)
    REALTIME_MAX_RETRIES: int = Field(3, ge=0)
    REALTIME_RETRY_DELAY_MS: int = Field(2000, ge=0)

    # Question timer
    TIMER_TICK_MS: int = Field(100, gt=0)
    AUTO_SUBMIT_THRESHOLD_MS: int = Field(100, ge=0)
    AUTO_ADVANCE_ON_DEADLINE: bool = False

    SESSION_CODE_ATTEMPTS: int = Field(5, gt=0)

    # Host and participant screens
    FRONTEND_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @property
    def redis_url(self) -> str:
        return self.REDIS_URL

    @property
    def supabase_key(self) -> str | None:
        return self.SUPABASE_SERVICE_ROLE_KEY or self.SUPABASE_ANON_KEY

    @field_validator("FRONTEND_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, v: Any) -> Any:
        """Accept a JSON list or a comma / semicolon separated string."""
        if not isinstance(v, str):
            return v
        raw = v.strip()
        if raw.startswith("["):
            try:
                return json.loads(raw)
            except ValueError:
                raw = raw.strip("[]")
        return [o.strip().strip('"') for o in raw.replace(";", ",").split(",") if o.strip()]


settings = Settings()
