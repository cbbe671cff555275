from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


# List fields that may be given as "a,b,c" instead of a JSON array.
COMMA_LIST_FIELDS = frozenset({"allow_origins"})

DEV_ORIGINS = ["http://localhost", "http://localhost:5173", "http://127.0.0.1:5173"]


class _CommaListMixin:
    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)  # type: ignore[misc]
        except json.JSONDecodeError:
            if field_name in COMMA_LIST_FIELDS:
                return value
            raise


class _EnvSource(_CommaListMixin, EnvSettingsSource):
    pass


class _DotEnvSource(_CommaListMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    """Worktrack configuration, read from the environment and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Worktrack API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")
    local_timezone: str = Field(
        default="UTC",
        description="IANA zone whose midnight resets the daily biometric attempt window",
        validation_alias=AliasChoices("LOCAL_TIMEZONE", "TZ_NAME"),
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./worktrack.db",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, ge=1, description="Postgres pool size")
    db_max_overflow: int = Field(default=10, ge=0, description="Connections allowed above the pool size")
    db_pool_timeout: int = Field(default=30, ge=1, description="Seconds to wait for a pooled connection")
    db_pool_recycle: int = Field(default=1800, description="Seconds before a pooled connection is recycled")

    # Auth / JWT
    jwt_secret: str = Field(
        default="change_me_dev_only",
        description="HMAC secret for client and staff tokens",
        validation_alias=AliasChoices("JWT_SECRET", "SECRET_KEY"),
    )
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(
        default=12 * 60,
        description="Token lifetime; a field shift fits in one token",
    )

    # CORS
    allow_origins: List[str] = Field(default_factory=lambda: list(DEV_ORIGINS))

    # Storage
    uploads_dir: str = Field(
        default="./uploads",
        description="Directory for work session photos",
        validation_alias=AliasChoices("UPLOAD_DIR", "UPLOADS_DIR"),
    )

    # Biometric gate
    biometric_similarity_threshold: float = Field(
        default=0.85,
        description="Minimum matcher similarity accepted as a positive identification",
        validation_alias=AliasChoices("BIOMETRIC_SIMILARITY_THRESHOLD", "FACE_SIMILARITY_THRESHOLD"),
    )
    biometric_max_attempts: int = Field(
        default=10,
        description="Failed verifications allowed per local day before lockout",
        validation_alias=AliasChoices("BIOMETRIC_MAX_ATTEMPTS", "FACE_MAX_ATTEMPTS"),
    )
    biometric_lockout_minutes: int = Field(
        default=30,
        description="Lockout duration after attempts are exhausted",
        validation_alias=AliasChoices("BIOMETRIC_LOCKOUT_MINUTES", "FACE_BLOCK_DURATION_MINUTES"),
    )

    # External face matcher (CompreFace compatible)
    matcher_base_url: str | None = Field(
        default=None,
        description="Face matcher base URL",
        validation_alias=AliasChoices("MATCHER_BASE_URL", "COMPREFACE_API_URL"),
    )
    matcher_api_key: str | None = Field(
        default=None,
        description="Recognition service API key",
        validation_alias=AliasChoices("MATCHER_API_KEY", "COMPREFACE_API_KEY"),
    )
    matcher_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for face matcher HTTP requests",
        validation_alias=AliasChoices("MATCHER_TIMEOUT_SECONDS"),
    )
    matcher_detection_threshold: float = Field(
        default=0.8,
        description="Face detection probability threshold passed to the matcher",
        validation_alias=AliasChoices("MATCHER_DETECTION_THRESHOLD", "COMPREFACE_DET_PROB_THRESHOLD"),
    )

    # Offline sync queue
    sync_batch_size: int = Field(default=50, description="Max operations applied per drain")
    sync_default_priority: int = Field(default=5, description="Priority given to operations that omit one")
    sync_max_retries: int = Field(default=3, description="Failures tolerated before an operation is failed")
    sync_processing_timeout_seconds: int = Field(
        default=300,
        description="Operations stuck in processing longer than this are reclaimed on drain",
    )
    sync_completed_retention_days: int = Field(
        default=7,
        description="Default age for clearing completed operations",
    )
    max_clock_skew_seconds: int = Field(
        default=300,
        ge=0,
        description="How far ahead of server time a device timestamp may be",
        validation_alias=AliasChoices("MAX_CLOCK_SKEW_SECONDS"),
    )

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        origins = [origin.strip() for origin in (value or "").split(",") if origin.strip()]
        return origins or list(DEV_ORIGINS)

    @field_validator("biometric_similarity_threshold")
    @classmethod
    def validate_threshold(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("biometric_similarity_threshold must be within (0, 1]")
        return value

    def ensure_uploads_dir(self) -> Path:
        path = Path(self.uploads_dir).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"prod", "production"}

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.local_timezone)

    @property
    def matcher_enabled(self) -> bool:
        return bool((self.matcher_base_url or "").strip())

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _EnvSource(settings_cls),
            _DotEnvSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_uploads_dir()
    return settings


settings = get_settings()
