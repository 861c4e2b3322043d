from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    # Server
    port: int = Field(default=3001, validation_alias="PORT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", validation_alias="LOG_LEVEL")

    # CORS
    cors_origins: List[str] = Field(default_factory=list, validation_alias="CORS_ORIGINS")

    # Mux (transcoding / streaming)
    mux_token_id: str | None = Field(default=None, validation_alias="MUX_TOKEN_ID")
    mux_token_secret: str | None = Field(default=None, validation_alias="MUX_TOKEN_SECRET")
    mux_api_base_url: str = Field(default="https://api.mux.com", validation_alias="MUX_API_BASE_URL")
    mux_cors_origin: str = Field(default="*", validation_alias="MUX_CORS_ORIGIN")
    mux_playback_policy: Literal["public", "signed"] = Field(default="public", validation_alias="MUX_PLAYBACK_POLICY")
    mux_encoding_tier: Literal["baseline", "smart"] = Field(default="baseline", validation_alias="MUX_ENCODING_TIER")
    mux_timeout_seconds: float = Field(default=30.0, validation_alias="MUX_TIMEOUT_SECONDS")

    # Upload limits
    video_max_size_bytes: int = Field(default=10 * 1024**3, validation_alias="VIDEO_MAX_SIZE_BYTES")
    transfer_chunk_size_bytes: int = Field(default=8 * 1024 * 1024, validation_alias="TRANSFER_CHUNK_SIZE_BYTES")

    # Asset status polling (150 x 2s ~= 5 minutes)
    poll_interval_seconds: float = Field(default=2.0, validation_alias="POLL_INTERVAL_SECONDS")
    poll_max_attempts: int = Field(default=150, validation_alias="POLL_MAX_ATTEMPTS")

    # Local duration probing
    ffprobe_bin: str = Field(default="ffprobe", validation_alias="FFPROBE_BIN")
    probe_primary_timeout_seconds: float = Field(default=15.0, validation_alias="PROBE_PRIMARY_TIMEOUT_SECONDS")
    probe_fallback_timeout_seconds: float = Field(default=10.0, validation_alias="PROBE_FALLBACK_TIMEOUT_SECONDS")
    default_duration_seconds: int = Field(default=60, validation_alias="DEFAULT_DURATION_SECONDS")

    # Tenant credential directory (Firebase Realtime Database REST)
    tenant_directory_url: str | None = Field(default=None, validation_alias="TENANT_DIRECTORY_URL")
    tenant_directory_auth: str | None = Field(default=None, validation_alias="TENANT_DIRECTORY_AUTH")
    tenant_directory_path: str = Field(default="user", validation_alias="TENANT_DIRECTORY_PATH")

    # Relational store
    store_timeout_seconds: float = Field(default=15.0, validation_alias="STORE_TIMEOUT_SECONDS")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        # Allow:
        # - comma-separated string: "http://a,http://b"
        # - JSON array: '["http://a","http://b"]' (pydantic will parse it before this in many cases)
        # - already-a-list
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.video_max_size_bytes <= 0:
            raise ValueError("VIDEO_MAX_SIZE_BYTES must be > 0")
        if self.transfer_chunk_size_bytes <= 0:
            raise ValueError("TRANSFER_CHUNK_SIZE_BYTES must be > 0")
        if self.poll_interval_seconds < 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be >= 0")
        if self.poll_max_attempts <= 0:
            raise ValueError("POLL_MAX_ATTEMPTS must be > 0")
        if self.probe_primary_timeout_seconds <= 0 or self.probe_fallback_timeout_seconds <= 0:
            raise ValueError("PROBE_*_TIMEOUT_SECONDS must be > 0")
        if self.default_duration_seconds <= 0:
            raise ValueError("DEFAULT_DURATION_SECONDS must be > 0")
        if self.mux_timeout_seconds <= 0:
            raise ValueError("MUX_TIMEOUT_SECONDS must be > 0")
        if self.store_timeout_seconds <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be > 0")
        return self

    @property
    def mux_configured(self) -> bool:
        return bool(self.mux_token_id and self.mux_token_secret)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
