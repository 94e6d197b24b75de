"""
Configuration settings for lms-companion.

Uses Pydantic Settings for environment variable management with .env file support.
Every variable is prefixed with ``LMS_`` (e.g. ``LMS_BACKEND_URL``).
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DASHBOARD_PATTERNS = [
    "/api/studentdashboard/",
    "/api/student/dashboard/",
    "/api/dashboard/",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Backend
    # ========================================
    backend_url: str = Field(
        default="http://localhost:8000/",
        description="Base URL of the LMS REST backend",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to every backend call",
    )

    # ========================================
    # Credential Vault
    # ========================================
    encryption_key: str = Field(
        default="",
        description="urlsafe-base64 Fernet key used for every stored identity field",
    )
    encrypt_all_payload: bool | None = Field(
        default=None,
        description="Encrypt JSON bodies sent to the backend (login endpoints always are)",
    )
    decrypt_all_response: bool | None = Field(
        default=None,
        description="Decrypt {'data': <token>} responses from the backend",
    )

    # ========================================
    # Session lifetime
    # ========================================
    session_timeout_minutes: int = Field(
        default=2,
        description="Inactivity ceiling before the idle warning is shown",
    )
    session_max_age_hours: int = Field(
        default=24,
        description="Maximum age of a login before session-restore refuses it",
    )
    logout_warning_seconds: int = Field(
        default=60,
        description="Countdown shown in the idle warning before forced logout",
    )

    # ========================================
    # Response Cache
    # ========================================
    cache_ttl_seconds: int = Field(
        default=120,
        description="Default TTL for cached dashboard responses",
    )
    cache_sweep_interval_seconds: int = Field(
        default=120,
        description="Period of the background sweep that evicts expired entries",
    )
    cache_dashboard_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DASHBOARD_PATTERNS),
        description="URL fragments whose responses may be cached",
    )

    # ========================================
    # Connectivity
    # ========================================
    connectivity_check_path: str = Field(
        default="robots.txt",
        description="Path polled to decide whether the backend is reachable",
    )
    connectivity_poll_interval_seconds: int = Field(
        default=10,
        description="Seconds between connectivity checks",
    )
    connectivity_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout of a single connectivity check",
    )

    # ========================================
    # Timed tests
    # ========================================
    test_resync_interval_seconds: int = Field(
        default=60,
        description="Seconds between server resyncs of a running test clock (0 disables)",
    )

    # ========================================
    # Routing
    # ========================================
    show_maintenance: bool = Field(
        default=False,
        description="Maintenance mode moves the login surface to /<login_path>/login",
    )
    login_path: str = Field(
        default="",
        description="Secret login prefix used while in maintenance mode",
    )

    # ========================================
    # Local state & logging
    # ========================================
    state_dir: Path = Field(
        default=Path.home() / ".lms_companion",
        description="Directory holding the durable store",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for the CLI",
    )

    @field_validator("backend_url")
    @classmethod
    def _normalise_backend_url(cls, v: str) -> str:
        return v.rstrip("/") + "/"

    @property
    def inactivity_timeout_seconds(self) -> int:
        return self.session_timeout_minutes * 60

    @property
    def session_max_age_seconds(self) -> int:
        return self.session_max_age_hours * 60 * 60

    @property
    def durable_store_path(self) -> Path:
        return self.state_dir / "durable.json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
