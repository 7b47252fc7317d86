"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


RateLimitPresetName = Literal["strict", "standard", "lenient"]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on admin routes",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    public_base_url: str = Field(
        "https://example.com",
        description="Public site URL used to build referral links",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class SecuritySettings(BaseSettings):
    """Secrets protecting personal data at rest."""

    encryption_key: str | None = Field(
        None,
        description="Base64-encoded 32-byte key for AES-256-GCM field encryption",
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


class WaitlistSettings(BaseSettings):
    """Ledger persistence and referral mechanics."""

    storage_path: str = Field(
        ".waitlist-data.json",
        description="Snapshot file path, relative to the working directory",
    )
    position_baseline: int = Field(
        847,
        description="Position counter value for an empty waitlist",
        ge=0,
    )
    spots_per_referral: int = Field(
        10,
        description="Positions gained by a referrer per successful referral",
        ge=0,
    )
    referral_code_prefix: str = Field("REF", description="Referral code prefix")
    referral_code_length: int = Field(
        6,
        description="Random characters after the prefix",
        ge=4,
        le=8,
    )
    referral_code_max_attempts: int = Field(
        5,
        description="Attempts to find an unused referral code before failing",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="WAITLIST_",
        case_sensitive=False,
    )

    def resolved_storage_path(self) -> Path:
        return Path(self.storage_path).expanduser().resolve()


class RateLimitPreset(BaseModel):
    """A (limit, window) pair selected per endpoint sensitivity."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(..., ge=1)
    window_ms: int = Field(..., ge=1)


class RateLimitSettings(BaseSettings):
    """Rate limiter backend and named presets."""

    enabled: bool = Field(True, description="Enable request rate limiting")
    redis_url: str | None = Field(
        None,
        description="Shared Redis URL for the distributed sliding window",
    )
    redis_token: str | None = Field(
        None,
        description="Access token (Redis password) for the shared backend",
    )
    prefix: str = Field("waitlist-ratelimit", description="Redis key prefix")
    timeout_seconds: float = Field(
        0.5,
        description="Socket timeout for backend calls before falling back",
        gt=0,
    )

    strict_limit: int = Field(5, ge=1)
    strict_window_ms: int = Field(60_000, ge=1)
    standard_limit: int = Field(30, ge=1)
    standard_window_ms: int = Field(60_000, ge=1)
    lenient_limit: int = Field(100, ge=1)
    lenient_window_ms: int = Field(60_000, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    def preset(self, name: RateLimitPresetName) -> RateLimitPreset:
        """Resolve a named preset to its (limit, window_ms) pair.

        Raises:
            ValueError: If the preset name is unknown.
        """
        if name not in ("strict", "standard", "lenient"):
            raise ValueError(f"Unknown rate limit preset: {name!r}")
        return RateLimitPreset(
            limit=getattr(self, f"{name}_limit"),
            window_ms=getattr(self, f"{name}_window_ms"),
        )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (plaintext PII allowed without a key)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (encryption key mandatory)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    waitlist: WaitlistSettings = Field(default_factory=WaitlistSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
