"""
Edgeserver — Application Configuration
=======================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and produces one frozen `Settings` object.
Who:   Built once by the bootstrap and passed explicitly into every stage.
When:  Loaded at startup; never mutated afterwards (the model is frozen).

Environment mode:
    APP_ENV (or NODE_ENV) selects the mode. Only the literal value
    "production" turns production behavior on; anything else, including an
    unset variable, runs in development.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Process-wide mode. Decides which asset delivery branch is wired."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have defaults suitable for local development. Attributes are
    grouped by the stage that consumes them.
    """

    # ── Process ───────────────────────────────────────────────────────────
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        validation_alias=AliasChoices("environment", "app_env", "node_env"),
    )
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = Field(default="INFO")

    # ── Routing layout ────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api")
    admin_login_path: str = Field(default="/api/admin/login")
    ct_report_path: str = Field(default="/api/security/ct-report")

    # ── Transport / proxy ─────────────────────────────────────────────────
    # Number of reverse-proxy hops whose X-Forwarded-* headers are believed.
    trusted_proxy_hops: int = Field(default=1, ge=0, le=10)

    compression_enabled: bool = Field(default=True)
    compression_min_size: int = Field(default=1024, ge=0)

    # ── CORS ──────────────────────────────────────────────────────────────
    # Comma-separated origins; parsed by cors_origins_list.
    cors_origins: str = Field(default="")

    # ── Body parsing ──────────────────────────────────────────────────────
    body_limit_bytes: int = Field(default=100 * 1024, ge=1024)

    # ── Rate limiting ─────────────────────────────────────────────────────
    rate_limit_window_seconds: int = Field(default=15 * 60, ge=1)
    general_rate_limit_max: int = Field(default=100, ge=1)
    general_rate_limit_message: str = Field(
        default="Too many requests. Please try again later."
    )
    admin_login_rate_limit_max: int = Field(default=5, ge=1)
    admin_login_rate_limit_message: str = Field(
        default="Too many login attempts. Please try again in 15 minutes."
    )
    # IPv6 clients are keyed by network prefix, not by single address.
    rate_limit_ipv6_subnet: int = Field(default=56, ge=8, le=128)

    # ── Request logging ───────────────────────────────────────────────────
    log_line_max_length: int = Field(default=300, ge=20)

    # ── Uploads ───────────────────────────────────────────────────────────
    upload_dir: str = Field(default="uploads")

    # ── Production assets ─────────────────────────────────────────────────
    frontend_dir: Optional[str] = Field(default=None)
    static_root_candidates: str = Field(default="dist/public,server/public,public,dist")
    entry_point: str = Field(default="index.html")
    assets_path: str = Field(default="/assets")
    assets_max_age: int = Field(default=365 * 24 * 60 * 60, ge=0)
    static_max_age: int = Field(default=3600, ge=0)

    # ── Development assets ────────────────────────────────────────────────
    client_template: str = Field(default="client/index.html")
    client_entry: str = Field(default="/src/main.tsx")
    vite_dev_url: str = Field(default="http://localhost:5173")
    vite_react_refresh: bool = Field(default=True)
    vite_proxy_timeout: float = Field(default=30.0, gt=0)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "frozen": True,
    }

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v):
        """Anything that is not "production" means development."""
        if isinstance(v, Environment):
            return v
        if str(v).strip().lower() == Environment.PRODUCTION.value:
            return Environment.PRODUCTION
        return Environment.DEVELOPMENT

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("api_prefix", "admin_login_path", "ct_report_path", "assets_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Path '{v}' must start with '/'")
        return v.rstrip("/") or "/"

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def static_root_candidate_list(self) -> List[str]:
        return [c.strip() for c in self.static_root_candidates.split(",") if c.strip()]


@lru_cache
def get_settings() -> Settings:
    """Settings built from the process environment, read once."""
    return Settings()
