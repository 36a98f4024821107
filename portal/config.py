"""
config.py — TrustTax portal settings.

Usage:
    from portal.config import settings
    print(settings.api_base_url)

Only the edges (app factory, routes, API client factory) read this singleton.
Form controllers receive an explicit FormContext built from it instead.
"""
from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PORTAL_",
        case_sensitive=False,
        extra="ignore",  # Silently ignore any extra env vars
    )

    # --- Upstream TrustTax API ---
    api_base_url: str = "http://localhost:4000"
    request_timeout: float = 30.0  # seconds, applied by the httpx client

    # --- Profile form behaviour ---
    terms_version: str = "1.0"
    expiration_warning_days: int = 90

    # --- Open form lifetime ---
    form_idle_ttl_seconds: int = 900       # idle forms (and their plaintext) are dropped
    form_sweep_interval_seconds: float = 60.0

    # --- CORS ---
    # Comma-separated list of allowed frontend origins
    cors_origins: str = "http://localhost:5173,http://localhost:5174"

    # --- Application ---
    debug: bool = True
    app_version: str = "0.1.0"

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@dataclass(frozen=True)
class FormContext:
    """Per-form configuration passed into ProfileFormReconciler."""
    terms_version: str = "1.0"
    expiration_warning_days: int = 90

    @classmethod
    def from_settings(cls, source: Settings) -> "FormContext":
        return cls(
            terms_version=source.terms_version,
            expiration_warning_days=source.expiration_warning_days,
        )


# Module-level singleton — import this at the edges only
settings = Settings()
