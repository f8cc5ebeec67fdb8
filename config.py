"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PRESETS = {
    "letsencrypt":         "https://acme-v01.api.letsencrypt.org/directory",
    "letsencrypt_staging": "https://acme-staging.api.letsencrypt.org/directory",
    "boulder":             "http://127.0.0.1:4000/directory",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── CA ─────────────────────────────────────────────────────────────────
    CA_PROVIDER: Literal["letsencrypt", "letsencrypt_staging", "boulder", "custom"] = "letsencrypt_staging"
    # Only consulted when CA_PROVIDER="custom"
    ACME_DIRECTORY_URL: str = ""

    # ── Account ────────────────────────────────────────────────────────────
    ACCOUNT_KEY_PATH: str = "./account.key"
    CONTACT_EMAIL: Optional[str] = None
    AGREEMENT_URL: Optional[str] = None

    # ── Storage ────────────────────────────────────────────────────────────
    CERT_STORE_PATH: str = "./certs"
    DOMAIN_KEY_SIZE: int = 2048

    # ── Timeouts (seconds) ─────────────────────────────────────────────────
    CHALLENGE_TIMEOUT: int = 180
    CERTIFICATE_TIMEOUT: int = 180
    HTTP_TIMEOUT: int = 30

    # ── HTTP-01 Challenge ──────────────────────────────────────────────────
    HTTP_CHALLENGE_MODE: str = "standalone"   # "standalone" | "webroot"
    HTTP_CHALLENGE_PORT: int = 80
    WEBROOT_PATH: Optional[str] = None

    # ── ACME TLS (for testing against Boulder / self-signed CAs) ───────────
    ACME_CA_BUNDLE: str = ""       # Path to CA cert bundle; empty = system default
    ACME_INSECURE: bool = False    # Skip TLS verification (never use in production)

    @field_validator("HTTP_CHALLENGE_MODE")
    @classmethod
    def validate_challenge_mode(cls, v: str) -> str:
        allowed = {"standalone", "webroot"}
        if v not in allowed:
            raise ValueError(f"HTTP_CHALLENGE_MODE must be one of {allowed}")
        return v

    @field_validator("CHALLENGE_TIMEOUT", "CERTIFICATE_TIMEOUT", "HTTP_TIMEOUT")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError("timeouts must not be negative")
        return v

    @field_validator("CONTACT_EMAIL", "AGREEMENT_URL", mode="before")
    @classmethod
    def empty_as_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_webroot(self) -> "Settings":
        if self.HTTP_CHALLENGE_MODE == "webroot" and not self.WEBROOT_PATH:
            raise ValueError(
                "WEBROOT_PATH must be set when HTTP_CHALLENGE_MODE='webroot'"
            )
        return self

    @model_validator(mode="after")
    def resolve_acme_directory(self) -> "Settings":
        if self.CA_PROVIDER in _PRESETS:
            self.ACME_DIRECTORY_URL = _PRESETS[self.CA_PROVIDER]
        elif not self.ACME_DIRECTORY_URL:
            raise ValueError("ACME_DIRECTORY_URL must be set when CA_PROVIDER='custom'")
        return self


# Module-level singleton, imported everywhere.
settings = Settings()
