"""Server settings from environment variables and an optional `.env` file."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DELIVERY_TTL_S


class Settings(BaseSettings):
    """Runtime settings.

    Pairing rules (timeout, phone format, brand) are fixed in `constants`;
    only deployment concerns are configurable here. `PORT` is honoured as-is
    so the server works on hosts that inject it.
    """

    model_config = SettingsConfigDict(
        env_prefix="WAPAIR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    port: int = Field(
        default=3000,
        validation_alias=AliasChoices("PORT", "WAPAIR_PORT"),
        description="HTTP listen port",
    )
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    sessions_dir: Path = Field(
        default=Path("./sessions"), description="Root folder for per-phone credential folders"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Path | None = Field(default=None, description="Optional rotating log file")
    delivery_ttl_s: float = Field(
        default=DELIVERY_TTL_S, description="How long a finished session blob can be polled"
    )


def get_settings() -> Settings:
    return Settings()
