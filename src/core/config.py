"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Cache ────────────────────────────────────────────
    cache_dir: Path = Path.home() / ".report_cache"
    cache_context: str = "default"
    metadata_ttl_hours: float = 24
    query_ttl_hours: float = 4
    events_ttl_hours: float = 1

    # ── Query limits ─────────────────────────────────────
    default_limit: int = 10_000
    max_limit: int = 250_000
    strict_validation: bool = False

    # ── Reporting gateway ────────────────────────────────
    gateway_base_url: str = "https://analyticsdata.googleapis.com/v1beta"
    gateway_access_token: str = ""
    gateway_timeout_seconds: float = 30.0

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "text"            # text | json

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
