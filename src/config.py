"""
Reminder Sync — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # SQLite
    DATABASE_PATH: str = "data/events.db"

    # Occurrences are computed on the wall clock of this zone
    TIMEZONE: str = "UTC"

    # Remote event API
    REMOTE_API_BASE_URL: str = "https://jsonplaceholder.typicode.com"
    REMOTE_USER_ID: int = 1
    REMOTE_DOWNLOAD_LIMIT: int = 5
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    # Upper bound for a single store call made from the sync engine
    STORE_TIMEOUT_SECONDS: float = 5.0

    # SMS reminders (optional; Telegram notifications otherwise)
    SMS_ENABLED: bool = False
    SMS_RECIPIENT: str = ""
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("SMS_ENABLED", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/events.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        REMOTE_API_BASE_URL=os.getenv(
            "REMOTE_API_BASE_URL", "https://jsonplaceholder.typicode.com",
        ),
        REMOTE_USER_ID=os.getenv("REMOTE_USER_ID", "1"),
        REMOTE_DOWNLOAD_LIMIT=os.getenv("REMOTE_DOWNLOAD_LIMIT", "5"),
        REMOTE_TIMEOUT_SECONDS=os.getenv("REMOTE_TIMEOUT_SECONDS", "10"),
        STORE_TIMEOUT_SECONDS=os.getenv("STORE_TIMEOUT_SECONDS", "5"),
        SMS_ENABLED=os.getenv("SMS_ENABLED", "false"),
        SMS_RECIPIENT=os.getenv("SMS_RECIPIENT", ""),
        TWILIO_ACCOUNT_SID=os.getenv("TWILIO_ACCOUNT_SID", ""),
        TWILIO_AUTH_TOKEN=os.getenv("TWILIO_AUTH_TOKEN", ""),
        TWILIO_FROM_NUMBER=os.getenv("TWILIO_FROM_NUMBER", ""),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
