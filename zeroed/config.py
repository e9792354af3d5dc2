"""
Zeroed — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from zeroed/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    APP_NAME: str = "Bruh"
    APP_URL: str = "http://localhost:8000"

    # Shared secret for /api/cron/* endpoints
    CRON_SECRET: str

    # SQLite
    DATABASE_PATH: str = "data/zeroed.db"
    TIMEZONE: str = "UTC"

    # LLM provider: gemini, anthropic, openai or cohere.
    # Empty key → brain dump / breakdown use the keyword fallbacks.
    LLM_PROVIDER: str = "anthropic"
    LLM_MODEL: str = ""
    LLM_API_KEY: str = ""

    # Slack
    SLACK_CLIENT_ID: str = ""
    SLACK_CLIENT_SECRET: str = ""
    SLACK_SIGNING_SECRET: str = ""

    # Notion
    NOTION_CLIENT_ID: str = ""
    NOTION_CLIENT_SECRET: str = ""

    # Google Calendar
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PRICE_ID: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Resend (transactional email)
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "Zeroed <noreply@zeroed.app>"

    # Admin interface access
    ADMIN_EMAILS: list[str] = []

    @field_validator("ADMIN_EMAILS", mode="before")
    @classmethod
    def parse_admin_emails(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return [e.strip().lower() for e in v if e.strip()]
        if isinstance(v, str) and v.strip():
            return [e.strip().lower() for e in v.split(",") if e.strip()]
        return []

    @field_validator("APP_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return (v or "").rstrip("/")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    cron_secret = os.getenv("CRON_SECRET", "")

    if not cron_secret or cron_secret.startswith("your-"):
        print("ERROR: CRON_SECRET is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        APP_NAME=os.getenv("APP_NAME", "Bruh"),
        APP_URL=os.getenv("APP_URL", "http://localhost:8000"),
        CRON_SECRET=cron_secret,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/zeroed.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "anthropic"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        SLACK_CLIENT_ID=os.getenv("SLACK_CLIENT_ID", ""),
        SLACK_CLIENT_SECRET=os.getenv("SLACK_CLIENT_SECRET", ""),
        SLACK_SIGNING_SECRET=os.getenv("SLACK_SIGNING_SECRET", ""),
        NOTION_CLIENT_ID=os.getenv("NOTION_CLIENT_ID", ""),
        NOTION_CLIENT_SECRET=os.getenv("NOTION_CLIENT_SECRET", ""),
        GOOGLE_CLIENT_ID=os.getenv("GOOGLE_CLIENT_ID", ""),
        GOOGLE_CLIENT_SECRET=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY", ""),
        STRIPE_PRICE_ID=os.getenv("STRIPE_PRICE_ID", ""),
        STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        RESEND_API_KEY=os.getenv("RESEND_API_KEY", ""),
        RESEND_FROM_EMAIL=os.getenv("RESEND_FROM_EMAIL", "Zeroed <noreply@zeroed.app>"),
        ADMIN_EMAILS=os.getenv("ADMIN_EMAILS", ""),
    )


# Singleton, imported by all other modules as:
#   from zeroed.config import settings
settings = _load_settings()
