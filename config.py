"""
Application configuration: environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    # SQLite file path
    DATABASE = os.environ.get("DATABASE_URL", str(BASE_DIR / "story_quiz.db"))

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400

    # AI provider: "gemini", "claude" or "openai"
    AI_PROVIDER = os.environ.get("AI_PROVIDER", "gemini")
    AI_MODEL = os.environ.get("AI_MODEL", "gemini-2.0-flash")
    GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "")
    ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")

    # Content providers
    YOUTUBE_API_KEY = os.environ.get("YOUTUBE_API_KEY", "")
    HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Rate limiting (defaults to in-memory; set REDIS_URL for Redis-backed)
    REDIS_URL = os.environ.get("REDIS_URL", "")
    RATELIMIT_STORAGE_URI = REDIS_URL or "memory://"
    RATELIMIT_ENABLED = True

    # Quiz behaviour
    QUIZ_AUTO_ADVANCE_SECONDS = 2.0
    BATCH_GENERATION_DELAY = float(os.environ.get("BATCH_GENERATION_DELAY", "2"))
    MEDIA_CACHE_DAYS = 7
    SEARCH_LOCAL_THRESHOLD = 5


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if not (cls.GOOGLE_API_KEY or cls.ANTHROPIC_API_KEY or cls.OPENAI_API_KEY):
            warnings.warn("No AI provider key is set; quiz generation will be unavailable.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    RATELIMIT_ENABLED = False
    BATCH_GENERATION_DELAY = 0


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
