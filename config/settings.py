"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///stitchery.db")

    # Auth
    JWT_SECRET = os.getenv("JWT_SECRET", "stitchery-dev-secret-change-in-prod")

    # Admin API key (subscription analytics)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Square
    SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN", "")
    SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox")  # "sandbox" or "production"
    SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID", "")
    SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2024-10-17")
    SQUARE_TIMEOUT_SECONDS = float(os.getenv("SQUARE_TIMEOUT_SECONDS", "15"))
    SQUARE_WEBHOOK_SIGNATURE_KEY = os.getenv("SQUARE_WEBHOOK_SIGNATURE_KEY", "")
    SQUARE_WEBHOOK_URL = os.getenv("SQUARE_WEBHOOK_URL", "")

    # Plans
    SQUARE_MONTHLY_PLAN_ID = os.getenv("SQUARE_MONTHLY_PLAN_ID", "monthly-plan")
    SQUARE_YEARLY_PLAN_ID = os.getenv("SQUARE_YEARLY_PLAN_ID", "yearly-plan")

    # Trials
    DEFAULT_TRIAL_DAYS = int(os.getenv("DEFAULT_TRIAL_DAYS", "7"))

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
