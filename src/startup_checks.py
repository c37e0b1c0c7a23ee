"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys

from config.settings import settings

logger = logging.getLogger(__name__)

_DEFAULT_JWT_SECRET = "stitchery-dev-secret-change-in-prod"


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations in production.
    """
    warnings: list[str] = []
    is_prod = settings.DATABASE_URL and "sqlite" not in settings.DATABASE_URL

    # Critical: JWT secret must be changed in production
    if is_prod and settings.JWT_SECRET == _DEFAULT_JWT_SECRET:
        logger.critical("JWT_SECRET is still the default! Set a real secret for production.")
        sys.exit(1)

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to * — restrict in production")

    if not settings.SQUARE_ACCESS_TOKEN:
        warnings.append("SQUARE_ACCESS_TOKEN not set — subscriptions and cards disabled")
    elif not settings.SQUARE_LOCATION_ID:
        warnings.append("SQUARE_LOCATION_ID not set — charges use the account's main location")

    if not settings.SQUARE_WEBHOOK_SIGNATURE_KEY:
        warnings.append("SQUARE_WEBHOOK_SIGNATURE_KEY not set — webhook endpoint will reject deliveries")
    elif not settings.SQUARE_WEBHOOK_URL:
        warnings.append("SQUARE_WEBHOOK_URL not set — webhook signatures will not verify")

    if settings.SQUARE_ENVIRONMENT not in ("sandbox", "production"):
        warnings.append(f"SQUARE_ENVIRONMENT={settings.SQUARE_ENVIRONMENT!r} is unknown — using sandbox")

    if not settings.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY not set — subscription analytics disabled")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
