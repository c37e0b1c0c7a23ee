"""Tests for startup configuration checks."""
from __future__ import annotations

from unittest.mock import patch

import pytest

from config.settings import settings
from src.startup_checks import validate_settings


def test_missing_square_config_warns():
    with patch.object(settings, "SQUARE_ACCESS_TOKEN", ""), \
         patch.object(settings, "SQUARE_WEBHOOK_SIGNATURE_KEY", ""):
        warnings = validate_settings()
    assert any("SQUARE_ACCESS_TOKEN" in w for w in warnings)
    assert any("SQUARE_WEBHOOK_SIGNATURE_KEY" in w for w in warnings)


def test_webhook_key_without_url_warns():
    with patch.object(settings, "SQUARE_WEBHOOK_SIGNATURE_KEY", "k"), \
         patch.object(settings, "SQUARE_WEBHOOK_URL", ""):
        warnings = validate_settings()
    assert any("SQUARE_WEBHOOK_URL" in w for w in warnings)


def test_default_jwt_secret_fatal_in_production():
    with patch.object(settings, "DATABASE_URL", "postgresql://db/stitchery"), \
         patch.object(settings, "JWT_SECRET", "stitchery-dev-secret-change-in-prod"):
        with pytest.raises(SystemExit):
            validate_settings()
