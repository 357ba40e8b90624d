"""
Unit tests for configuration
"""

import os
import pytest


def test_config_loading():
    """Test that configuration loads correctly"""
    from config.config import (
        DB_POOL_TIMEOUT_SECONDS,
        DB_TRANSACTION_TIMEOUT_SECONDS,
        AUTO_APPROVAL_INTERVAL_SECONDS,
        ALERT_DISPATCH_TIMEOUT_SECONDS,
    )

    assert DB_POOL_TIMEOUT_SECONDS > 0
    assert DB_TRANSACTION_TIMEOUT_SECONDS > 0
    assert AUTO_APPROVAL_INTERVAL_SECONDS > 0
    assert ALERT_DISPATCH_TIMEOUT_SECONDS > 0


def test_risk_constants():
    """Scoring thresholds keep their documented relationships"""
    from config import risk_config as rc

    assert rc.REVIEW_SCORE_THRESHOLD == 40
    assert rc.HIGH_RISK_SCORE_THRESHOLD == 60
    assert rc.CRITICAL_ALERT_THRESHOLD == 90
    assert rc.RANDOM_REVIEW_RATE == 0.20
    assert rc.MAX_FRAUD_SCORE == 100
    assert (
        rc.DEFAULT_AUTO_APPROVE_HOURS
        < rc.REVIEW_AUTO_APPROVE_HOURS
        < rc.HIGH_RISK_AUTO_APPROVE_HOURS
    )
    assert rc.CREDIT_MAX_ATTEMPTS == 3
    assert rc.CREDIT_BASE_DELAY_SECONDS == 0.05

    # Bands are ordered from the strictest threshold down
    assert [band[0] for band in rc.ACCOUNT_AGE_BANDS] == sorted(band[0] for band in rc.ACCOUNT_AGE_BANDS)
    for bands in (rc.VELOCITY_BANDS, rc.DAILY_VOLUME_BANDS, rc.SHARED_IP_BANDS):
        assert [band[0] for band in bands] == sorted((band[0] for band in bands), reverse=True)


def test_validate_config_passes_with_defaults():
    """Default configuration is valid"""
    from config.config import validate_config

    validate_config()


def test_validate_config_rejects_bad_values(monkeypatch):
    """Non-positive timeouts are reported"""
    import config.config as cfg

    monkeypatch.setattr(cfg, "DB_TRANSACTION_TIMEOUT_SECONDS", 0)
    monkeypatch.setattr(cfg, "AUTO_APPROVAL_INTERVAL_SECONDS", -1)

    with pytest.raises(ValueError) as exc_info:
        cfg.validate_config()

    assert "DB_TRANSACTION_TIMEOUT_SECONDS" in str(exc_info.value)
    assert "AUTO_APPROVAL_INTERVAL_SECONDS" in str(exc_info.value)


def test_bool_parsing(monkeypatch):
    """Test boolean environment parsing"""
    from config.config import _get_bool

    monkeypatch.setenv("AUTO_APPROVAL_ENABLED", "true")
    assert _get_bool("AUTO_APPROVAL_ENABLED", False) is True

    monkeypatch.setenv("AUTO_APPROVAL_ENABLED", "0")
    assert _get_bool("AUTO_APPROVAL_ENABLED", True) is False

    monkeypatch.delenv("AUTO_APPROVAL_ENABLED", raising=False)
    assert _get_bool("AUTO_APPROVAL_ENABLED", True) is True
    assert "AUTO_APPROVAL_ENABLED" not in os.environ
