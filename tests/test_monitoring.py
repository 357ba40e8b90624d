"""
Tests for logging and Sentry helpers
"""

import sys

from loguru import logger

from config.logging import setup_logging
from config.sentry import before_send_hook


def test_setup_logging_writes_files(tmp_path):
    """Log records with bound context land in the rotated files"""
    setup_logging(logs_dir=tmp_path)
    try:
        logger.bind(completion_id=17).error("credit failed")
        # Closing the sinks flushes the files
        logger.remove()

        engine_logs = list(tmp_path.glob("engine_*.log"))
        error_logs = list(tmp_path.glob("error_*.log"))
        assert len(engine_logs) == 1
        assert len(error_logs) == 1
        content = error_logs[0].read_text(encoding="utf-8")
        assert "credit failed" in content
        assert "completion_id" in content
    finally:
        logger.remove()
        logger.add(sys.stderr)


def test_before_send_filters_network_identifiers():
    """IP address and user agent never leave for Sentry"""
    event = {"extra": {"ip_address": "203.0.113.4", "user_agent": "curl", "completion_id": 3}}

    filtered = before_send_hook(event, {})

    assert filtered["extra"]["ip_address"] == "[Filtered]"
    assert filtered["extra"]["user_agent"] == "[Filtered]"
    assert filtered["extra"]["completion_id"] == 3


def test_before_send_drops_keyboard_interrupt():
    try:
        raise KeyboardInterrupt
    except KeyboardInterrupt:
        hint = {"exc_info": sys.exc_info()}

    assert before_send_hook({}, hint) is None
