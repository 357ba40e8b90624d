"""
Tests for fraud scoring
Covers score bounds, monotonicity, the review gate, deadlines and alerting
"""

import asyncio
import pytest
from dataclasses import replace
from datetime import datetime, UTC, timedelta

from completion_engine.core.enums import AlertLevel, RiskLevel
from completion_engine.services.fraud_detection_service import (
    FraudScoreEngine,
    RANDOM_REVIEW_REASON,
    DUPLICATE_ATTEMPT_REASON,
    WALLET_UNVERIFIED_REASON,
    NO_SOCIAL_VERIFIED_REASON,
    get_alert_level,
    get_client_ip,
    get_fraud_risk_level,
)
from completion_engine.services.risk_signals import RiskSignals


NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)

# Draw that never triggers the random spot-check
NO_SAMPLE = 0.99


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def clean_signals(**overrides) -> RiskSignals:
    """Week-old, fully verified, idle user"""
    signals = RiskSignals(
        account_age_hours=24 * 7,
        wallet_verified=True,
        twitter_verified=True,
        telegram_verified=True,
    )
    return replace(signals, **overrides)


def engine_with_draw(draw: float = NO_SAMPLE, alert_sink=None, alert_timeout: float = 2.0) -> FraudScoreEngine:
    return FraudScoreEngine(random_source=lambda: draw, alert_sink=alert_sink, alert_timeout=alert_timeout)


class RecordingSink:
    """Alert sink that remembers every notification"""

    def __init__(self):
        self.alerts = []

    async def notify(self, user_id, score, level, reasons):
        self.alerts.append((user_id, score, level, list(reasons)))


class FailingSink:
    async def notify(self, user_id, score, level, reasons):
        raise RuntimeError("alert channel down")


class SlowSink:
    async def notify(self, user_id, score, level, reasons):
        await asyncio.sleep(5)


# ============================================================================
# SCENARIOS
# ============================================================================


def test_verified_idle_user_scores_low():
    """A 7-day-old fully verified idle user is low risk and not flagged"""
    assessment = engine_with_draw().score(clean_signals(), now=NOW)

    assert assessment.score < 15
    assert assessment.needs_review is False
    assert assessment.sampled is False
    assert assessment.reasons == []
    assert assessment.auto_approve_at == NOW + timedelta(hours=24)


def test_new_unverified_user_with_burst_is_flagged():
    """Brand-new unverified user with six completions of one task in a minute"""
    signals = RiskSignals(
        account_age_hours=0.5,
        wallet_verified=False,
        twitter_verified=False,
        telegram_verified=False,
        completions_last_minute=6,
        completions_today=6,
        prior_task_attempts=6,
    )

    assessment = engine_with_draw().score(signals, now=NOW)

    assert assessment.score >= 70
    assert assessment.score == 75
    assert assessment.needs_review is True
    assert assessment.auto_approve_at == NOW + timedelta(hours=48)
    assert "Very new account (< 1 hour)" in assessment.reasons
    assert WALLET_UNVERIFIED_REASON in assessment.reasons
    assert NO_SOCIAL_VERIFIED_REASON in assessment.reasons
    assert "Too many completions in 1 minute" in assessment.reasons
    assert DUPLICATE_ATTEMPT_REASON in assessment.reasons
    assert RANDOM_REVIEW_REASON not in assessment.reasons


def test_worst_case_is_capped_at_100():
    """Every rule firing at its top band stays within bounds"""
    signals = RiskSignals(
        account_age_hours=0,
        wallet_verified=False,
        twitter_verified=False,
        telegram_verified=False,
        completions_last_minute=100,
        completions_today=100,
        shared_ip_completions=100,
        prior_task_attempts=100,
    )

    assessment = engine_with_draw().score(signals, now=NOW)

    assert assessment.score == 100
    assert assessment.alert_level == AlertLevel.CRITICAL


# ============================================================================
# RULES
# ============================================================================


@pytest.mark.parametrize(
    "age_hours,expected",
    [(0.5, 20), (1, 10), (23.9, 10), (24, 5), (71.9, 5), (72, 0), (1000, 0)],
)
def test_account_age_bands(age_hours, expected):
    """Only the youngest matching age band applies"""
    assessment = engine_with_draw().score(clean_signals(account_age_hours=age_hours), now=NOW)
    assert assessment.score == expected


def test_social_verification_needs_only_one_channel():
    """Either twitter or telegram is enough to avoid the social penalty"""
    engine = engine_with_draw()

    only_twitter = engine.score(clean_signals(telegram_verified=False), now=NOW)
    only_telegram = engine.score(clean_signals(twitter_verified=False), now=NOW)
    neither = engine.score(clean_signals(twitter_verified=False, telegram_verified=False), now=NOW)

    assert only_twitter.score == 0
    assert only_telegram.score == 0
    assert neither.score == 10
    assert neither.reasons == [NO_SOCIAL_VERIFIED_REASON]


@pytest.mark.parametrize(
    "field,value,expected",
    [
        ("completions_last_minute", 3, 0),
        ("completions_last_minute", 4, 10),
        ("completions_last_minute", 6, 20),
        ("completions_today", 30, 0),
        ("completions_today", 31, 10),
        ("completions_today", 51, 15),
        ("shared_ip_completions", 5, 0),
        ("shared_ip_completions", 6, 5),
        ("shared_ip_completions", 11, 10),
        ("prior_task_attempts", 1, 10),
    ],
)
def test_activity_bands_use_strict_thresholds(field, value, expected):
    """Count thresholds trigger only when strictly exceeded"""
    assessment = engine_with_draw().score(clean_signals(**{field: value}), now=NOW)
    assert assessment.score == expected


def test_score_always_in_bounds():
    """Score stays within 0-100 across a spread of inputs"""
    engine = engine_with_draw()

    for age in (0, 12, 48, 500):
        for verified in (True, False):
            for count in (0, 4, 6, 40, 60):
                signals = RiskSignals(
                    account_age_hours=age,
                    wallet_verified=verified,
                    twitter_verified=verified,
                    telegram_verified=False,
                    completions_last_minute=count,
                    completions_today=count,
                    shared_ip_completions=count,
                    prior_task_attempts=count,
                )
                assessment = engine.score(signals, now=NOW)
                assert 0 <= assessment.score <= 100


def test_score_monotonic_in_each_signal():
    """Worsening any single signal never lowers the score"""
    engine = engine_with_draw()
    base = clean_signals()

    sequences = {
        "account_age_hours": [500, 71, 23, 0.5, 0],
        "wallet_verified": [True, False],
        "twitter_verified": [True, False],
        "completions_last_minute": [0, 3, 4, 5, 6, 50],
        "completions_today": [0, 30, 31, 50, 51, 500],
        "shared_ip_completions": [0, 5, 6, 10, 11, 100],
        "prior_task_attempts": [0, 1, 5],
    }

    for field, values in sequences.items():
        scores = [engine.score(replace(base, **{field: v}), now=NOW).score for v in values]
        assert scores == sorted(scores), f"{field} is not monotonic: {scores}"


# ============================================================================
# REVIEW GATE AND DEADLINES
# ============================================================================


def test_high_score_always_needs_review():
    """Score >= 40 forces review whatever the random draw"""
    signals = clean_signals(account_age_hours=0.5, wallet_verified=False, twitter_verified=False, telegram_verified=False)

    for draw in (0.0, 0.5, 0.99):
        assessment = engine_with_draw(draw).score(signals, now=NOW)
        assert assessment.score == 45
        assert assessment.needs_review is True
        assert RANDOM_REVIEW_REASON not in assessment.reasons


def test_random_spot_check_flags_low_score():
    """A draw below 0.20 flags an otherwise clean completion"""
    assessment = engine_with_draw(0.1).score(clean_signals(), now=NOW)

    assert assessment.score == 0
    assert assessment.needs_review is True
    assert assessment.sampled is True
    assert assessment.reasons == [RANDOM_REVIEW_REASON]
    assert assessment.auto_approve_at == NOW + timedelta(hours=24)


def test_spot_check_boundary_draw_not_sampled():
    """The sampling rate is exclusive"""
    assessment = engine_with_draw(0.2).score(clean_signals(), now=NOW)
    assert assessment.needs_review is False


def test_deadline_ordering():
    """Riskier completions wait longer before auto-approval"""
    engine = engine_with_draw()

    low = engine.score(clean_signals(), now=NOW)
    medium = engine.score(clean_signals(account_age_hours=0.5, wallet_verified=False, telegram_verified=False, twitter_verified=False), now=NOW)
    high = engine.score(
        clean_signals(account_age_hours=0.5, wallet_verified=False, completions_last_minute=6, prior_task_attempts=1),
        now=NOW,
    )

    assert low.score < 40
    assert 40 <= medium.score < 60
    assert high.score >= 60

    assert medium.auto_approve_at == NOW + timedelta(hours=36)
    assert high.auto_approve_at == NOW + timedelta(hours=48)
    assert high.auto_approve_at >= medium.auto_approve_at >= low.auto_approve_at


def test_naive_now_is_treated_as_utc():
    """Naive reference times are read as UTC"""
    naive = NOW.replace(tzinfo=None)
    assessment = engine_with_draw().score(clean_signals(), now=naive)
    assert assessment.auto_approve_at == NOW + timedelta(hours=24)


# ============================================================================
# ALERTS
# ============================================================================


@pytest.mark.asyncio
async def test_assess_alerts_on_high_risk():
    """Scores >= 60 notify the alert sink with HIGH level"""
    sink = RecordingSink()
    signals = clean_signals(account_age_hours=0.5, wallet_verified=False, completions_last_minute=6, prior_task_attempts=1)

    assessment = await engine_with_draw(alert_sink=sink).assess(signals, user_id=42, now=NOW)

    assert assessment.score == 65
    assert len(sink.alerts) == 1
    user_id, score, level, reasons = sink.alerts[0]
    assert (user_id, score, level) == (42, 65, AlertLevel.HIGH)
    assert reasons == assessment.reasons


@pytest.mark.asyncio
async def test_assess_no_alert_below_threshold():
    """Medium scores are flagged but not alerted"""
    sink = RecordingSink()
    signals = clean_signals(account_age_hours=0.5, wallet_verified=False, twitter_verified=False, telegram_verified=False)

    assessment = await engine_with_draw(alert_sink=sink).assess(signals, user_id=1, now=NOW)

    assert assessment.needs_review is True
    assert sink.alerts == []


@pytest.mark.asyncio
async def test_alert_failure_does_not_change_assessment():
    """A failing alert sink is logged, scoring result is unchanged"""
    signals = clean_signals(account_age_hours=0, wallet_verified=False, completions_last_minute=10, completions_today=60)
    expected = engine_with_draw().score(signals, now=NOW)

    assessment = await engine_with_draw(alert_sink=FailingSink()).assess(signals, user_id=7, now=NOW)

    assert assessment == expected


@pytest.mark.asyncio
async def test_slow_alert_is_bounded():
    """Alert dispatch gives up after its timeout"""
    signals = clean_signals(account_age_hours=0, wallet_verified=False, completions_last_minute=10, completions_today=60)

    assessment = await asyncio.wait_for(
        engine_with_draw(alert_sink=SlowSink(), alert_timeout=0.01).assess(signals, user_id=7, now=NOW),
        timeout=2,
    )

    assert assessment.score >= 60


@pytest.mark.parametrize(
    "score,level",
    [(0, None), (59, None), (60, AlertLevel.HIGH), (89, AlertLevel.HIGH), (90, AlertLevel.CRITICAL), (100, AlertLevel.CRITICAL)],
)
def test_alert_levels(score, level):
    assert get_alert_level(score) == level


# ============================================================================
# DISPLAY HELPERS
# ============================================================================


@pytest.mark.parametrize(
    "score,level",
    [
        (0, RiskLevel.LOW),
        (19, RiskLevel.LOW),
        (20, RiskLevel.MEDIUM),
        (39, RiskLevel.MEDIUM),
        (40, RiskLevel.HIGH),
        (69, RiskLevel.HIGH),
        (70, RiskLevel.CRITICAL),
        (100, RiskLevel.CRITICAL),
    ],
)
def test_fraud_risk_level_bands(score, level):
    """Display banding of scores"""
    risk_level, description = get_fraud_risk_level(score)
    assert risk_level == level
    assert description


def test_client_ip_from_headers():
    """First forwarded hop wins, then X-Real-IP, else unknown"""
    assert get_client_ip({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}) == "203.0.113.5"
    assert get_client_ip({"x-real-ip": " 198.51.100.7 "}) == "198.51.100.7"
    assert get_client_ip({}) == "unknown"
