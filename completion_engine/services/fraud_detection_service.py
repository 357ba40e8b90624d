"""
Fraud Detection Service

Scores task completions and decides whether they need manual review:
- Additive heuristic score (0-100) with a human-readable reason per rule
- Manual review for high scores plus a flat random spot-check
- Longer auto-approval delay for riskier completions
- Out-of-band alert for high and critical scores

The random source is injected so scoring is reproducible in tests.
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from config.config import ALERT_DISPATCH_TIMEOUT_SECONDS
from config.risk_config import (
    ACCOUNT_AGE_BANDS,
    WALLET_UNVERIFIED_PENALTY,
    NO_SOCIAL_VERIFIED_PENALTY,
    VELOCITY_BANDS,
    DAILY_VOLUME_BANDS,
    SHARED_IP_BANDS,
    DUPLICATE_ATTEMPT_PENALTY,
    MAX_FRAUD_SCORE,
    REVIEW_SCORE_THRESHOLD,
    HIGH_RISK_SCORE_THRESHOLD,
    CRITICAL_ALERT_THRESHOLD,
    RANDOM_REVIEW_RATE,
    DEFAULT_AUTO_APPROVE_HOURS,
    REVIEW_AUTO_APPROVE_HOURS,
    HIGH_RISK_AUTO_APPROVE_HOURS,
    RISK_LEVEL_LOW_BELOW,
    RISK_LEVEL_MEDIUM_BELOW,
    RISK_LEVEL_HIGH_BELOW,
)
from completion_engine.core.enums import AlertLevel, RiskLevel
from completion_engine.services.risk_signals import RiskSignals
from completion_engine.utils.time import ensure_utc, utc_now


RANDOM_REVIEW_REASON = "Random verification check"
DUPLICATE_ATTEMPT_REASON = "Duplicate task completion attempt"
WALLET_UNVERIFIED_REASON = "Wallet not verified"
NO_SOCIAL_VERIFIED_REASON = "No social media verified"


# ===========================
# ALERTS
# ===========================


class AlertSink(Protocol):
    """Receives high-risk notifications. Delivery is up to the implementation."""

    async def notify(
        self,
        user_id: int,
        score: int,
        level: AlertLevel,
        reasons: Sequence[str],
    ) -> None:
        ...


class LoggingAlertSink:
    """Default sink: writes the alert to the log"""

    async def notify(
        self,
        user_id: int,
        score: int,
        level: AlertLevel,
        reasons: Sequence[str],
    ) -> None:
        logger.bind(
            event="fraud_alert",
            user_id=user_id,
            fraud_score=score,
            level=level.value,
            reasons=list(reasons),
        ).warning(f"{level.value} fraud risk for user {user_id}: score {score}")


def get_alert_level(score: int) -> Optional[AlertLevel]:
    """Alert severity for a score, None when below the alert threshold"""
    if score >= CRITICAL_ALERT_THRESHOLD:
        return AlertLevel.CRITICAL
    if score >= HIGH_RISK_SCORE_THRESHOLD:
        return AlertLevel.HIGH
    return None


def get_fraud_risk_level(score: int) -> Tuple[RiskLevel, str]:
    """
    Display banding of a fraud score

    Returns:
        Tuple of (risk level, description)
    """
    if score < RISK_LEVEL_LOW_BELOW:
        return RiskLevel.LOW, "Low risk - likely legitimate"
    if score < RISK_LEVEL_MEDIUM_BELOW:
        return RiskLevel.MEDIUM, "Medium risk - monitor closely"
    if score < RISK_LEVEL_HIGH_BELOW:
        return RiskLevel.HIGH, "High risk - requires review"
    return RiskLevel.CRITICAL, "Critical risk - likely fraudulent"


def get_client_ip(headers: dict) -> str:
    """
    Client IP from proxy headers (first X-Forwarded-For hop, then X-Real-IP)
    """
    normalized = {key.lower(): value for key, value in headers.items()}

    forwarded = normalized.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = normalized.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return "unknown"


# ===========================
# SCORING
# ===========================


@dataclass
class FraudAssessment:
    """Result of scoring one completion"""

    score: int
    needs_review: bool
    auto_approve_at: datetime
    reasons: List[str] = field(default_factory=list)
    sampled: bool = False

    @property
    def alert_level(self) -> Optional[AlertLevel]:
        return get_alert_level(self.score)


def _apply_bands(value: int, bands: Sequence[Tuple[int, int, str]], reasons: List[str]) -> int:
    """Penalty of the first band whose threshold value strictly exceeds"""
    for threshold, penalty, reason in bands:
        if value > threshold:
            reasons.append(reason)
            return penalty
    return 0


class FraudScoreEngine:
    """
    Heuristic fraud scoring

    Args:
        random_source: Callable returning a uniform float in [0, 1) used for
            the spot-check draw
        alert_sink: Receiver for high-risk alerts
        alert_timeout: Seconds to wait for the alert sink before giving up
    """

    def __init__(
        self,
        random_source: Optional[Callable[[], float]] = None,
        alert_sink: Optional[AlertSink] = None,
        alert_timeout: float = ALERT_DISPATCH_TIMEOUT_SECONDS,
    ):
        self._random = random_source or random.Random().random
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.alert_timeout = alert_timeout

    def score(self, signals: RiskSignals, now: Optional[datetime] = None) -> FraudAssessment:
        """
        Score risk signals

        Deterministic for fixed signals, fixed `now` and a fixed random draw.

        Args:
            signals: Collected risk signals
            now: Reference time for the auto-approval deadline

        Returns:
            FraudAssessment
        """
        now = ensure_utc(now) if now else utc_now()
        score = 0
        reasons: List[str] = []

        # 1. Account age - first (youngest) matching band only
        for max_age_hours, penalty, reason in ACCOUNT_AGE_BANDS:
            if signals.account_age_hours < max_age_hours:
                score += penalty
                reasons.append(reason)
                break

        # 2. Wallet verification
        if not signals.wallet_verified:
            score += WALLET_UNVERIFIED_PENALTY
            reasons.append(WALLET_UNVERIFIED_REASON)

        # 3. Social verification
        if not signals.any_social_verified:
            score += NO_SOCIAL_VERIFIED_PENALTY
            reasons.append(NO_SOCIAL_VERIFIED_REASON)

        # 4-6. Velocity, daily volume, shared network
        score += _apply_bands(signals.completions_last_minute, VELOCITY_BANDS, reasons)
        score += _apply_bands(signals.completions_today, DAILY_VOLUME_BANDS, reasons)
        score += _apply_bands(signals.shared_ip_completions, SHARED_IP_BANDS, reasons)

        # 7. Repeat attempt at the same task
        if signals.prior_task_attempts > 0:
            score += DUPLICATE_ATTEMPT_PENALTY
            reasons.append(DUPLICATE_ATTEMPT_REASON)

        score = min(score, MAX_FRAUD_SCORE)

        high_risk = score >= REVIEW_SCORE_THRESHOLD
        sampled = self._random() < RANDOM_REVIEW_RATE
        needs_review = high_risk or sampled

        if sampled and not high_risk:
            reasons.append(RANDOM_REVIEW_REASON)

        if score >= HIGH_RISK_SCORE_THRESHOLD:
            hours_to_wait = HIGH_RISK_AUTO_APPROVE_HOURS
        elif score >= REVIEW_SCORE_THRESHOLD:
            hours_to_wait = REVIEW_AUTO_APPROVE_HOURS
        else:
            hours_to_wait = DEFAULT_AUTO_APPROVE_HOURS

        return FraudAssessment(
            score=score,
            needs_review=needs_review,
            auto_approve_at=now + timedelta(hours=hours_to_wait),
            reasons=reasons,
            sampled=sampled,
        )

    async def assess(
        self,
        signals: RiskSignals,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> FraudAssessment:
        """
        Score signals and raise an alert for high-risk results

        Alert failures are logged and never change the assessment.
        """
        assessment = self.score(signals, now=now)

        level = assessment.alert_level
        if level is not None:
            await self._dispatch_alert(user_id, assessment, level)

        return assessment

    async def _dispatch_alert(self, user_id: int, assessment: FraudAssessment, level: AlertLevel) -> None:
        try:
            async with asyncio.timeout(self.alert_timeout):
                await self.alert_sink.notify(user_id, assessment.score, level, list(assessment.reasons))
        except Exception as e:
            logger.bind(
                user_id=user_id,
                fraud_score=assessment.score,
                level=level.value,
                error_type=type(e).__name__,
            ).error(f"Failed to dispatch fraud alert for user {user_id}: {e!r}")
