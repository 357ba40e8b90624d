# coding: utf-8
"""
Completion Risk Configuration

Centralized scoring weights, thresholds and crediting bounds.
Hard-coded on purpose for now; review threshold, sampling rate and
deadlines are the likely candidates for operator-tunable settings.
"""

from typing import List, Tuple


# =======================
# ACCOUNT AGE BANDS
# =======================

# (max_age_hours, penalty, reason) - first matching band wins
ACCOUNT_AGE_BANDS: List[Tuple[float, int, str]] = [
    (1, 20, "Very new account (< 1 hour)"),
    (24, 10, "New account (< 24 hours)"),
    (72, 5, "Recent account (< 3 days)"),
]


# =======================
# VERIFICATION PENALTIES
# =======================

WALLET_UNVERIFIED_PENALTY = 15
NO_SOCIAL_VERIFIED_PENALTY = 10


# =======================
# BEHAVIOURAL PENALTIES
# =======================

VELOCITY_WINDOW_SECONDS = 60

# (count_strictly_above, penalty, reason) - checked top to bottom
VELOCITY_BANDS: List[Tuple[int, int, str]] = [
    (5, 20, "Too many completions in 1 minute"),
    (3, 10, "Fast completion rate"),
]

DAILY_VOLUME_BANDS: List[Tuple[int, int, str]] = [
    (50, 15, "Excessive daily completions (> 50)"),
    (30, 10, "High daily completions (> 30)"),
]

SHARED_IP_WINDOW_HOURS = 24

SHARED_IP_BANDS: List[Tuple[int, int, str]] = [
    (10, 10, "Multiple accounts from same IP"),
    (5, 5, "Shared IP detected"),
]

DUPLICATE_ATTEMPT_PENALTY = 10


# =======================
# REVIEW & DEADLINES
# =======================

MAX_FRAUD_SCORE = 100

REVIEW_SCORE_THRESHOLD = 40  # score >= 40 always goes to manual review
HIGH_RISK_SCORE_THRESHOLD = 60  # score >= 60 waits longest and raises an alert
CRITICAL_ALERT_THRESHOLD = 90

# Flat spot-check rate applied regardless of score
RANDOM_REVIEW_RATE = 0.20

DEFAULT_AUTO_APPROVE_HOURS = 24
REVIEW_AUTO_APPROVE_HOURS = 36
HIGH_RISK_AUTO_APPROVE_HOURS = 48

# Display banding (dashboards): upper bounds, exclusive
RISK_LEVEL_LOW_BELOW = 20
RISK_LEVEL_MEDIUM_BELOW = 40
RISK_LEVEL_HIGH_BELOW = 70


# =======================
# CREDITING
# =======================

CREDIT_MAX_ATTEMPTS = 3
CREDIT_BASE_DELAY_SECONDS = 0.05  # 50ms, 100ms, ...


# =======================
# REFERRALS
# =======================

REFERRAL_CODE_PATTERN = r"^[A-Z0-9]{6,12}$"
REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_FALLBACK_LENGTH = 12
REFERRAL_CODE_MAX_ATTEMPTS = 10

# No 0/O/I/1 to keep codes readable
REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

REFERRAL_PENDING_SCAN_LIMIT = 10
REFERRAL_RECOVERY_DELAY_SECONDS = 0.1
REFERRAL_SLOW_STEP_MS = 500
