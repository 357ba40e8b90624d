"""
Core Enums - shared types for the completion engine.

Defines:
- CompletionStatus: lifecycle of a task completion
- VerificationStatus: verification outcome stamped on a completion
- TaskType: kinds of campaign tasks
- AlertLevel: severity of out-of-band fraud alerts
- RiskLevel: display banding of a fraud score
- ReferralErrorType: classification used in referral processing logs
"""

from enum import Enum


class CompletionStatus(str, Enum):
    """Completion lifecycle. PENDING is the only non-terminal state."""

    PENDING = "PENDING"
    AUTO_APPROVED = "AUTO_APPROVED"  # Credited by the scheduler sweep
    APPROVED = "APPROVED"  # Credited by an admin or by referral matching
    REJECTED = "REJECTED"  # Never credited

    @classmethod
    def is_credited(cls, status: "CompletionStatus") -> bool:
        return status in (cls.AUTO_APPROVED, cls.APPROVED)


class VerificationStatus(str, Enum):
    """Verification state of a completion"""

    UNVERIFIED = "UNVERIFIED"
    VERIFIED = "VERIFIED"
    FLAGGED = "FLAGGED"


class TaskType(str, Enum):
    """Types of campaign tasks"""

    TWITTER_FOLLOW = "TWITTER_FOLLOW"
    TWITTER_LIKE = "TWITTER_LIKE"
    TWITTER_RETWEET = "TWITTER_RETWEET"
    TELEGRAM_JOIN = "TELEGRAM_JOIN"
    WALLET_CONNECT = "WALLET_CONNECT"
    CUSTOM = "CUSTOM"
    REFERRAL = "REFERRAL"  # Completed by someone else's registration


class AlertLevel(str, Enum):
    """Severity of a high-risk alert"""

    HIGH = "HIGH"  # 60-89
    CRITICAL = "CRITICAL"  # 90+


class RiskLevel(str, Enum):
    """Display banding of a fraud score"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReferralErrorType(str, Enum):
    """Error classification for referral processing records"""

    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    INVALID_REFERRAL_CODE = "INVALID_REFERRAL_CODE"
    REFERRER_NOT_FOUND = "REFERRER_NOT_FOUND"
    NO_PENDING_TASKS = "NO_PENDING_TASKS"
    DUPLICATE_COMPLETION = "DUPLICATE_COMPLETION"
    SELF_REFERRAL = "SELF_REFERRAL"
    DATABASE_ERROR = "DATABASE_ERROR"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @classmethod
    def is_recoverable(cls, error_type: "ReferralErrorType") -> bool:
        """Only store-level failures get the one recovery retry."""
        return error_type in (cls.DATABASE_ERROR, cls.TRANSACTION_FAILED)
