"""
Core module - shared enums and exceptions for the completion engine.
"""

from completion_engine.core.enums import (
    AlertLevel,
    CompletionStatus,
    ReferralErrorType,
    RiskLevel,
    TaskType,
    VerificationStatus,
)
from completion_engine.core.exceptions import (
    AlreadyProcessed,
    CompletionEngineError,
    CompletionNotFound,
    CompletionOwnershipMismatch,
    DuplicateReferralCredit,
    InvalidReferralCode,
    SelfReferral,
    StoreConnectionError,
    StoreError,
    TaskNotFound,
    TransactionTimeout,
    UserNotFound,
    WriteConflict,
)

__all__ = [
    "AlertLevel",
    "CompletionStatus",
    "ReferralErrorType",
    "RiskLevel",
    "TaskType",
    "VerificationStatus",
    "AlreadyProcessed",
    "CompletionEngineError",
    "CompletionNotFound",
    "CompletionOwnershipMismatch",
    "DuplicateReferralCredit",
    "InvalidReferralCode",
    "SelfReferral",
    "StoreConnectionError",
    "StoreError",
    "TaskNotFound",
    "TransactionTimeout",
    "UserNotFound",
    "WriteConflict",
]
