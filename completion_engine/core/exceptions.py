"""
Exception taxonomy for the completion engine.

Benign outcomes (AlreadyProcessed, InvalidReferralCode, SelfReferral,
DuplicateReferralCredit) are raised internally to abort a transaction or
short-circuit retries; public entry points turn them into result values.
"""

from typing import Optional


class CompletionEngineError(Exception):
    """Base class for all engine errors"""

    retryable: bool = False


class UserNotFound(CompletionEngineError):
    """Raised when a user row does not exist"""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class TaskNotFound(CompletionEngineError):
    """Raised when a task row does not exist"""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class CompletionNotFound(CompletionEngineError):
    """Raised when a completion row does not exist"""

    def __init__(self, completion_id: int):
        self.completion_id = completion_id
        super().__init__(f"Completion {completion_id} not found")


class AlreadyProcessed(CompletionEngineError):
    """Completion is no longer in the expected state. No-op signal, not a failure."""

    def __init__(self, completion_id: int, current_status: Optional[str] = None, detail: str = ""):
        self.completion_id = completion_id
        self.current_status = current_status
        message = f"Completion {completion_id} is not PENDING (current status: {current_status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidReferralCode(CompletionEngineError):
    """Referral code does not match the expected format"""

    def __init__(self, code: Optional[str]):
        self.code = code
        super().__init__(f"Invalid referral code format: {code!r}")


class SelfReferral(CompletionEngineError):
    """Referral code belongs to the user being registered"""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} cannot refer themselves")


class DuplicateReferralCredit(CompletionEngineError):
    """Referee has already credited another referral reward"""

    def __init__(self, completion_id: int, referee_id: int):
        self.completion_id = completion_id
        self.referee_id = referee_id
        super().__init__(
            f"Referee {referee_id} already credited a referral reward (completion {completion_id} refused)"
        )


class StoreError(CompletionEngineError):
    """Store-level failure. Safe to retry the whole transaction."""

    retryable = True


class StoreConnectionError(StoreError):
    """Connection to the store was lost or could not be acquired"""


class WriteConflict(StoreError):
    """Another transaction touched the same rows (serialization failure, deadlock, lock)"""


class TransactionTimeout(StoreError):
    """Transaction exceeded its deadline"""


class CompletionOwnershipMismatch(CompletionEngineError):
    """Completion belongs to a different user than the caller expected"""

    def __init__(self, completion_id: int, expected_user_id: int, actual_user_id: int):
        self.completion_id = completion_id
        self.expected_user_id = expected_user_id
        self.actual_user_id = actual_user_id
        super().__init__(
            f"Completion {completion_id} does not belong to user {expected_user_id} "
            f"(owner: {actual_user_id})"
        )
