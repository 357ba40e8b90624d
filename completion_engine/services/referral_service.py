"""
Referral Credit Service

When a new user registers with a referral code, the referrer's oldest pending
referral-reward completion is credited.

Features:
- Format validation and referrer lookup by code
- Duplicate guard: a referee triggers at most one referral credit, enforced
  by the unique credited_for_user_id column under concurrent registrations
- Self-referral is refused
- Crediting goes through CreditingProtocol (optimistic lock, retries)
- One delayed recovery attempt for store-level failures
- Structured log record and timing for every step

Registration must succeed even when referral processing fails, so
process_referral() never raises.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select, func, and_
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.risk_config import (
    REFERRAL_PENDING_SCAN_LIMIT,
    REFERRAL_RECOVERY_DELAY_SECONDS,
    REFERRAL_SLOW_STEP_MS,
)
from completion_engine.core.enums import CompletionStatus, ReferralErrorType, TaskType
from completion_engine.core.exceptions import (
    AlreadyProcessed,
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
from completion_engine.database.models import Completion, Task
from completion_engine.services.crediting_service import CreditingProtocol
from completion_engine.services.referral_code import find_user_by_referral_code, is_valid_referral_code


SERVICE_NAME = "referral-automation"


@dataclass
class ReferralCreditResult:
    """Outcome of processing one referral registration"""

    success: bool
    completion_id: Optional[int] = None
    points_awarded: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[ReferralErrorType] = None
    message: Optional[str] = None


def classify_error(error: BaseException) -> ReferralErrorType:
    """Map an exception onto the referral error classification"""
    if isinstance(error, InvalidReferralCode):
        return ReferralErrorType.INVALID_REFERRAL_CODE
    if isinstance(error, SelfReferral):
        return ReferralErrorType.SELF_REFERRAL
    if isinstance(error, DuplicateReferralCredit):
        return ReferralErrorType.DUPLICATE_COMPLETION
    if isinstance(error, UserNotFound):
        return ReferralErrorType.REFERRER_NOT_FOUND
    if isinstance(error, (AlreadyProcessed, CompletionOwnershipMismatch, CompletionNotFound, TaskNotFound)):
        return ReferralErrorType.CONCURRENT_MODIFICATION
    if isinstance(error, WriteConflict):
        return ReferralErrorType.TRANSACTION_FAILED
    if isinstance(error, (StoreConnectionError, TransactionTimeout, StoreError)):
        return ReferralErrorType.DATABASE_ERROR
    if isinstance(error, (sa_exc.SQLAlchemyError, ConnectionError, TimeoutError)):
        return ReferralErrorType.DATABASE_ERROR
    return ReferralErrorType.UNKNOWN_ERROR


# ===========================
# STRUCTURED LOGGING
# ===========================


def _log_referral_error(error_type: ReferralErrorType, error: str, **context: Any) -> None:
    logger.bind(
        service=SERVICE_NAME,
        event="referral_error",
        error_type=error_type.value,
        **context,
    ).error(f"[Referral] {error_type.value}: {error}")


def _log_referral_success(**context: Any) -> None:
    logger.bind(
        service=SERVICE_NAME,
        event="referral_completion_success",
        **context,
    ).info(
        f"[Referral] Completion {context.get('completion_id')} credited "
        f"(+{context.get('points_awarded')} points) for referee {context.get('new_user_id')}"
    )


class _StepTimer:
    """Times one processing step; slow steps are logged at WARNING"""

    def __init__(self, operation: str):
        self.operation = operation
        self._started = time.perf_counter()

    def end(self, success: bool, **metadata: Any) -> float:
        duration_ms = (time.perf_counter() - self._started) * 1000
        bound = logger.bind(
            service=SERVICE_NAME,
            event="referral_performance_metric",
            operation=self.operation,
            duration_ms=round(duration_ms, 2),
            success=success,
            **metadata,
        )
        if duration_ms > REFERRAL_SLOW_STEP_MS:
            bound.warning(f"[Referral] {self.operation} took {duration_ms:.0f}ms")
        else:
            bound.debug(f"[Referral] {self.operation} took {duration_ms:.0f}ms")
        return duration_ms


# ===========================
# MATCHER
# ===========================


class ReferralCreditMatcher:
    """
    Credits the referrer's oldest pending referral-reward completion

    Args:
        session_factory: Callable returning a new AsyncSession
        crediting: Crediting protocol (built from session_factory when omitted)
        recovery_delay: Pause before the single recovery attempt (seconds)
        sleep: Sleep coroutine (overridable in tests)
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        crediting: Optional[CreditingProtocol] = None,
        recovery_delay: float = REFERRAL_RECOVERY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self.crediting = crediting or CreditingProtocol(session_factory)
        self.recovery_delay = recovery_delay
        self._sleep = sleep

    async def process_referral(self, referral_code: Optional[str], new_user_id: Optional[int]) -> ReferralCreditResult:
        """
        Process a registration made with a referral code

        Args:
            referral_code: Code entered at registration
            new_user_id: ID of the newly registered user (referee)

        Returns:
            ReferralCreditResult; never raises
        """
        overall = _StepTimer("referral_completion_overall")
        context = {"referral_code": referral_code, "new_user_id": new_user_id}

        if not referral_code or new_user_id is None:
            _log_referral_error(
                ReferralErrorType.INVALID_PARAMETERS,
                "Missing required parameters: referral_code and new_user_id",
                **context,
            )
            overall.end(False, reason="invalid_parameters")
            return ReferralCreditResult(
                success=False,
                error="Invalid parameters: referral_code and new_user_id are required",
                error_type=ReferralErrorType.INVALID_PARAMETERS,
            )

        if not is_valid_referral_code(referral_code):
            invalid = InvalidReferralCode(referral_code)
            error_type = classify_error(invalid)
            _log_referral_error(error_type, str(invalid), code_length=len(referral_code), **context)
            overall.end(False, reason="invalid_referral_code")
            return ReferralCreditResult(
                success=False,
                error="Invalid referral code format",
                error_type=error_type,
            )

        duplicate_timer = _StepTimer("duplicate_check")
        existing_id = await self._find_duplicate(new_user_id)
        duplicate_timer.end(True, found=existing_id is not None)

        if existing_id is not None:
            _log_referral_error(
                ReferralErrorType.DUPLICATE_COMPLETION,
                "Duplicate completion attempt detected",
                completion_id=existing_id,
                **context,
            )
            overall.end(False, reason="duplicate_completion")
            return ReferralCreditResult(
                success=False,
                error="Referral already processed for this user",
                error_type=ReferralErrorType.DUPLICATE_COMPLETION,
            )

        try:
            result = await self._match_and_credit(referral_code, new_user_id)
            overall.end(result.success, completion_id=result.completion_id)
            return result
        except (SelfReferral, DuplicateReferralCredit) as e:
            error_type = classify_error(e)
            _log_referral_error(error_type, str(e), **context)
            overall.end(False, error_type=error_type.value)
            return ReferralCreditResult(success=False, error=str(e), error_type=error_type)
        except Exception as e:
            error_type = classify_error(e)
            _log_referral_error(error_type, str(e), error_class=type(e).__name__, **context)
            overall.end(False, error_type=error_type.value)

            if ReferralErrorType.is_recoverable(error_type):
                recovered = await self._attempt_recovery(referral_code, new_user_id)
                if recovered is not None:
                    return recovered

            return ReferralCreditResult(
                success=False,
                error=str(e) or "Unknown error occurred",
                error_type=error_type,
            )

    async def _attempt_recovery(self, referral_code: str, new_user_id: int) -> Optional[ReferralCreditResult]:
        """Retry steps 3-6 once after a short pause. None when recovery failed."""
        logger.info(f"[Referral] Attempting recovery for referee {new_user_id} in {self.recovery_delay:.2f}s")
        await self._sleep(self.recovery_delay)

        try:
            result = await self._match_and_credit(referral_code, new_user_id)
        except (SelfReferral, DuplicateReferralCredit) as e:
            return ReferralCreditResult(success=False, error=str(e), error_type=classify_error(e))
        except Exception as e:
            _log_referral_error(
                classify_error(e),
                f"Recovery attempt failed: {e}",
                referral_code=referral_code,
                new_user_id=new_user_id,
            )
            return None

        if result.success and result.completion_id is not None:
            result.message = "Referral task completed successfully (recovered)"
        return result

    async def _find_duplicate(self, new_user_id: int) -> Optional[int]:
        """
        ID of a referral reward already credited for this referee

        A failing scan is logged and treated as "no duplicate" so a store
        hiccup does not block a legitimate referral.
        """
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(Completion.id)
                    .join(Task, Completion.task_id == Task.id)
                    .where(
                        Completion.credited_for_user_id == new_user_id,
                        Completion.status == CompletionStatus.APPROVED.value,
                        Task.task_type == TaskType.REFERRAL.value,
                    )
                    .limit(1)
                )
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except Exception as e:
            _log_referral_error(
                ReferralErrorType.DATABASE_ERROR,
                f"Failed to check for duplicate completion: {e}",
                new_user_id=new_user_id,
            )
            return None

    async def _match_and_credit(self, referral_code: str, new_user_id: int) -> ReferralCreditResult:
        """Steps 3-6: resolve referrer, scan pending rewards, credit the oldest"""
        async with self._session_factory() as session:
            find_timer = _StepTimer("find_referrer")
            referrer = await find_user_by_referral_code(session, referral_code)
            find_timer.end(True, found=referrer is not None)

            if not referrer:
                logger.info(f"[Referral] Referral code not found: {referral_code}")
                return ReferralCreditResult(success=True, message="No referrer found for code")

            referrer_id = referrer.id
            if referrer_id == new_user_id:
                raise SelfReferral(new_user_id)

            pending_timer = _StepTimer("find_pending_completions")
            pending = await self._find_pending_referral_completions(session, referrer_id)
            pending_timer.end(True, referrer_id=referrer_id, count=len(pending))

        if not pending:
            logger.info(f"[Referral] No pending referral tasks for user {referrer_id}")
            return ReferralCreditResult(success=True, message="No pending referral tasks")

        # Oldest first; a candidate taken by a concurrent registration is skipped
        for completion_id in pending:
            credit_timer = _StepTimer("complete_referral_task")
            result = await self.crediting.credit(
                completion_id,
                new_status=CompletionStatus.APPROVED,
                credited_for_user_id=new_user_id,
                expected_user_id=referrer_id,
            )
            credit_timer.end(not result.already_processed, completion_id=completion_id)

            if result.already_processed:
                logger.info(f"[Referral] Completion {completion_id} was processed concurrently, trying next")
                continue

            _log_referral_success(
                referral_code=referral_code,
                new_user_id=new_user_id,
                referrer_id=referrer_id,
                completion_id=completion_id,
                points_awarded=result.points_awarded,
            )
            return ReferralCreditResult(
                success=True,
                completion_id=completion_id,
                points_awarded=result.points_awarded,
                message="Referral task completed successfully",
            )

        logger.info(f"[Referral] All pending referral tasks of user {referrer_id} were taken concurrently")
        return ReferralCreditResult(success=True, message="No pending referral tasks")

    @staticmethod
    async def _find_pending_referral_completions(session: AsyncSession, referrer_id: int) -> list[int]:
        """IDs of the referrer's PENDING referral rewards on active tasks, oldest first"""
        stmt = (
            select(Completion.id)
            .join(Task, Completion.task_id == Task.id)
            .where(
                Completion.user_id == referrer_id,
                Completion.status == CompletionStatus.PENDING.value,
                Task.task_type == TaskType.REFERRAL.value,
                Task.is_active.is_(True),
            )
            .order_by(Completion.completed_at.asc(), Completion.id.asc())
            .limit(REFERRAL_PENDING_SCAN_LIMIT)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


# ===========================
# STATISTICS
# ===========================


async def get_referral_completion_stats(session: AsyncSession, user_id: int) -> dict:
    """
    Referral-reward statistics for a user

    Returns:
        Dict with completed_count, pending_count and total_points_earned
    """
    referral_conditions = and_(
        Completion.user_id == user_id,
        Task.task_type == TaskType.REFERRAL.value,
    )

    async def _count(status: CompletionStatus) -> int:
        stmt = (
            select(func.count(Completion.id))
            .join(Task, Completion.task_id == Task.id)
            .where(referral_conditions, Completion.status == status.value)
        )
        result = await session.execute(stmt)
        return result.scalar() or 0

    completed_count = await _count(CompletionStatus.APPROVED)
    pending_count = await _count(CompletionStatus.PENDING)

    stmt = (
        select(func.coalesce(func.sum(Completion.points_awarded), 0))
        .join(Task, Completion.task_id == Task.id)
        .where(referral_conditions, Completion.status == CompletionStatus.APPROVED.value)
    )
    result = await session.execute(stmt)
    total_points = result.scalar() or 0

    return {
        "completed_count": completed_count,
        "pending_count": pending_count,
        "total_points_earned": int(total_points),
    }
