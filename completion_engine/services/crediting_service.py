# coding: utf-8
"""
Crediting Service

Moves a completion out of PENDING and credits its points exactly once.

Features:
- Single transaction: status change, points_awarded and balance increment
  commit together or not at all
- Optimistic lock: the status is re-read and the UPDATE is conditional on it,
  so two concurrent credits yield one success and one no-op
- Balance is changed by SQL increment, never read-modify-write
- A referee can be recorded on one credited completion only (unique column)
- Bounded retry with exponential backoff for store-level failures
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import DB_TRANSACTION_TIMEOUT_SECONDS
from config.risk_config import CREDIT_MAX_ATTEMPTS, CREDIT_BASE_DELAY_SECONDS
from completion_engine.core.enums import CompletionStatus, VerificationStatus
from completion_engine.core.exceptions import (
    AlreadyProcessed,
    CompletionNotFound,
    CompletionOwnershipMismatch,
    DuplicateReferralCredit,
    TaskNotFound,
    UserNotFound,
)
from completion_engine.database.engine import run_in_transaction
from completion_engine.database.models import Completion, Task, User
from completion_engine.utils.retry import retry_async
from completion_engine.utils.time import ensure_utc, utc_now


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a credit or reject call"""

    completion_id: int
    new_status: Optional[CompletionStatus]
    points_awarded: int = 0
    already_processed: bool = False
    user_id: Optional[int] = None

    @property
    def credited(self) -> bool:
        return not self.already_processed and self.points_awarded > 0


class CreditingProtocol:
    """
    Transactional crediting of completions

    Args:
        session_factory: Callable returning a new AsyncSession
        max_attempts: Total attempts for retryable failures
        base_delay: Backoff before the first retry, doubled each time
        transaction_timeout: Deadline per transaction attempt (seconds)
        sleep: Sleep coroutine used between retries
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        max_attempts: int = CREDIT_MAX_ATTEMPTS,
        base_delay: float = CREDIT_BASE_DELAY_SECONDS,
        transaction_timeout: float = DB_TRANSACTION_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.transaction_timeout = transaction_timeout
        self._sleep = sleep

    async def credit(
        self,
        completion_id: int,
        expected_status: CompletionStatus = CompletionStatus.PENDING,
        new_status: CompletionStatus = CompletionStatus.APPROVED,
        *,
        credited_for_user_id: Optional[int] = None,
        expected_user_id: Optional[int] = None,
        require_unflagged: bool = False,
        now: Optional[datetime] = None,
    ) -> CreditResult:
        """
        Credit a completion's task points to its owner

        Args:
            completion_id: Completion to credit
            expected_status: Status the completion must still be in
            new_status: AUTO_APPROVED (sweep) or APPROVED (admin / referral)
            credited_for_user_id: Referee recorded on referral rewards
            expected_user_id: Owner the completion must belong to
            require_unflagged: Refuse completions flagged for review meanwhile
            now: Credit timestamp (defaults to current UTC time)

        Returns:
            CreditResult; already_processed=True when the completion had
            already left expected_status (no-op)

        Raises:
            CompletionNotFound / TaskNotFound / CompletionOwnershipMismatch:
                Permanent failures, never retried
            DuplicateReferralCredit: credited_for_user_id is already recorded
                on another completion
            StoreError: When retryable failures exhaust all attempts
        """
        if expected_status != CompletionStatus.PENDING:
            raise ValueError("Only PENDING completions can be credited")
        if not CompletionStatus.is_credited(new_status):
            raise ValueError(f"{new_status} is not a credited status")

        async def attempt() -> CreditResult:
            return await run_in_transaction(
                self._session_factory,
                lambda session: self._credit_once(
                    session,
                    completion_id,
                    expected_status,
                    new_status,
                    credited_for_user_id=credited_for_user_id,
                    expected_user_id=expected_user_id,
                    require_unflagged=require_unflagged,
                    now=ensure_utc(now) if now else utc_now(),
                ),
                timeout=self.transaction_timeout,
            )

        try:
            return await retry_async(
                attempt,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                operation_name="credit_completion",
                context={"completion_id": completion_id},
                sleep=self._sleep,
            )
        except AlreadyProcessed as e:
            logger.info(f"Credit skipped: {e}")
            return CreditResult(
                completion_id=completion_id,
                new_status=await self._resolve_status(e),
                already_processed=True,
            )

    async def reject(
        self,
        completion_id: int,
        reviewer_id: Optional[int] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CreditResult:
        """
        Reject a pending completion (never credited)

        Same optimistic-lock and retry rules as credit().
        """

        async def attempt() -> CreditResult:
            return await run_in_transaction(
                self._session_factory,
                lambda session: self._reject_once(
                    session,
                    completion_id,
                    reviewer_id,
                    reason,
                    ensure_utc(now) if now else utc_now(),
                ),
                timeout=self.transaction_timeout,
            )

        try:
            return await retry_async(
                attempt,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                operation_name="reject_completion",
                context={"completion_id": completion_id},
                sleep=self._sleep,
            )
        except AlreadyProcessed as e:
            logger.info(f"Reject skipped: {e}")
            return CreditResult(
                completion_id=completion_id,
                new_status=await self._resolve_status(e),
                already_processed=True,
            )

    async def _resolve_status(self, error: AlreadyProcessed) -> Optional[CompletionStatus]:
        """Status the completion was left in; re-read when the lost race hid it"""
        if error.current_status:
            return CompletionStatus(error.current_status)

        async with self._session_factory() as session:
            status = await session.scalar(
                select(Completion.status).where(Completion.id == error.completion_id)
            )
        return CompletionStatus(status) if status else None

    @staticmethod
    async def _load_pending(
        session: AsyncSession,
        completion_id: int,
        expected_status: CompletionStatus,
    ) -> Completion:
        completion = await session.get(Completion, completion_id)
        if not completion:
            raise CompletionNotFound(completion_id)

        if completion.status != expected_status.value:
            raise AlreadyProcessed(completion_id, completion.status)

        return completion

    @staticmethod
    async def _credit_once(
        session: AsyncSession,
        completion_id: int,
        expected_status: CompletionStatus,
        new_status: CompletionStatus,
        *,
        credited_for_user_id: Optional[int],
        expected_user_id: Optional[int],
        require_unflagged: bool,
        now: datetime,
    ) -> CreditResult:
        # 1. Optimistic-lock check
        completion = await CreditingProtocol._load_pending(session, completion_id, expected_status)

        if expected_user_id is not None and completion.user_id != expected_user_id:
            raise CompletionOwnershipMismatch(completion_id, expected_user_id, completion.user_id)

        if require_unflagged and completion.needs_review:
            raise AlreadyProcessed(completion_id, completion.status, detail="flagged for review")

        task = await session.get(Task, completion.task_id)
        if not task:
            raise TaskNotFound(completion.task_id)

        points = task.points
        user_id = completion.user_id

        # 2. Conditional status change - zero rows means a concurrent writer won
        values = {
            "status": new_status.value,
            "verification_status": VerificationStatus.VERIFIED.value,
            "points_awarded": points,
            "completed_at": now,
        }
        if credited_for_user_id is not None:
            values["credited_for_user_id"] = credited_for_user_id

        conditions = [
            Completion.id == completion_id,
            Completion.status == expected_status.value,
            Completion.points_awarded == 0,
        ]
        if require_unflagged:
            conditions.append(Completion.needs_review.is_(False))

        stmt = (
            update(Completion)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await session.execute(stmt)
        except sa_exc.IntegrityError as e:
            if credited_for_user_id is not None and "unique" in str(e.orig or e).lower():
                raise DuplicateReferralCredit(completion_id, credited_for_user_id) from e
            raise
        if result.rowcount != 1:
            raise AlreadyProcessed(completion_id, detail="modified by a concurrent transaction")

        # 3. Balance increment in the same transaction
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(total_points=User.total_points + points)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise UserNotFound(user_id)

        logger.info(
            f"Credited completion {completion_id} ({new_status.value}): "
            f"+{points} points to user {user_id}"
        )

        return CreditResult(
            completion_id=completion_id,
            new_status=new_status,
            points_awarded=points,
            user_id=user_id,
        )

    @staticmethod
    async def _reject_once(
        session: AsyncSession,
        completion_id: int,
        reviewer_id: Optional[int],
        reason: Optional[str],
        now: datetime,
    ) -> CreditResult:
        completion = await CreditingProtocol._load_pending(session, completion_id, CompletionStatus.PENDING)

        stmt = (
            update(Completion)
            .where(
                Completion.id == completion_id,
                Completion.status == CompletionStatus.PENDING.value,
            )
            .values(
                status=CompletionStatus.REJECTED.value,
                verification_status=VerificationStatus.FLAGGED.value,
                reviewed_by=reviewer_id,
                reviewed_at=now,
                rejection_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise AlreadyProcessed(completion_id, detail="modified by a concurrent transaction")

        logger.info(f"Rejected completion {completion_id} (reviewer={reviewer_id}): {reason}")

        return CreditResult(
            completion_id=completion_id,
            new_status=CompletionStatus.REJECTED,
            user_id=completion.user_id,
        )
