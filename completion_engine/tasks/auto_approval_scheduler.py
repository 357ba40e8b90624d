"""
Auto-Approval Scheduler

Background task that periodically credits pending completions whose
auto-approval deadline has passed.

Only un-flagged completions are touched; anything marked needs_review waits
for a human.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import AUTO_APPROVAL_INTERVAL_SECONDS
from config.sentry import capture_exception
from completion_engine.core.enums import CompletionStatus
from completion_engine.database.engine import get_session_maker
from completion_engine.database.models import Completion
from completion_engine.services.crediting_service import CreditingProtocol
from completion_engine.utils.time import ensure_utc, utc_now


class AutoApprovalScheduler:
    """
    Sweeps due completions into AUTO_APPROVED

    Args:
        session_factory: Callable returning a new AsyncSession
        crediting: Crediting protocol (built from session_factory when omitted)
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        crediting: Optional[CreditingProtocol] = None,
    ):
        self._session_factory = session_factory
        self.crediting = crediting or CreditingProtocol(session_factory)

    async def find_due_completions(self, now: datetime) -> list[int]:
        """IDs of un-flagged PENDING completions past their deadline, oldest deadline first"""
        async with self._session_factory() as session:
            stmt = (
                select(Completion.id)
                .where(
                    Completion.status == CompletionStatus.PENDING.value,
                    Completion.needs_review.is_(False),
                    Completion.auto_approve_at.is_not(None),
                    Completion.auto_approve_at <= now,
                )
                .order_by(Completion.auto_approve_at.asc(), Completion.id.asc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Credit every due completion

        Each completion is credited in its own transaction. A failed item is
        logged and left PENDING for the next run; it never aborts the sweep.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            Number of completions credited by this sweep
        """
        now = ensure_utc(now) if now else utc_now()
        due_ids = await self.find_due_completions(now)

        if not due_ids:
            logger.debug("Auto-approval sweep: nothing due")
            return 0

        approved = 0
        skipped = 0
        failed = 0

        for completion_id in due_ids:
            try:
                result = await self.crediting.credit(
                    completion_id,
                    new_status=CompletionStatus.AUTO_APPROVED,
                    require_unflagged=True,
                    now=now,
                )
            except Exception as e:
                failed += 1
                logger.bind(completion_id=completion_id, error_type=type(e).__name__).warning(
                    f"Auto-approval of completion {completion_id} failed: {e}"
                )
                capture_exception(e, completion_id=completion_id, job="auto_approval")
                continue

            if result.already_processed:
                skipped += 1
            else:
                approved += 1

        logger.info(
            f"Auto-approval sweep: {approved} approved, {skipped} skipped, "
            f"{failed} failed, {len(due_ids)} due"
        )
        return approved


async def run_auto_approval() -> None:
    """
    Scheduled job entry point

    Errors are logged, never raised into the scheduler.
    """
    try:
        logger.info("Starting auto-approval sweep")
        start_time = utc_now()

        scheduler = AutoApprovalScheduler(get_session_maker())
        approved = await scheduler.sweep()

        duration = (utc_now() - start_time).total_seconds()
        logger.info(f"Auto-approval sweep completed in {duration:.2f}s: {approved} approved")

    except Exception as e:
        logger.exception(f"Fatal error in auto-approval scheduler: {e}")


def schedule_auto_approval_tasks(scheduler, interval_seconds: int = AUTO_APPROVAL_INTERVAL_SECONDS):
    """
    Schedule the auto-approval sweep

    Args:
        scheduler: APScheduler instance
        interval_seconds: Seconds between sweeps
    """
    scheduler.add_job(
        run_auto_approval,
        trigger='interval',
        seconds=interval_seconds,
        id='auto_approve_completions',
        name='Credit due pending completions',
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
    )

    logger.info(f"Auto-approval scheduler configured: sweeping every {interval_seconds}s")
