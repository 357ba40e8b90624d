"""
Completion Intake Service

Records a task submission as a PENDING completion stamped with its fraud
score, review flag and auto-approval deadline.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from completion_engine.core.enums import CompletionStatus, VerificationStatus
from completion_engine.core.exceptions import TaskNotFound
from completion_engine.database.models import Completion, Task
from completion_engine.services.fraud_detection_service import FraudAssessment, FraudScoreEngine
from completion_engine.services.risk_signals import RiskSignalCollector
from completion_engine.utils.time import ensure_utc, utc_now


class CompletionIntakeService:
    """Task submission flow: collect signals, score, persist"""

    def __init__(self, fraud_engine: Optional[FraudScoreEngine] = None):
        self.fraud_engine = fraud_engine or FraudScoreEngine()

    async def record_completion(
        self,
        session: AsyncSession,
        user_id: int,
        task_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Completion, FraudAssessment]:
        """
        Create a PENDING completion for a submitted task

        The caller owns the transaction; the new row is flushed so its id is
        available, but not committed.

        Args:
            session: Database session
            user_id: Submitting user
            task_id: Submitted task
            ip_address: Client IP
            user_agent: Client user agent
            now: Submission time (defaults to current UTC time)

        Returns:
            Tuple of (completion, assessment)

        Raises:
            UserNotFound: If the user does not exist
            TaskNotFound: If the task does not exist
        """
        now = ensure_utc(now) if now else utc_now()

        task = await session.get(Task, task_id)
        if not task:
            raise TaskNotFound(task_id)

        signals = await RiskSignalCollector.collect(session, user_id, task_id, ip_address=ip_address, now=now)
        assessment = await self.fraud_engine.assess(signals, user_id, now=now)

        completion = Completion(
            user_id=user_id,
            task_id=task_id,
            status=CompletionStatus.PENDING.value,
            verification_status=VerificationStatus.UNVERIFIED.value,
            fraud_score=assessment.score,
            needs_review=assessment.needs_review,
            auto_approve_at=assessment.auto_approve_at,
            points_awarded=0,
            ip_address=ip_address,
            user_agent=user_agent,
            completed_at=now,
        )
        session.add(completion)
        await session.flush()

        logger.info(
            f"Recorded completion {completion.id} for user {user_id}, task {task_id}: "
            f"score={assessment.score}, needs_review={assessment.needs_review}"
        )
        if assessment.reasons:
            logger.debug(f"Completion {completion.id} risk reasons: {', '.join(assessment.reasons)}")

        return completion, assessment
