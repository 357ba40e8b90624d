# coding: utf-8
"""
Risk Signal Collector

Gathers the raw facts the fraud score is computed from:
- Account age and verification flags
- Completion velocity (last minute) and daily volume
- Other accounts completing from the same IP
- Repeat attempts at the same task

Everything is counted live from the store. Risk must reflect the current
instant, so nothing here is cached.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.risk_config import VELOCITY_WINDOW_SECONDS, SHARED_IP_WINDOW_HOURS
from completion_engine.core.exceptions import UserNotFound
from completion_engine.database.models import User, Completion
from completion_engine.utils.time import ensure_utc, start_of_day, utc_now


@dataclass(frozen=True)
class RiskSignals:
    """Snapshot of risk facts for one (user, task) pair"""

    account_age_hours: float
    wallet_verified: bool
    twitter_verified: bool
    telegram_verified: bool
    completions_last_minute: int = 0
    completions_today: int = 0
    shared_ip_completions: int = 0
    prior_task_attempts: int = 0

    @property
    def any_social_verified(self) -> bool:
        return self.twitter_verified or self.telegram_verified


class RiskSignalCollector:
    """Collects RiskSignals from the database"""

    @staticmethod
    async def collect(
        session: AsyncSession,
        user_id: int,
        task_id: int,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RiskSignals:
        """
        Collect risk signals for a user attempting a task

        Args:
            session: Database session
            user_id: User ID
            task_id: Task ID
            ip_address: Client IP (shared-network check is skipped without it)
            now: Reference time (defaults to current UTC time)

        Returns:
            RiskSignals snapshot

        Raises:
            UserNotFound: If the user does not exist
        """
        now = ensure_utc(now) if now else utc_now()

        user = await session.get(User, user_id)
        if not user:
            raise UserNotFound(user_id)

        created_at = ensure_utc(user.created_at)
        account_age_hours = max((now - created_at).total_seconds() / 3600, 0.0)

        completions_last_minute = await RiskSignalCollector._count(
            session,
            Completion.user_id == user_id,
            Completion.completed_at >= now - timedelta(seconds=VELOCITY_WINDOW_SECONDS),
        )
        completions_today = await RiskSignalCollector._count(
            session,
            Completion.user_id == user_id,
            Completion.completed_at >= start_of_day(now),
        )

        shared_ip_completions = 0
        if ip_address:
            shared_ip_completions = await RiskSignalCollector._count(
                session,
                Completion.ip_address == ip_address,
                Completion.user_id != user_id,
                Completion.completed_at >= now - timedelta(hours=SHARED_IP_WINDOW_HOURS),
            )

        prior_task_attempts = await RiskSignalCollector._count(
            session,
            Completion.user_id == user_id,
            Completion.task_id == task_id,
        )

        signals = RiskSignals(
            account_age_hours=account_age_hours,
            wallet_verified=user.wallet_verified,
            twitter_verified=user.twitter_verified,
            telegram_verified=user.telegram_verified,
            completions_last_minute=completions_last_minute,
            completions_today=completions_today,
            shared_ip_completions=shared_ip_completions,
            prior_task_attempts=prior_task_attempts,
        )
        logger.debug(f"Collected risk signals for user {user_id}, task {task_id}: {signals}")
        return signals

    @staticmethod
    async def _count(session: AsyncSession, *conditions) -> int:
        stmt = select(func.count(Completion.id)).where(and_(*conditions))
        result = await session.execute(stmt)
        return result.scalar() or 0
