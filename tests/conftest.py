"""
Pytest configuration and fixtures for Completion Engine tests
"""

import pytest
from datetime import datetime, UTC
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from completion_engine.core.enums import CompletionStatus, TaskType
from completion_engine.database.models import Base, Completion, Task, User


# Fixed reference instant shared by time-sensitive tests
NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(scope="function")
async def test_db_engine(tmp_path):
    """
    Create test database engine

    File-backed SQLite so concurrent sessions get their own connections
    and real write locks.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}",
        connect_args={"timeout": 5},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the test engine
    """
    return async_sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session (used for seeding)
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# DATA FACTORIES
# ============================================================================


@pytest.fixture
def make_user(db_session):
    """Create and commit a user"""

    async def _make_user(
        created_at: datetime = NOW,
        wallet_verified: bool = False,
        twitter_verified: bool = False,
        telegram_verified: bool = False,
        referral_code: Optional[str] = None,
        total_points: int = 0,
        username: Optional[str] = None,
    ) -> User:
        user = User(
            username=username,
            created_at=created_at,
            wallet_verified=wallet_verified,
            twitter_verified=twitter_verified,
            telegram_verified=telegram_verified,
            referral_code=referral_code,
            total_points=total_points,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_task(db_session):
    """Create and commit a task"""

    async def _make_task(
        points: int = 10,
        task_type: TaskType = TaskType.CUSTOM,
        is_active: bool = True,
        title: str = "Follow us",
    ) -> Task:
        task = Task(title=title, points=points, task_type=task_type.value, is_active=is_active)
        db_session.add(task)
        await db_session.commit()
        return task

    return _make_task


@pytest.fixture
def make_completion(db_session):
    """Create and commit a completion"""

    async def _make_completion(
        user_id: int,
        task_id: int,
        status: CompletionStatus = CompletionStatus.PENDING,
        needs_review: bool = False,
        auto_approve_at: Optional[datetime] = None,
        completed_at: datetime = NOW,
        ip_address: Optional[str] = None,
        fraud_score: int = 0,
        points_awarded: int = 0,
    ) -> Completion:
        completion = Completion(
            user_id=user_id,
            task_id=task_id,
            status=status.value,
            needs_review=needs_review,
            auto_approve_at=auto_approve_at,
            completed_at=completed_at,
            ip_address=ip_address,
            fraud_score=fraud_score,
            points_awarded=points_awarded,
        )
        db_session.add(completion)
        await db_session.commit()
        return completion

    return _make_completion


@pytest.fixture
def fetch(session_factory):
    """Load a row through a fresh session (bypasses the seeding identity map)"""

    async def _fetch(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _fetch


@pytest.fixture
def recorded_sleeps():
    """Fake sleep that records requested delays"""
    delays = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
