"""
Database models for the Completion Engine

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from completion_engine.core.enums import CompletionStatus, TaskType, VerificationStatus


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


class User(Base):
    """
    User model - the subset of the platform user the engine reads and credits

    Tracks:
    - Verification flags (wallet / twitter / telegram)
    - Points balance (mutated only by the crediting protocol)
    - Referral code and the code the user was invited with
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_users_total_points_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    username: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Display name"
    )
    email: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, index=True, nullable=True, comment="Email address"
    )
    total_points: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Points balance (increment-only)"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        comment="User registration timestamp",
    )

    # Verification flags
    wallet_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Wallet ownership verified"
    )
    twitter_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Twitter account linked and verified"
    )
    telegram_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Telegram account linked and verified"
    )

    # Referral
    referral_code: Mapped[Optional[str]] = mapped_column(
        String(12), unique=True, index=True, nullable=True, comment="Own referral code"
    )
    invited_by: Mapped[Optional[str]] = mapped_column(
        String(12), nullable=True, index=True, comment="Referral code used at registration"
    )

    completions: Mapped[list["Completion"]] = relationship(
        back_populates="user",
        foreign_keys="Completion.user_id",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, total_points={self.total_points})>"


class Task(Base):
    """
    Task model - campaign task that rewards points on completion
    """

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("points > 0", name="ck_tasks_points_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False, comment="Task title")
    points: Mapped[int] = mapped_column(Integer, nullable=False, comment="Reward points")
    task_type: Mapped[str] = mapped_column(
        String(32),
        default=TaskType.CUSTOM.value,
        nullable=False,
        index=True,
        comment="Task type (TaskType enum)",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, comment="Visible to users"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    completions: Mapped[list["Completion"]] = relationship(back_populates="task")

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, type={self.task_type}, points={self.points})>"


class Completion(Base):
    """
    Completion model - a user's attempt at a task

    Features:
    - Fraud score, review flag and auto-approval deadline stamped at intake
    - Points awarded exactly once when credited
    - Human review fields (never written by the crediting protocol)
    - Referee reference for referral-reward completions
    """

    __tablename__ = "completions"
    __table_args__ = (
        CheckConstraint("fraud_score >= 0 AND fraud_score <= 100", name="ck_completions_fraud_score_range"),
        CheckConstraint("points_awarded >= 0", name="ck_completions_points_awarded_non_negative"),
        Index("ix_completions_auto_approval", "status", "needs_review", "auto_approve_at"),
        Index("ix_completions_user_status_task", "user_id", "status", "task_id"),
        Index("ix_completions_ip_completed", "ip_address", "completed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Relations
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="User who completed the task",
    )
    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Task ID",
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default=CompletionStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="Completion status (CompletionStatus enum)",
    )
    verification_status: Mapped[str] = mapped_column(
        String(20),
        default=VerificationStatus.UNVERIFIED.value,
        nullable=False,
        comment="Verification status (VerificationStatus enum)",
    )

    # Risk
    fraud_score: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Fraud score 0-100"
    )
    needs_review: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Blocks automatic crediting"
    )
    auto_approve_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Earliest moment the sweep may credit this completion",
    )

    # Points tracking
    points_awarded: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Points credited (0 until credited)"
    )

    # Request context
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Client IP at submission"
    )
    user_agent: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="Client user agent at submission"
    )

    # Timestamps
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        comment="Submission time, re-stamped when credited",
    )

    # Admin review
    reviewed_by: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Admin user ID who reviewed"
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="When admin reviewed"
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="Reason given on rejection"
    )

    # Referral audit
    credited_for_user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        unique=True,
        index=True,
        nullable=True,
        comment="Referee whose registration credited this referral reward (one per referee)",
    )

    user: Mapped["User"] = relationship(back_populates="completions", foreign_keys=[user_id])
    task: Mapped["Task"] = relationship(back_populates="completions")

    def __repr__(self) -> str:
        return (
            f"<Completion(id={self.id}, user_id={self.user_id}, task_id={self.task_id}, "
            f"status={self.status}, score={self.fraud_score})>"
        )
