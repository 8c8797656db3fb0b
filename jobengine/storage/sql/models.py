"""
SQLAlchemy database models.
Defines the jobs table backing the SQL storage.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobengine.constants import DEFAULT_MAX_ATTEMPTS, JobState


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobRecord(Base):
    """
    One persisted job envelope.

    This is the authoritative source of truth for envelope state; claim
    exclusivity is enforced by atomic updates against this table.

    Column types are portable so the same table works on PostgreSQL and SQLite.
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Queue name and serialized job
    job_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.PENDING,
    )

    # Scheduling
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )

    # Claim lock
    lock_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    lock_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    done_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        # Index for efficient queue polling
        Index("ix_jobs_claim", "job_name", "state", "run_at"),
        # Index for stalled lock checks
        Index("ix_jobs_lock", "state", "lock_at"),
    )

    def __repr__(self) -> str:
        return (
            f"JobRecord(id={self.id}, job_name={self.job_name}, "
            f"state={self.state}, attempts={self.attempts}/{self.max_attempts})"
        )
