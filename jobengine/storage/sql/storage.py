"""
SQL storage backed by SQLAlchemy.
Implements the envelope lifecycle with atomic updates against the jobs table.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from jobengine.constants import STALLED_LOCK_ERROR, JobState
from jobengine.exceptions import ClaimError, StorageInitError
from jobengine.state import ensure_running, next_retry_state
from jobengine.storage.base import Storage
from jobengine.storage.sql.connection import create_engine, create_session_factory
from jobengine.storage.sql.models import Base, JobRecord
from jobengine.types.job import Envelope, J, utcnow

logger = logging.getLogger(__name__)

jobs = JobRecord.__table__


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by dialects without time zones."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_envelope(row: Any) -> Envelope:
    """Convert a jobs row mapping to an envelope."""
    return Envelope(
        id=row["id"],
        job_name=row["job_name"],
        payload=row["payload"],
        state=JobState(row["state"]),
        run_at=_as_utc(row["run_at"]),
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        lock_by=row["lock_by"],
        lock_at=_as_utc(row["lock_at"]),
        last_error=row["last_error"],
        created_at=_as_utc(row["created_at"]),
        done_at=_as_utc(row["done_at"]),
    )


class SqlStorage(Storage[J]):
    """
    Storage for one job type on a SQL database.

    Implements atomic operations for:
    - Claiming with UPDATE ... WHERE id = (SELECT ... FOR UPDATE SKIP LOCKED)
    - Status transitions guarded by the current state and claim holder
    - Reclaiming stalled claims whose lock expired

    The engine (and its connection pool) is shared by every worker using the
    instance; each operation runs in its own short transaction.
    """

    def __init__(
        self,
        job_type: type[J],
        engine: AsyncEngine,
        owns_engine: bool = False,
        **kwargs,
    ):
        """
        Initialize the storage with an engine.

        Args:
            job_type: The job class stored by this instance.
            engine: The async engine to use.
            owns_engine: Dispose the engine on close().
            **kwargs: Passed to Storage (codec, backoff, lock_timeout, max_attempts).
        """
        super().__init__(job_type, **kwargs)
        self.engine = engine
        self._owns_engine = owns_engine
        self._session_factory = create_session_factory(engine)

    @classmethod
    def connect(
        cls,
        job_type: type[J],
        database_url: str | None = None,
        **kwargs,
    ) -> "SqlStorage[J]":
        """Create a storage with its own engine for ``database_url``."""
        return cls(job_type, create_engine(database_url), owns_engine=True, **kwargs)

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Run a unit of work, wrapping backend failures in ClaimError."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            raise ClaimError(operation, str(e)) from e

    async def setup(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise StorageInitError(str(e)) from e

        logger.info("SQL storage ready", extra={"job_name": self.job_name})

    async def push(self, envelope: Envelope) -> UUID:
        async with self._transaction("push") as session:
            session.add(
                JobRecord(
                    id=envelope.id,
                    job_name=envelope.job_name,
                    payload=envelope.payload,
                    state=envelope.state,
                    run_at=envelope.run_at,
                    attempts=envelope.attempts,
                    max_attempts=envelope.max_attempts,
                    created_at=envelope.created_at,
                )
            )

        logger.debug(
            "Enqueued job",
            extra={"job_id": str(envelope.id), "run_at": envelope.run_at.isoformat()}
        )
        return envelope.id

    async def fetch_next(self, worker_id: str) -> Envelope | None:
        now = utcnow()
        stale_before = now - timedelta(seconds=self.lock_timeout)

        stalled = and_(
            jobs.c.state == JobState.RUNNING,
            jobs.c.lock_at < stale_before,
        )
        claimable = and_(
            jobs.c.job_name == self.job_name,
            or_(
                and_(jobs.c.state == JobState.PENDING, jobs.c.run_at <= now),
                and_(stalled, jobs.c.attempts < jobs.c.max_attempts),
            ),
        )

        async with self._transaction("fetch_next") as session:
            # Stalled claims with no attempts left are killed, not reclaimed
            killed = await session.execute(
                update(jobs)
                .where(
                    jobs.c.job_name == self.job_name,
                    stalled,
                    jobs.c.attempts >= jobs.c.max_attempts,
                )
                .values(
                    state=JobState.KILLED,
                    lock_by=None,
                    lock_at=None,
                    done_at=now,
                    last_error=STALLED_LOCK_ERROR,
                )
            )
            if killed.rowcount:
                logger.warning(
                    f"Killed {killed.rowcount} stalled jobs with no attempts left",
                    extra={"job_name": self.job_name}
                )

            # SKIP LOCKED is dropped by dialects that serialize writes anyway
            candidate = (
                select(jobs.c.id)
                .where(claimable)
                .order_by(jobs.c.run_at.asc(), jobs.c.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
                .scalar_subquery()
            )
            result = await session.execute(
                update(jobs)
                .where(jobs.c.id == candidate, claimable)
                .values(
                    state=JobState.RUNNING,
                    attempts=jobs.c.attempts + 1,
                    lock_by=worker_id,
                    lock_at=now,
                )
                .returning(*jobs.c)
            )
            row = result.mappings().first()

        if row is None:
            return None

        envelope = _to_envelope(row)
        logger.debug(
            "Claimed job",
            extra={"job_id": str(envelope.id), "worker_id": worker_id, "attempt": envelope.attempts}
        )
        return envelope

    async def _lock_running(
        self,
        session: AsyncSession,
        job_id: UUID,
        worker_id: str | None,
    ) -> Envelope:
        """Load a claimed envelope FOR UPDATE, raising if it is stale."""
        result = await session.execute(
            select(jobs).where(jobs.c.id == job_id).with_for_update()
        )
        row = result.mappings().first()
        return ensure_running(_to_envelope(row) if row else None, job_id, worker_id)

    async def _update(self, session: AsyncSession, job_id: UUID, **values: Any) -> None:
        await session.execute(update(jobs).where(jobs.c.id == job_id).values(**values))

    async def ack(self, job_id: UUID, worker_id: str | None = None) -> JobState:
        async with self._transaction("ack") as session:
            await self._lock_running(session, job_id, worker_id)
            await self._update(
                session,
                job_id,
                state=JobState.DONE,
                lock_by=None,
                lock_at=None,
                done_at=utcnow(),
            )
        return JobState.DONE

    async def retry(
        self,
        job_id: UUID,
        worker_id: str | None = None,
        error: str | None = None,
    ) -> JobState:
        async with self._transaction("retry") as session:
            envelope = await self._lock_running(session, job_id, worker_id)
            now = utcnow()
            state, run_at = next_retry_state(envelope, now, self.backoff)

            values: dict[str, Any] = {
                "state": state,
                "run_at": run_at,
                "lock_by": None,
                "lock_at": None,
                "done_at": now if state == JobState.KILLED else None,
            }
            if error is not None:
                values["last_error"] = error
            await self._update(session, job_id, **values)

        if state == JobState.KILLED:
            logger.warning(
                f"Job killed after {envelope.attempts} attempts",
                extra={"job_id": str(job_id), "error": error}
            )
        return state

    async def kill(
        self,
        job_id: UUID,
        worker_id: str | None = None,
        error: str | None = None,
    ) -> JobState:
        async with self._transaction("kill") as session:
            await self._lock_running(session, job_id, worker_id)
            values: dict[str, Any] = {
                "state": JobState.KILLED,
                "lock_by": None,
                "lock_at": None,
                "done_at": utcnow(),
            }
            if error is not None:
                values["last_error"] = error
            await self._update(session, job_id, **values)
        return JobState.KILLED

    async def heartbeat(self, worker_id: str, job_id: UUID) -> None:
        async with self._transaction("heartbeat") as session:
            await self._lock_running(session, job_id, worker_id)
            await self._update(session, job_id, lock_at=utcnow())

    async def get(self, job_id: UUID) -> Envelope | None:
        async with self._transaction("get") as session:
            result = await session.execute(select(jobs).where(jobs.c.id == job_id))
            row = result.mappings().first()
        return _to_envelope(row) if row else None

    async def stats(self) -> dict[str, int]:
        async with self._transaction("stats") as session:
            result = await session.execute(
                select(jobs.c.state, func.count())
                .where(jobs.c.job_name == self.job_name)
                .group_by(jobs.c.state)
            )
            rows = result.all()
        return {JobState(state).value: count for state, count in rows}

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
            logger.info("Database engine disposed")
