"""Shared FIFO queue of archiving job URLs."""

from __future__ import annotations

import logging
import os
import socket
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import ArchivingJob, ResolvedJob

LOGGER = logging.getLogger(__name__)


class JobQueueError(RuntimeError):
    """Raised when the shared job queue cannot be read or written."""


@dataclass(slots=True)
class ClaimedJob:
    job_id: UUID
    url: str


class JobQueue(Protocol):
    """Contract of the queue the producer writes to and consumers drain."""

    def enqueue(self, url: str) -> None:
        ...

    def peek(self) -> int:
        ...

    def claim(self, limit: int) -> Sequence[ClaimedJob]:
        ...

    def acknowledge(self, job_id: UUID) -> None:
        ...


def _utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, timezone.utc).replace(tzinfo=None)


def default_worker_name() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class DatabaseJobQueue:
    """Job queue stored in the archiving database.

    Jobs are claimed with ``SELECT ... FOR UPDATE SKIP LOCKED`` on backends
    that support it, so several consumers can drain the queue concurrently.
    A claim is a lease: a job claimed longer than ``lease_timeout`` seconds
    ago and never acknowledged becomes claimable again, which gives
    at-least-once delivery when a consumer dies mid-job.
    """

    def __init__(
        self,
        session_factory,
        namespace: str,
        *,
        lease_timeout: float = 3600.0,
        worker_name: str | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.namespace = namespace
        self._lease_timeout = lease_timeout
        self._worker_name = worker_name or default_worker_name()
        self._time_source = time_source or time.time

    def enqueue(self, url: str) -> None:
        try:
            with self._session_factory() as session:
                session.add(
                    ArchivingJob(
                        namespace=self.namespace,
                        url=url,
                        enqueued_at=_utc(self._time_source()),
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:  # pragma: no cover - failure path
            raise JobQueueError(f"Failed to enqueue {url}: {exc}") from exc

    def peek(self) -> int:
        """Return the number of jobs not yet acknowledged, without claiming any."""

        with self._session_factory() as session:
            return int(
                session.execute(
                    select(func.count()).select_from(ArchivingJob).where(ArchivingJob.namespace == self.namespace)
                ).scalar_one()
            )

    def claim(self, limit: int) -> list[ClaimedJob]:
        if limit <= 0:
            return []
        now = self._time_source()
        stale_before = _utc(now - self._lease_timeout)
        try:
            with self._session_factory() as session:
                statement = (
                    select(ArchivingJob)
                    .where(ArchivingJob.namespace == self.namespace)
                    .where(or_(ArchivingJob.claimed_at.is_(None), ArchivingJob.claimed_at < stale_before))
                    .order_by(ArchivingJob.enqueued_at, ArchivingJob.id)
                    .limit(limit)
                    .with_for_update(skip_locked=True)
                )
                records = session.execute(statement).scalars().all()
                claimed: list[ClaimedJob] = []
                for record in records:
                    if record.claimed_at is not None:
                        LOGGER.warning(
                            "Reclaiming job %s abandoned by %s", record.id, record.claimed_by
                        )
                    record.claimed_at = _utc(now)
                    record.claimed_by = self._worker_name
                    claimed.append(ClaimedJob(job_id=record.id, url=record.url))
                session.commit()
                return claimed
        except SQLAlchemyError as exc:  # pragma: no cover - failure path
            raise JobQueueError(f"Failed to claim jobs: {exc}") from exc

    def acknowledge(self, job_id: UUID) -> None:
        with self._session_factory() as session:
            session.execute(
                delete(ArchivingJob)
                .where(ArchivingJob.id == job_id)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def clear(self) -> int:
        with self._session_factory() as session:
            result = session.execute(
                delete(ArchivingJob)
                .where(ArchivingJob.namespace == self.namespace)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        return int(result.rowcount or 0)


class ResolvedJobMarkers:
    """Resolved-once markers making result handling idempotent per job URL."""

    def __init__(self, session_factory, namespace: str) -> None:
        self._session_factory = session_factory
        self.namespace = namespace

    def mark_resolved(self, job_key: str) -> bool:
        """Record ``job_key`` as resolved; return ``False`` if it already was."""

        with self._session_factory() as session:
            session.add(ResolvedJob(namespace=self.namespace, job_key=job_key))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    def clear(self) -> int:
        with self._session_factory() as session:
            result = session.execute(
                delete(ResolvedJob)
                .where(ResolvedJob.namespace == self.namespace)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        return int(result.rowcount or 0)
