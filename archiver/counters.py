"""Cross-process counters backed by the shared archiving database."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import ArchivingCounter

LOGGER = logging.getLogger(__name__)


class CounterError(RuntimeError):
    """Raised when a counter cannot be read or updated."""


class SharedCounter:
    """Named integer counter whose updates are single atomic SQL statements.

    Any number of processes, on any number of machines, may update the same
    counter as long as they share the database. Decrements never take the
    value below zero.
    """

    def __init__(self, session_factory, name: str) -> None:
        self._session_factory = session_factory
        self.name = name

    def __repr__(self) -> str:
        return f"SharedCounter({self.name!r})"

    def increment(self, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError("increment amount must not be negative")
        return self._apply(amount)

    def decrement(self, amount: int = 1) -> int:
        """Decrement and return the new value, as seen by this caller alone."""

        if amount < 0:
            raise ValueError("decrement amount must not be negative")
        return self._apply(-amount)

    def get(self) -> int:
        with self._session_factory() as session:
            return self._read(session)

    def is_equal(self, expected: int) -> bool:
        return self.get() == expected

    def _apply(self, delta: int) -> int:
        try:
            self._ensure_row()
            with self._session_factory() as session:
                statement = (
                    update(ArchivingCounter)
                    .where(ArchivingCounter.name == self.name)
                    .values(value=ArchivingCounter.value + delta)
                    .execution_options(synchronize_session=False)
                )
                if delta < 0:
                    statement = statement.where(ArchivingCounter.value >= -delta)
                result = session.execute(statement)
                if result.rowcount == 0:
                    LOGGER.debug("Counter %s would drop below zero; clamping", self.name)
                    session.execute(
                        update(ArchivingCounter)
                        .where(ArchivingCounter.name == self.name)
                        .values(value=0)
                        .execution_options(synchronize_session=False)
                    )
                value = self._read(session)
                session.commit()
                return value
        except IntegrityError as exc:  # pragma: no cover - failure path
            raise CounterError(f"Failed to update counter {self.name}: {exc}") from exc

    def _ensure_row(self) -> None:
        with self._session_factory() as session:
            exists = session.execute(
                select(ArchivingCounter.name).where(ArchivingCounter.name == self.name)
            ).first()
            if exists is not None:
                return
            session.add(ArchivingCounter(name=self.name, value=0))
            try:
                session.commit()
            except IntegrityError:
                # another process created it between the check and the insert
                session.rollback()

    def _read(self, session: Session) -> int:
        value = session.execute(
            select(ArchivingCounter.value).where(ArchivingCounter.name == self.name)
        ).scalar_one_or_none()
        return int(value or 0)


class CounterRegistry:
    """Build counters under a shared namespace, one set per site."""

    def __init__(self, session_factory, namespace: str) -> None:
        self._session_factory = session_factory
        self.namespace = namespace

    def active_requests(self, site_id: int) -> SharedCounter:
        return SharedCounter(self._session_factory, f"{self.namespace}.{site_id}.activeRequests")

    def failed_requests(self, site_id: int) -> SharedCounter:
        return SharedCounter(self._session_factory, f"{self.namespace}.{site_id}.failedRequests")

    def processed_sites(self) -> SharedCounter:
        return SharedCounter(self._session_factory, f"{self.namespace}.processedSites")

    def delete_like(self, prefix: str | None = None) -> int:
        """Delete every counter whose name starts with ``prefix`` (the namespace by default)."""

        prefix = self.namespace if prefix is None else prefix
        with self._session_factory() as session:
            result = session.execute(
                delete(ArchivingCounter)
                .where(ArchivingCounter.name.startswith(prefix, autoescape=True))
                .execution_options(synchronize_session=False)
            )
            session.commit()
        LOGGER.debug("Deleted %d counters with prefix %s", result.rowcount, prefix)
        return int(result.rowcount or 0)
