"""Key/value option storage and the per-site archiving progress records."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import ArchivingOption

LOGGER = logging.getLogger(__name__)

# Timestamp of the last run that finished without any error.
OPTION_ARCHIVING_FINISHED_TS = "LastCompletedFullArchiving"
# Timestamp at which the last run started.
OPTION_ARCHIVING_STARTED_TS = "LastFullArchivingStartTime"
# Number of sites selected by the run that seeded the current queue.
OPTION_TOTAL_SITES = "CronArchive_TotalSites"

DAY_CLASS = "day"
PERIODS_CLASS = "periods"


class OptionStoreError(RuntimeError):
    """Raised when reading or writing an option fails."""


class OptionStore:
    """Durable string options shared by every archiving process."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def get(self, name: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                return session.execute(
                    select(ArchivingOption.value).where(ArchivingOption.name == name)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:  # pragma: no cover - failure path
            raise OptionStoreError(str(exc)) from exc

    def set(self, name: str, value: str) -> None:
        try:
            if self._update(name, value):
                return
            with self._session_factory() as session:
                session.add(ArchivingOption(name=name, value=value))
                try:
                    session.commit()
                    return
                except IntegrityError:
                    # another process created the option between the update and the insert
                    session.rollback()
            self._update(name, value)
        except SQLAlchemyError as exc:  # pragma: no cover - failure path
            raise OptionStoreError(str(exc)) from exc

    def _update(self, name: str, value: str) -> bool:
        with self._session_factory() as session:
            option = session.get(ArchivingOption, name)
            if option is None:
                return False
            option.value = value
            session.commit()
            return True

    def delete(self, name: str) -> None:
        with self._session_factory() as session:
            option = session.get(ArchivingOption, name)
            if option is not None:
                session.delete(option)
                session.commit()

    def get_timestamp(self, name: str) -> Optional[int]:
        raw = self.get(name)
        if raw is None or raw == "":
            return None
        try:
            return int(float(raw))
        except ValueError:
            LOGGER.warning("Ignoring non-numeric timestamp option %s=%r", name, raw)
            return None

    def set_timestamp(self, name: str, timestamp: float) -> None:
        self.set(name, str(int(timestamp)))


def last_run_key(site_id: int, granularity_class: str) -> str:
    """Return the option name holding the last successful archiving time."""

    return f"lastRun{granularity_class}_{site_id}"


class ProgressStore:
    """Last-success timestamps per (site, day|periods)."""

    def __init__(self, options: OptionStore) -> None:
        self._options = options

    def get(self, site_id: int, granularity_class: str) -> Optional[int]:
        return self._options.get_timestamp(last_run_key(site_id, granularity_class))

    def set(self, site_id: int, granularity_class: str, timestamp: float) -> None:
        self._options.set_timestamp(last_run_key(site_id, granularity_class), timestamp)

    def last_day(self, site_id: int) -> Optional[int]:
        return self.get(site_id, DAY_CLASS)

    def last_periods(self, site_id: int) -> Optional[int]:
        return self.get(site_id, PERIODS_CLASS)
