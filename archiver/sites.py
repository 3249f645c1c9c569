"""Read-only access to tracked site reference data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

from sqlalchemy import select

from models import Site


@dataclass(slots=True, frozen=True)
class SiteInfo:
    site_id: int
    created_at: float
    timezone: str


class SiteDirectory(Protocol):
    def all_site_ids(self) -> list[int]:
        ...

    def site_ids_with_visits_since(self, timestamp: float) -> list[int]:
        ...

    def unique_timezones(self) -> list[str]:
        ...

    def site_ids_in_timezones(self, timezones: Iterable[str]) -> list[int]:
        ...

    def get_site(self, site_id: int) -> Optional[SiteInfo]:
        ...


def _as_timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class DatabaseSiteDirectory:
    """Query the ``sites`` table maintained by the tracking system."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def all_site_ids(self) -> list[int]:
        with self._session_factory() as session:
            return list(session.execute(select(Site.id).order_by(Site.id)).scalars())

    def site_ids_with_visits_since(self, timestamp: float) -> list[int]:
        since = datetime.fromtimestamp(timestamp, timezone.utc)
        with self._session_factory() as session:
            statement = (
                select(Site.id)
                .where(Site.last_visit_at.is_not(None))
                .where(Site.last_visit_at >= since)
                .order_by(Site.id)
            )
            return list(session.execute(statement).scalars())

    def unique_timezones(self) -> list[str]:
        with self._session_factory() as session:
            return list(session.execute(select(Site.timezone).distinct().order_by(Site.timezone)).scalars())

    def site_ids_in_timezones(self, timezones: Iterable[str]) -> list[int]:
        wanted = list(timezones)
        if not wanted:
            return []
        with self._session_factory() as session:
            statement = select(Site.id).where(Site.timezone.in_(wanted)).order_by(Site.id)
            return list(session.execute(statement).scalars())

    def get_site(self, site_id: int) -> Optional[SiteInfo]:
        with self._session_factory() as session:
            site = session.get(Site, site_id)
            if site is None:
                return None
            return SiteInfo(
                site_id=site.id,
                created_at=_as_timestamp(site.created_at),
                timezone=site.timezone,
            )
