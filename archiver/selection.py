"""Selection of the sites an archiving run should process."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Iterable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .sites import SiteDirectory
from .ttl import pretty_seconds

LOGGER = logging.getLogger(__name__)

SiteFilter = Callable[[list[int]], Iterable[int]]

_UTC_OFFSET_PATTERN = re.compile(r"^UTC(?P<offset>[+-]\d+(?:\.\d+)?)?$")


def _dedupe(site_ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(int(site_id) for site_id in site_ids))


def _format_ids(site_ids: Sequence[int]) -> str:
    return ", IDs: " + ", ".join(str(site_id) for site_id in site_ids) if site_ids else ""


def resolve_timezone(name: str) -> tzinfo:
    """Return a tzinfo for an IANA name or a ``UTC+5.5`` style offset."""

    match = _UTC_OFFSET_PATTERN.match(name or "")
    if match:
        offset = match.group("offset")
        if not offset:
            return timezone.utc
        return timezone(timedelta(hours=float(offset)))
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Unknown site timezone %r; treating it as UTC", name)
        return timezone.utc


@dataclass(slots=True)
class SelectionResult:
    site_ids: list[int]
    with_visits: list[int] = field(default_factory=list)
    invalidated: list[int] = field(default_factory=list)
    day_finished: list[int] = field(default_factory=list)


class SiteSelector:
    """Compute the candidate site list for one run."""

    def __init__(
        self,
        directory: SiteDirectory,
        *,
        site_filter: Optional[SiteFilter] = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._directory = directory
        self._site_filter = site_filter
        self._time_source = time_source or time.time

    def select(
        self,
        *,
        universe: Sequence[int],
        force_idsites: Sequence[int] = (),
        force_all_sites: bool = False,
        traffic_since_seconds: float,
        invalidated_site_ids: Sequence[int] = (),
        last_run_timestamp: Optional[float] = None,
    ) -> SelectionResult:
        result = self._initial_site_ids(
            universe=universe,
            force_idsites=force_idsites,
            force_all_sites=force_all_sites,
            traffic_since_seconds=traffic_since_seconds,
            invalidated_site_ids=invalidated_site_ids,
            last_run_timestamp=last_run_timestamp,
        )

        existing = set(universe)
        site_ids = [site_id for site_id in result.site_ids if site_id in existing]
        dropped = len(result.site_ids) - len(site_ids)
        if dropped:
            LOGGER.info("Ignoring %d site ids that no longer exist", dropped)

        if self._site_filter is not None:
            site_ids = _dedupe(self._site_filter(list(site_ids)))
        result.site_ids = site_ids
        return result

    def _initial_site_ids(
        self,
        *,
        universe: Sequence[int],
        force_idsites: Sequence[int],
        force_all_sites: bool,
        traffic_since_seconds: float,
        invalidated_site_ids: Sequence[int],
        last_run_timestamp: Optional[float],
    ) -> SelectionResult:
        if force_idsites:
            LOGGER.info("- Will process %d websites (--force-idsites)", len(force_idsites))
            return SelectionResult(site_ids=_dedupe(force_idsites))
        if force_all_sites:
            LOGGER.info("- Will process all %d websites", len(universe))
            return SelectionResult(site_ids=_dedupe(universe))

        now = self._time_source()
        with_visits = _dedupe(self._directory.site_ids_with_visits_since(now - traffic_since_seconds))
        LOGGER.info(
            "- Will process %d websites with new visits since %s%s",
            len(with_visits),
            pretty_seconds(traffic_since_seconds),
            _format_ids(with_visits),
        )

        invalidated = _dedupe(invalidated_site_ids)
        if invalidated:
            LOGGER.info(
                "- Will process %d other websites because some old data reports have been invalidated "
                "(eg. using the log import script)%s",
                len(invalidated),
                _format_ids(invalidated),
            )

        already_selected = _dedupe([*with_visits, *invalidated])
        day_finished = self._site_ids_in_timezone_with_new_day(already_selected, last_run_timestamp, now)
        if day_finished:
            LOGGER.info(
                "- Will process %d other websites because the last time they were archived was on a "
                "different day (in the website's timezone)%s",
                len(day_finished),
                _format_ids(day_finished),
            )

        return SelectionResult(
            site_ids=_dedupe([*already_selected, *day_finished]),
            with_visits=with_visits,
            invalidated=invalidated,
            day_finished=day_finished,
        )

    def timezones_having_new_day(self, last_run_timestamp: Optional[float], now: float) -> list[str]:
        """Return timezones where the last run happened on an earlier calendar day."""

        last_run = datetime.fromtimestamp(last_run_timestamp or 0, timezone.utc)
        current = datetime.fromtimestamp(now, timezone.utc)
        changed: list[str] = []
        for name in self._directory.unique_timezones():
            tz = resolve_timezone(name)
            if last_run.astimezone(tz).date() != current.astimezone(tz).date():
                changed.append(name)
        return changed

    def _site_ids_in_timezone_with_new_day(
        self, already_selected: Sequence[int], last_run_timestamp: Optional[float], now: float
    ) -> list[int]:
        timezones = self.timezones_having_new_day(last_run_timestamp, now)
        if not timezones:
            return []
        selected = set(already_selected)
        return [
            site_id
            for site_id in _dedupe(self._directory.site_ids_in_timezones(timezones))
            if site_id not in selected
        ]
