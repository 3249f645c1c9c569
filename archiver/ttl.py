"""Time-to-live checks deciding whether a site's reports are due again."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Collection, Optional

from .config import DEFAULT_TODAY_ARCHIVE_TTL, SECONDS_DELAY_BETWEEN_PERIOD_ARCHIVES
from .options import ProgressStore

LOGGER = logging.getLogger(__name__)


def resolve_periods_ttl(today_ttl: int, forced_periods_ttl: Optional[int]) -> int:
    """Return the periods TTL, never shorter than the today TTL."""

    if not forced_periods_ttl:
        return max(SECONDS_DELAY_BETWEEN_PERIOD_ARCHIVES, today_ttl)
    if forced_periods_ttl > today_ttl:
        return forced_periods_ttl
    LOGGER.warning(
        "Automatically increasing --force-timeout-for-periods from %d to %d to match the "
        "time-to-live of today's reports",
        forced_periods_ttl,
        today_ttl,
    )
    return today_ttl


def pretty_seconds(seconds: float) -> str:
    """Render a duration the way log readers expect, e.g. ``2 hours 5 min``."""

    seconds = int(max(0, seconds))
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    if days:
        return f"{days} days {hours} hours"
    if hours:
        return f"{hours} hours {minutes} min"
    if minutes:
        return f"{minutes} min {secs}s"
    return f"{secs}s"


@dataclass(slots=True)
class TtlSettings:
    today_ttl: int = DEFAULT_TODAY_ARCHIVE_TTL
    periods_ttl: int = SECONDS_DELAY_BETWEEN_PERIOD_ARCHIVES
    # False when --force-all-periods asks to archive regardless of TTLs
    respect_ttl: bool = True
    force_all_sites: bool = False


class TtlPolicy:
    """Per-site skip decisions from the progress store."""

    def __init__(
        self,
        settings: TtlSettings,
        progress: ProgressStore,
        *,
        invalidated_site_ids: Collection[int] = (),
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self.settings = settings
        self._progress = progress
        self._invalidated = set(invalidated_site_ids)
        self._time_source = time_source or time.time

    def update_invalidated(self, site_ids: Collection[int]) -> None:
        self._invalidated = set(site_ids)

    def is_invalidated(self, site_id: int) -> bool:
        return site_id in self._invalidated

    def elapsed_since_day(self, site_id: int) -> Optional[float]:
        return self._elapsed(self._progress.last_day(site_id))

    def elapsed_since_periods(self, site_id: int) -> Optional[float]:
        return self._elapsed(self._progress.last_periods(site_id))

    def should_skip_day_archive(self, site_id: int) -> bool:
        if not self.settings.respect_ttl:
            return False
        elapsed = self.elapsed_since_day(site_id)
        return elapsed is not None and elapsed < self.settings.today_ttl

    def should_skip_periods_archive(self, site_id: int) -> bool:
        if not self.settings.respect_ttl:
            return False
        if self.is_invalidated(site_id) or self.settings.force_all_sites:
            return False
        elapsed = self.elapsed_since_periods(site_id)
        return elapsed is not None and elapsed < self.settings.periods_ttl

    def should_archive_periods(self, site_id: int) -> bool:
        return not self.should_skip_periods_archive(site_id)

    def pretty_elapsed_since_day(self, site_id: int) -> str:
        elapsed = self.elapsed_since_day(site_id)
        return "never" if elapsed is None else pretty_seconds(elapsed)

    def pretty_elapsed_since_periods(self, site_id: int) -> str:
        elapsed = self.elapsed_since_periods(site_id)
        return "never" if elapsed is None else pretty_seconds(elapsed)

    def _elapsed(self, last_timestamp: Optional[int]) -> Optional[float]:
        if last_timestamp is None:
            return None
        return self._time_source() - last_timestamp
