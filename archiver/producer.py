"""Turn archiving decisions into queued report requests."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from .config import ArchiveConfig
from .counters import CounterRegistry
from .dates import DateRangePolicy
from .invalidation import InvalidatedSites
from .jobs import ArchiveJob
from .options import ProgressStore
from .queue import JobQueue
from .segments import SegmentProvider
from .sites import SiteDirectory
from .state import RunState
from .ttl import TtlPolicy

LOGGER = logging.getLogger(__name__)

_PERIODS_AFTER_DAY: tuple[str, ...] = ("week", "month", "year")


class JobProducer:
    """Queue the day job of a site, and its period and segment jobs once the day succeeded.

    Every queued job raises the site's ``activeRequests`` counter before it
    reaches the queue. ``failedRequests`` is raised by the number of period
    and segment jobs (plus one hold for the day job), so it only reaches zero
    once every one of them has resolved.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        *,
        queue: JobQueue,
        counters: CounterRegistry,
        ttl: TtlPolicy,
        dates: DateRangePolicy,
        progress: ProgressStore,
        invalidated: InvalidatedSites,
        sites: SiteDirectory,
        segments: SegmentProvider,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._api_root = config.api_root()
        self._periods = config.periods_to_process()
        self._skip_idsites = set(config.skip_idsites)
        self._queue = queue
        self._counters = counters
        self._ttl = ttl
        self._dates = dates
        self._progress = progress
        self._invalidated = invalidated
        self._sites = sites
        self._segments = segments
        self._time_source = time_source or time.time

    def should_process_period(self, period: str) -> bool:
        return period in self._periods

    def queue_day_job(self, site_id: int, state: RunState) -> int:
        """Queue the day job for ``site_id``; return the number of jobs queued."""

        if site_id in self._skip_idsites:
            LOGGER.info("Skipped website id %s, found in --skip-idsites", site_id)
            state.skipped += 1
            return 0

        if site_id <= 0:
            LOGGER.info("Found strange site ID: '%s', skipping", site_id)
            state.skipped += 1
            return 0

        if self._ttl.should_skip_day_archive(site_id):
            LOGGER.info(
                "Skipped website id %s, already done %s ago",
                site_id,
                self._ttl.pretty_elapsed_since_day(site_id),
            )
            state.skipped_day_archives += 1
            state.skipped += 1
            return 0

        if not self.should_process_period("day"):
            return self.queue_period_and_segment_jobs(site_id, state)

        invalidated = self._ttl.is_invalidated(site_id)
        if invalidated:
            # Clear it now so a concurrently running archiver does not process it again.
            self._invalidated.remove(site_id)

        process_days_since = self._progress.last_day(site_id)
        if invalidated or self._config.force_all_websites:
            # Data was purged or back-filled: re-examine the full history.
            process_days_since = None

        job = ArchiveJob(site_id=site_id, period="day", date=self._date_for(site_id, "day", process_days_since))
        # Hold released by the completion handler once the day job succeeds.
        self._counters.failed_requests(site_id).increment()
        self._enqueue([job], site_id, state)
        return 1

    def queue_period_and_segment_jobs(self, site_id: int, state: RunState) -> int:
        """Queue day segments plus week/month/year jobs and their segments."""

        segments = self._segments.for_site(site_id)
        day_date = self._date_for(site_id, "day", self._progress.last_day(site_id))
        day_job = ArchiveJob(site_id=site_id, period="day", date=day_date)
        jobs: list[ArchiveJob] = [day_job.with_segment(segment) for segment in segments]

        last_periods = self._progress.last_periods(site_id)
        for period in _PERIODS_AFTER_DAY:
            if not self.should_process_period(period):
                continue
            job = ArchiveJob(site_id=site_id, period=period, date=self._date_for(site_id, period, last_periods))
            jobs.append(job)
            jobs.extend(job.with_segment(segment) for segment in segments)

        if not jobs:
            LOGGER.debug("No period or segment jobs to queue for website id %s", site_id)
            return 0

        self._counters.failed_requests(site_id).increment(len(jobs))
        self._enqueue(jobs, site_id, state)
        return len(jobs)

    def _enqueue(self, jobs: Sequence[ArchiveJob], site_id: int, state: RunState) -> None:
        self._counters.active_requests(site_id).increment(len(jobs))
        for job in jobs:
            self._queue.enqueue(job.to_url(self._api_root, self._config.token_auth, testmode=self._config.testmode))
            LOGGER.debug("Queued %s", job.describe())
        state.requests += len(jobs)

    def _date_for(self, site_id: int, period: str, last_processed: Optional[float]) -> str:
        site = self._sites.get_site(site_id)
        if site is None:
            LOGGER.warning("Website id %s not found; using the current time as its creation date", site_id)
            created_at = self._time_source()
        else:
            created_at = site.created_at
        return self._dates.date_parameter(period, last_processed, created_at)
