"""Archiving orchestrator: select sites, queue their jobs and drain the queue."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlencode

from .completion import CompletionHandler
from .config import ARCHIVE_SITES_WITH_TRAFFIC_SINCE, ArchiveConfig, ConfigurationError
from .consumer import CeleryConsumer
from .counters import CounterRegistry
from .dates import DateRangePolicy
from .http_client import ReportClient, ReportRequestError
from .invalidation import InvalidatedSites
from .jobs import TRIGGER_PARAMETER
from .options import (
    OPTION_ARCHIVING_FINISHED_TS,
    OPTION_ARCHIVING_STARTED_TS,
    OPTION_TOTAL_SITES,
    OptionStore,
    ProgressStore,
)
from .producer import JobProducer
from .queue import DatabaseJobQueue, JobQueue, ResolvedJobMarkers
from .segments import SegmentProvider
from .selection import SiteFilter, SiteSelector
from .sites import DatabaseSiteDirectory, SiteDirectory
from .state import RunState
from .ttl import TtlPolicy, TtlSettings, pretty_seconds, resolve_periods_ttl

LOGGER = logging.getLogger(__name__)

_SECTION_BANNER = "---------------------------"

# Body returned by runScheduledTasks when nothing was due.
_NO_SCHEDULED_TASK_OUTPUT = "No data available"


def _log_section(title: str = "") -> None:
    LOGGER.info("")
    LOGGER.info(_SECTION_BANNER)
    if title:
        LOGGER.info(title)


def _traffic_window(force_all_periods: bool | int | None, last_success: Optional[int], now: float) -> int:
    """Return the "visits since" window in seconds.

    A numeric ``--force-all-periods`` above one second is used verbatim; the
    bare flag and the very first run fall back to one week.
    """

    if force_all_periods is not None and force_all_periods is not False:
        if not isinstance(force_all_periods, bool) and int(force_all_periods) > 1:
            return int(force_all_periods)
        return ARCHIVE_SITES_WITH_TRAFFIC_SINCE
    if last_success:
        return max(0, int(now - last_success))
    return ARCHIVE_SITES_WITH_TRAFFIC_SINCE


class CronArchiver:
    """Run one archiving pass.

    Several processes may run this concurrently against the same database:
    the first one selects sites and seeds the queue, the others find it
    non-empty and only help draining it.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        session_factory,
        *,
        queue: JobQueue | None = None,
        consumer: CeleryConsumer | None = None,
        sites: SiteDirectory | None = None,
        report_client: ReportClient | None = None,
        site_filter: Optional[SiteFilter] = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self.config = config
        self.state = RunState()
        self._time_source = time_source or time.time
        self._api_root = config.api_root()

        self.options = OptionStore(session_factory)
        self.progress = ProgressStore(self.options)
        self.invalidated = InvalidatedSites(self.options)
        self.counters = CounterRegistry(session_factory, config.namespace)
        self.queue = queue if queue is not None else DatabaseJobQueue(
            session_factory,
            config.namespace,
            lease_timeout=config.consumer.lease_timeout,
            time_source=self._time_source,
        )
        self.markers = ResolvedJobMarkers(session_factory, config.namespace)
        self.sites = sites if sites is not None else DatabaseSiteDirectory(session_factory)
        self.segments = SegmentProvider(config.segments)
        self.consumer = consumer if consumer is not None else CeleryConsumer(
            self.queue,
            task_options={
                "request_timeout": config.timeout.request_timeout,
                "user_agent": config.user_agent,
                "accept_invalid_ssl_certificate": config.accept_invalid_ssl_certificate,
            },
            max_concurrent_requests=config.consumer.max_concurrent_requests,
            poll_interval=config.consumer.poll_interval,
        )
        self._report_client = report_client
        self._site_filter = site_filter

        self.ttl: TtlPolicy | None = None
        self.producer: JobProducer | None = None
        self.handler: CompletionHandler | None = None
        self._traffic_since = ARCHIVE_SITES_WITH_TRAFFIC_SINCE
        self._last_success: Optional[int] = None
        self._started_at: float | None = None

    # -- lifecycle -----------------------------------------------------------------

    def init(self) -> None:
        self._started_at = self._time_source()
        config = self.config

        _log_section("INIT")
        LOGGER.info("Running report archiving against %s", self._api_root)
        if config.check_api_url:
            self.check_api_url()

        dates = DateRangePolicy(
            force_date_range=config.force_date_range,
            force_date_last_n=config.force_date_last_n,
            time_source=self._time_source,
        )
        today_ttl = int(config.today_archive_ttl)
        if today_ttl < 0:
            raise ConfigurationError("The today archive TTL cannot be negative")
        periods_ttl = resolve_periods_ttl(today_ttl, config.force_timeout_for_periods)
        respect_ttl = config.force_all_periods is None or config.force_all_periods is False

        self._last_success = self.options.get_timestamp(OPTION_ARCHIVING_FINISHED_TS)
        self._traffic_since = _traffic_window(config.force_all_periods, self._last_success, self._started_at)
        self.options.set_timestamp(OPTION_ARCHIVING_STARTED_TS, self._started_at)

        self.ttl = TtlPolicy(
            TtlSettings(
                today_ttl=today_ttl,
                periods_ttl=periods_ttl,
                respect_ttl=respect_ttl,
                force_all_sites=config.force_all_websites,
            ),
            self.progress,
            invalidated_site_ids=self.invalidated.site_ids(),
            time_source=self._time_source,
        )
        self.producer = JobProducer(
            config,
            queue=self.queue,
            counters=self.counters,
            ttl=self.ttl,
            dates=dates,
            progress=self.progress,
            invalidated=self.invalidated,
            sites=self.sites,
            segments=self.segments,
            time_source=self._time_source,
        )
        self.handler = CompletionHandler(
            producer=self.producer,
            counters=self.counters,
            progress=self.progress,
            ttl=self.ttl,
            markers=self.markers,
            time_source=self._time_source,
        )

        _log_section("NOTES")
        self._log_notes(today_ttl, periods_ttl, respect_ttl, dates)

    def _log_notes(self, today_ttl: int, periods_ttl: int, respect_ttl: bool, dates: DateRangePolicy) -> None:
        config = self.config
        if self._last_success:
            LOGGER.info(
                "- Last successful run was %s ago", pretty_seconds(self._started_at - self._last_success)
            )
        else:
            LOGGER.info("- No previous successful run recorded")

        if respect_ttl:
            LOGGER.info("- Reports for today will be processed at most every %s", pretty_seconds(today_ttl))
            LOGGER.info(
                "- Reports for the current week/month/year will be refreshed at most every %s",
                pretty_seconds(periods_ttl),
            )
        else:
            LOGGER.info(
                "- Will process all websites with visits in the last %s, ignoring archive TTLs",
                pretty_seconds(self._traffic_since),
            )

        if config.force_all_websites:
            LOGGER.info("- Will process all %d websites (--force-all-websites)", len(self.sites.all_site_ids()))
        if config.force_periods:
            LOGGER.info("- Will only process the following periods: %s", ", ".join(config.periods_to_process()))
        if dates.forced_date_range:
            LOGGER.info("- Will archive the date range %s", dates.forced_date_range)
        if config.skip_idsites:
            LOGGER.info("- Will skip websites %s", ", ".join(str(site_id) for site_id in config.skip_idsites))

        segments = self.segments.all_sites
        if segments:
            LOGGER.info(
                "- Will pre-process %d segments for each website and each period: %s",
                len(segments),
                ", ".join(segments),
            )

    def check_api_url(self) -> None:
        """Fail early when the base URL does not answer like a reporting API."""

        url = self._api_url(method="API.getDefaultMetricTranslations", format="json")
        client = self._client(timeout=self.config.timeout.validation_timeout)
        try:
            body = client.request(url)
        except ReportRequestError as exc:
            raise ConfigurationError(f"Cannot reach the reporting API at {self._api_root}: {exc}") from exc
        finally:
            if client is not self._report_client:
                client.close()

        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if not isinstance(payload, (dict, list)) or (isinstance(payload, dict) and payload.get("result") == "error"):
            raise ConfigurationError(
                f"The URL {self._api_root} does not seem to point to a reporting API. Response was: {body[:200]!r}"
            )

    def run(self) -> None:
        if self.producer is None or self.handler is None:
            self.init()
        assert self.producer is not None and self.handler is not None

        _log_section("START")
        LOGGER.info("Starting reports archiving...")

        pending = self.queue.peek()
        if pending > 0:
            LOGGER.info("Continuing %d archiving jobs left in the queue by another run", pending)
            self.state.total_sites = self._stored_total_sites()
        else:
            self._seed()

        for batch in self.consumer.consume(finish_when_no_jobs=True):
            self.handler.handle_batch(batch, self.state)

        self.log_summary()

    def _seed(self) -> None:
        assert self.producer is not None and self.ttl is not None
        cleared = self.counters.delete_like(self.config.namespace)
        if cleared:
            LOGGER.debug("Cleared %d counters from a previous run", cleared)
        self.markers.clear()

        selector = SiteSelector(self.sites, site_filter=self._site_filter, time_source=self._time_source)
        invalidated = self.invalidated.site_ids()
        self.ttl.update_invalidated(invalidated)
        selection = selector.select(
            universe=self.sites.all_site_ids(),
            force_idsites=self.config.force_idsites,
            force_all_sites=self.config.force_all_websites,
            traffic_since_seconds=self._traffic_since,
            invalidated_site_ids=invalidated,
            last_run_timestamp=self._last_success,
        )

        self.state.total_sites = len(selection.site_ids)
        self.options.set(OPTION_TOTAL_SITES, str(self.state.total_sites))
        LOGGER.info("Will process %d websites", self.state.total_sites)

        for site_id in selection.site_ids:
            self.producer.queue_day_job(site_id, self.state)

    def _stored_total_sites(self) -> int:
        raw = self.options.get(OPTION_TOTAL_SITES)
        try:
            return int(raw) if raw else 0
        except ValueError:
            return 0

    def log_summary(self) -> None:
        state = self.state
        assert self.ttl is not None
        processed = self.counters.processed_sites().get()
        total = state.total_sites
        percent = 100 if not total else round(processed * 100 / total)
        elapsed = self._time_source() - (self._started_at or self._time_source())

        LOGGER.info("Done archiving!")
        _log_section("SUMMARY")
        LOGGER.info("Total visits for today across archived websites: %d", state.visits_today)
        LOGGER.info("Archived today's reports for %d websites", state.websites_with_visits)
        LOGGER.info("Archived week/month/year for %d websites", state.archived_periods)
        LOGGER.info("Skipped %d websites", state.skipped)
        LOGGER.info(
            "- %d skipped because no new visit since the last script execution",
            max(0, state.skipped - state.skipped_day_archives),
        )
        LOGGER.info(
            "- %d skipped because existing daily reports are less than %s old",
            state.skipped_day_archives,
            pretty_seconds(self.ttl.settings.today_ttl),
        )
        LOGGER.info(
            "- %d skipped because existing week/month/year periods reports are less than %s old",
            state.skipped_periods_archives,
            pretty_seconds(self.ttl.settings.periods_ttl),
        )
        LOGGER.info("Total API requests: %d", state.requests)
        LOGGER.info(
            "done: %d/%d %d%%, %d vtoday, %d wtoday, %d wperiods, %d req, %s",
            processed,
            total,
            percent,
            state.visits_today,
            state.websites_with_visits,
            state.archived_periods,
            state.requests,
            pretty_seconds(elapsed),
        )

    def run_scheduled_tasks(self) -> None:
        _log_section("SCHEDULED TASKS")
        if self.config.disable_scheduled_tasks:
            LOGGER.info("Scheduled tasks are disabled (--disable-scheduled-tasks)")
            return

        LOGGER.info("Starting scheduled tasks...")
        url = self._api_url(method="CoreAdminHome.runScheduledTasks", format="csv", convertToUnicode="0")
        client = self._client(timeout=self.config.timeout.request_timeout)
        try:
            output = client.request(url).strip()
        except ReportRequestError as exc:
            self.state.log_error(f"Scheduled tasks failed: {exc}")
            return
        finally:
            if client is not self._report_client:
                client.close()

        if output == _NO_SCHEDULED_TASK_OUTPUT or not output:
            output = "No task to run"
        LOGGER.info("%s", output)
        LOGGER.info("done")

    def end(self) -> int:
        """Record the outcome of the run; return the process exit status."""

        if not self.state.has_errors:
            self.options.set_timestamp(OPTION_ARCHIVING_FINISHED_TS, self._time_source())
            return 0

        _log_section("SUMMARY OF ERRORS")
        for error in self.state.errors:
            LOGGER.info("Error: %s", error)
        LOGGER.error(
            "%d total errors during this script execution, please investigate and try and fix these errors.",
            len(self.state.errors),
        )
        return 1

    def main(self) -> int:
        self.init()
        self.run()
        self.run_scheduled_tasks()
        return self.end()

    # -- helpers -------------------------------------------------------------------

    def _api_url(self, *, method: str, **params: str) -> str:
        query = {"module": "API", "method": method, **params, "token_auth": self.config.token_auth}
        query[TRIGGER_PARAMETER[0]] = TRIGGER_PARAMETER[1]
        if self.config.testmode:
            query["testmode"] = "1"
        return f"{self._api_root}?{urlencode(query)}"

    def _client(self, *, timeout: float) -> ReportClient:
        if self._report_client is not None:
            return self._report_client
        return ReportClient(
            timeout=timeout,
            user_agent=self.config.user_agent,
            verify=not self.config.accept_invalid_ssl_certificate,
        )


__all__ = ["CronArchiver"]
