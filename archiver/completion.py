"""Per-site completion state machine driven by resolved archiving jobs."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Mapping, Optional

from .counters import CounterRegistry
from .jobs import ArchiveJob, job_key
from .options import DAY_CLASS, PERIODS_CLASS, ProgressStore
from .producer import JobProducer
from .queue import ResolvedJobMarkers
from .state import RunState
from .ttl import TtlPolicy

LOGGER = logging.getLogger(__name__)


def parse_report_response(text: Optional[str]) -> Optional[list[Mapping[str, Any]]]:
    """Return the report rows in chronological order, or ``None`` if the response is invalid.

    Accepted shapes are a mapping keyed by sub-period (``{"2024-01-01": {...}}``),
    a single row (``{"nb_visits": 3}``) and a list of rows, optionally carrying
    a ``date`` key. Empty responses, non-JSON payloads, error objects and empty
    collections are invalid.
    """

    if not text or not text.strip():
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None

    if isinstance(payload, dict):
        if str(payload.get("result", "")).lower() == "error":
            return None
        if "nb_visits" in payload:
            return [payload]
        rows = [_as_row(payload[key]) for key in sorted(payload)]
    elif isinstance(payload, list):
        rows = [_as_row(entry) for entry in payload]
        if rows and all("date" in row for row in rows):
            rows.sort(key=lambda row: str(row["date"]))
    else:
        return None

    return rows or None


def _as_row(entry: Any) -> Mapping[str, Any]:
    # Periods without data are serialised as empty lists.
    return entry if isinstance(entry, dict) else {}


def _visits(row: Mapping[str, Any]) -> int:
    try:
        return int(row.get("nb_visits") or 0)
    except (TypeError, ValueError):
        return 0


def visits_last_period(rows: list[Mapping[str, Any]]) -> int:
    return _visits(rows[-1]) if rows else 0


def visits_in_window(rows: list[Mapping[str, Any]]) -> int:
    return sum(_visits(row) for row in rows)


class CompletionHandler:
    """Interpret one resolved job and advance its site.

    ``activeRequests`` is decremented on every resolution, valid or not, so a
    site always drains. The decrement that brings it to zero, when that same
    resolution queued nothing new, marks the site processed; because the value
    comes from the atomic decrement, only one handler across all processes
    can observe it.
    """

    def __init__(
        self,
        *,
        producer: JobProducer,
        counters: CounterRegistry,
        progress: ProgressStore,
        ttl: TtlPolicy,
        markers: Optional[ResolvedJobMarkers] = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._producer = producer
        self._counters = counters
        self._progress = progress
        self._ttl = ttl
        self._markers = markers
        self._time_source = time_source or time.time

    def handle_batch(self, responses: Mapping[str, str], state: RunState) -> None:
        for url, response in responses.items():
            self.handle(url, response, state)

    def handle(self, url: str, response: Optional[str], state: RunState) -> None:
        job = ArchiveJob.from_url(url)
        if job is None:
            LOGGER.debug("Ignoring result that cannot be attributed to a site: %s", url)
            return

        if self._markers is not None and not self._markers.mark_resolved(job_key(url)):
            LOGGER.debug("Ignoring duplicate delivery of %s", job.describe())
            return

        rows = parse_report_response(response)
        visits_today = visits_last_period(rows) if rows else 0
        visits_window = visits_in_window(rows) if rows else 0

        remaining_active = self._counters.active_requests(job.site_id).decrement()

        if job.is_day and not job.segment:
            queued, archived = self._day_resolved(job, url, response, rows, visits_today, visits_window, state)
        else:
            queued, archived = 0, self._period_resolved(job, url, response, rows, state)

        if archived:
            self._log_archived(job, visits_today, visits_window)

        if remaining_active == 0 and queued == 0:
            processed = self._counters.processed_sites().increment()
            LOGGER.info(
                "Archived website id = %s, processed %d / %d sites",
                job.site_id,
                processed,
                state.total_sites,
            )

    def _day_resolved(
        self,
        job: ArchiveJob,
        url: str,
        response: Optional[str],
        rows: Optional[list[Mapping[str, Any]]],
        visits_today: int,
        visits_window: int,
        state: RunState,
    ) -> tuple[int, bool]:
        site_id = job.site_id
        if rows is None:
            state.log_error(
                f"Empty or invalid response '{response or ''}' for website id {site_id}, "
                f"skipping period and segment archiving ({url})"
            )
            state.skipped += 1
            return 0, False

        should_archive_periods = self._ttl.should_archive_periods(site_id)
        settings = self._ttl.settings
        forced = self._ttl.is_invalidated(site_id) or settings.force_all_sites or not settings.respect_ttl

        if visits_today == 0 and not should_archive_periods:
            LOGGER.info("Skipped website id %s, no visit today", site_id)
            state.skipped += 1
            return 0, False

        if visits_window == 0 and not forced:
            LOGGER.info("Skipped website id %s, no visits in the last %s days", site_id, job.date)
            state.skipped += 1
            return 0, False

        if not should_archive_periods:
            LOGGER.info(
                "Skipped website id %s periods processing, already done %s ago",
                site_id,
                self._ttl.pretty_elapsed_since_periods(site_id),
            )
            state.skipped_day_archives += 1
            state.skipped_periods_archives += 1
            state.skipped += 1
            return 0, False

        self._progress.set(site_id, DAY_CLASS, self._time_source())
        # Release the hold taken when the day job was queued.
        self._counters.failed_requests(site_id).decrement()
        state.visits_today += visits_today
        state.websites_with_visits += 1

        queued = self._producer.queue_period_and_segment_jobs(site_id, state)
        return queued, True

    def _period_resolved(
        self,
        job: ArchiveJob,
        url: str,
        response: Optional[str],
        rows: Optional[list[Mapping[str, Any]]],
        state: RunState,
    ) -> bool:
        if rows is None:
            state.log_error(f"Error parsing the following response from {url}: {response or ''}")
            return False

        remaining = self._counters.failed_requests(job.site_id).decrement()
        if remaining == 0:
            self._progress.set(job.site_id, PERIODS_CLASS, self._time_source())
            state.archived_periods += 1
        return True

    def _log_archived(self, job: ArchiveJob, visits_today: int, visits_window: int) -> None:
        segment = job.segment or ""
        if job.date.startswith("last"):
            this_period = "today" if job.period == "day" else f"this {job.period}"
            LOGGER.info(
                "Archived website id = %s, period = %s, %d visits in last %s %ss, %d visits %s [segment = %s]",
                job.site_id,
                job.period,
                visits_window,
                job.date,
                job.period,
                visits_today,
                this_period,
                segment,
            )
        else:
            LOGGER.info(
                "Archived website id = %s, period = %s, %d visits in %ss included in: %s [segment = %s]",
                job.site_id,
                job.period,
                visits_window,
                job.period,
                job.date,
                segment,
            )
