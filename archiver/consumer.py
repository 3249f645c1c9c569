"""Drain the shared job queue through Celery workers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator, Mapping

from .queue import ClaimedJob, JobQueue
from .tasks import request_report_task

LOGGER = logging.getLogger(__name__)


class CeleryConsumer:
    """Claim queued jobs, dispatch them to Celery and yield finished batches.

    ``consume`` is a generator: each yielded item maps job URLs to raw
    response bodies. Jobs are acknowledged only after the caller has handled
    the batch and asked for the next one, so a crash while handling leaves
    them claimable again once their lease expires.
    """

    def __init__(
        self,
        queue: JobQueue,
        *,
        task=request_report_task,
        task_options: Mapping[str, Any] | None = None,
        max_concurrent_requests: int = 3,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._queue = queue
        self._task = task
        self._task_options = dict(task_options or {})
        self._max_concurrent = max(1, int(max_concurrent_requests))
        self._poll_interval = max(0.0, float(poll_interval))
        self._sleep = sleep

    def consume(self, *, finish_when_no_jobs: bool = True) -> Iterator[dict[str, str]]:
        in_flight: list[tuple[Any, ClaimedJob]] = []

        while True:
            free_slots = self._max_concurrent - len(in_flight)
            for claimed in self._queue.claim(free_slots):
                result = self._task.apply_async((claimed.url, self._task_options))
                in_flight.append((result, claimed))

            batch: dict[str, str] = {}
            finished: list[ClaimedJob] = []
            pending: list[tuple[Any, ClaimedJob]] = []
            for result, claimed in in_flight:
                if not result.ready():
                    pending.append((result, claimed))
                    continue
                batch[claimed.url] = self._response_text(result, claimed)
                finished.append(claimed)
            in_flight = pending

            if batch:
                yield batch
                for claimed in finished:
                    self._queue.acknowledge(claimed.job_id)
                continue

            if not in_flight and finish_when_no_jobs:
                LOGGER.debug("No more archiving jobs available")
                return

            self._sleep(self._poll_interval)

    @staticmethod
    def _response_text(result, claimed: ClaimedJob) -> str:
        if result.successful():
            return str(result.result or "")
        LOGGER.warning("Worker failed while requesting %s: %r", claimed.url, result.result)
        return ""
