"""Accumulated bookkeeping of a single archiving run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

# Only the first N characters of an error are kept in the run summary.
TRUNCATE_ERROR_MESSAGE_SUMMARY = 6000


@dataclass(slots=True)
class RunState:
    total_sites: int = 0
    visits_today: int = 0
    websites_with_visits: int = 0
    archived_periods: int = 0
    skipped: int = 0
    skipped_day_archives: int = 0
    skipped_periods_archives: int = 0
    requests: int = 0
    errors: list[str] = field(default_factory=list)

    def log_error(self, message: str, *, truncate: bool = True) -> None:
        if truncate:
            message = message[:TRUNCATE_ERROR_MESSAGE_SUMMARY]
        message = message.replace("\n", " ").replace("\t", " ")
        self.errors.append(message)
        LOGGER.error(message)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
