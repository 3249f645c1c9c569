"""Date parameter computation for archiving requests."""

from __future__ import annotations

import re
import time
from typing import Callable, Optional

from .config import ConfigurationError

# By default the last 52 days and months are processed; the real N shrinks to
# the number of days since the site was last archived.
DEFAULT_DATE_LAST = 52
# Weeks are not used in yearly archives, so make sure every week is covered.
DEFAULT_DATE_LAST_WEEKS = 260
DEFAULT_DATE_LAST_YEARS = 7

_SECONDS_PER_DAY = 86400
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_KEYWORDS = {"today", "yesterday", "now"}


def validate_date_range(raw_value: str) -> str:
    """Return ``raw_value`` stripped, or raise ``ConfigurationError``."""

    cleaned = raw_value.strip()
    parts = cleaned.split(",")
    if len(parts) != 2:
        raise ConfigurationError("--force-date-range expects a date range ie. YYYY-MM-DD,YYYY-MM-DD")
    for part in parts:
        part = part.strip()
        if not part or not (_DATE_PATTERN.match(part) or part.lower() in _DATE_KEYWORDS):
            raise ConfigurationError(
                f"Invalid date {part!r} in --force-date-range; expected YYYY-MM-DD,YYYY-MM-DD"
            )
    return cleaned


def date_last_cap(period: str) -> int:
    if period == "year":
        return DEFAULT_DATE_LAST_YEARS
    if period == "week":
        return DEFAULT_DATE_LAST_WEEKS
    return DEFAULT_DATE_LAST


class DateRangePolicy:
    """Compute the ``date`` parameter of a job.

    A forced date range wins over everything; otherwise ``lastN`` covers the
    days elapsed since the site was last processed, plus two to absorb
    boundary and clock skew, capped per period.
    """

    def __init__(
        self,
        *,
        force_date_range: Optional[str] = None,
        force_date_last_n: Optional[int] = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._force_date_range = validate_date_range(force_date_range) if force_date_range else None
        if force_date_last_n is not None and force_date_last_n <= 0:
            raise ConfigurationError("--force-date-last-n must be a positive integer")
        self._force_date_last_n = force_date_last_n
        self._time_source = time_source or time.time

    @property
    def forced_date_range(self) -> Optional[str]:
        return self._force_date_range

    def date_parameter(self, period: str, last_processed: Optional[float], created_at: float) -> str:
        if self._force_date_range:
            return self._force_date_range
        return f"last{self.last_n(period, last_processed, created_at)}"

    def last_n(self, period: str, last_processed: Optional[float], created_at: float) -> int:
        if self._force_date_last_n is not None:
            return self._force_date_last_n
        since = last_processed if last_processed else created_at
        elapsed = max(0.0, self._time_source() - since)
        return min(int(elapsed // _SECONDS_PER_DAY) + 2, date_last_cap(period))
