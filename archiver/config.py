"""Configuration objects shared by the archiving orchestrator."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

DEFAULT_USER_AGENT = "report-archiver/1.0"

ARCHIVING_JOB_NAMESPACE = "CronArchive"

# Reports for today are re-processed at most once per this many seconds.
DEFAULT_TODAY_ARCHIVE_TTL = 150

# Week/month/year reports are re-processed at most once an hour.
SECONDS_DELAY_BETWEEN_PERIOD_ARCHIVES = 3600

# --force-all-periods without a value, and the window used on the very first run.
ARCHIVE_SITES_WITH_TRAFFIC_SINCE = 7 * 86400

ALL_PERIODS: tuple[str, ...] = ("day", "week", "month", "year")


class ConfigurationError(ValueError):
    """Raised when the archiving run is configured with unusable values."""


@dataclass(slots=True)
class TimeoutConfig:
    request_timeout: float = 300.0
    validation_timeout: float = 30.0


@dataclass(slots=True)
class ConsumerConfig:
    """Controls how queued jobs are claimed and dispatched to workers."""

    max_concurrent_requests: int = 3
    poll_interval: float = 0.5
    lease_timeout: float = 3600.0


@dataclass(slots=True)
class SegmentConfig:
    """Segments archived for every site, plus per-site additions."""

    all_sites: tuple[str, ...] = ()
    per_site: Dict[int, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: Path, *, extra: tuple[str, ...] = ()) -> "SegmentConfig":
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Segments file not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid segments file {path}: {exc}") from exc

        if not isinstance(payload, dict):
            raise ConfigurationError(f"Segments file {path} must contain a JSON object")

        all_sites = [str(segment) for segment in payload.get("all", []) if segment]
        all_sites.extend(segment for segment in extra if segment)

        per_site: Dict[int, tuple[str, ...]] = {}
        for raw_id, segments in (payload.get("sites") or {}).items():
            try:
                site_id = int(raw_id)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Invalid site id {raw_id!r} in segments file {path}") from exc
            per_site[site_id] = tuple(str(segment) for segment in segments if segment)

        return cls(all_sites=tuple(dict.fromkeys(all_sites)), per_site=per_site)


@dataclass(slots=True)
class ArchiveConfig:
    base_url: str = "http://localhost/"
    token_auth: str = ""
    db_url: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    namespace: str = ARCHIVING_JOB_NAMESPACE
    force_idsites: tuple[int, ...] = ()
    skip_idsites: tuple[int, ...] = ()
    force_all_websites: bool = False
    # None: respect TTLs; True: bare --force-all-periods; int: seconds
    force_all_periods: bool | int | None = None
    force_timeout_for_periods: Optional[int] = None
    today_archive_ttl: int = DEFAULT_TODAY_ARCHIVE_TTL
    force_periods: tuple[str, ...] = ()
    force_date_last_n: Optional[int] = None
    force_date_range: Optional[str] = None
    segments: SegmentConfig = field(default_factory=SegmentConfig)
    disable_scheduled_tasks: bool = False
    accept_invalid_ssl_certificate: bool = False
    testmode: bool = False
    check_api_url: bool = True
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)

    def api_root(self) -> str:
        """Return the base URL normalised to end with ``index.php``."""

        url = self.base_url.strip()
        if not url:
            raise ConfigurationError("A base URL is required, for example http://example.org/analytics/")
        if "://" not in url:
            url = f"http://{url}"
        if url.endswith("index.php"):
            return url
        if not url.endswith("/"):
            url += "/"
        return url + "index.php"

    def periods_to_process(self) -> tuple[str, ...]:
        """Return the enabled periods; an empty ``force_periods`` enables all of them."""

        if not self.force_periods:
            return ALL_PERIODS
        return tuple(period for period in ALL_PERIODS if period in self.force_periods)
