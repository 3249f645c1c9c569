"""Command-line entrypoint running one archiving pass."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import (
    ALL_PERIODS,
    DEFAULT_TODAY_ARCHIVE_TTL,
    ArchiveConfig,
    ConfigurationError,
    ConsumerConfig,
    SegmentConfig,
    TimeoutConfig,
)
from .cron import CronArchiver
from .dates import validate_date_range
from models import Base

LOGGER = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Pre-process reports for every site with new visits and for the current periods"
    )
    parser.add_argument("--url", type=str, required=True, help="Base URL of the reporting server")
    parser.add_argument("--token-auth", type=str, default="", help="Super user token used for API requests")
    parser.add_argument("--db-url", type=str, required=True, help="SQLAlchemy database URL")
    parser.add_argument(
        "--force-idsites",
        type=str,
        default=None,
        help="Comma-separated list of site ids to process; all other sites are ignored",
    )
    parser.add_argument(
        "--skip-idsites",
        type=str,
        default=None,
        help="Comma-separated list of site ids to skip",
    )
    parser.add_argument(
        "--force-all-websites",
        action="store_true",
        help="Process every website, even those without visits since the last run",
    )
    parser.add_argument(
        "--force-all-periods",
        nargs="?",
        const=True,
        default=None,
        metavar="SECONDS",
        help=(
            "Ignore archive TTLs and process sites with visits in the last SECONDS "
            "(one week when no value is given)"
        ),
    )
    parser.add_argument(
        "--force-timeout-for-periods",
        type=int,
        default=None,
        help="Seconds before week/month/year reports are refreshed (default: max(3600, today TTL))",
    )
    parser.add_argument(
        "--today-ttl",
        type=int,
        default=DEFAULT_TODAY_ARCHIVE_TTL,
        help=f"Seconds before today's reports are re-processed (default: {DEFAULT_TODAY_ARCHIVE_TTL})",
    )
    parser.add_argument(
        "--force-periods",
        type=str,
        default=None,
        help=f"Comma-separated subset of periods to process ({', '.join(ALL_PERIODS)})",
    )
    parser.add_argument(
        "--force-date-last-n",
        type=int,
        default=None,
        help="Archive the last N periods instead of the computed number",
    )
    parser.add_argument(
        "--force-date-range",
        type=str,
        default=None,
        help="Archive this date range instead of lastN, e.g. 2012-01-01,2012-03-15",
    )
    parser.add_argument(
        "--segment",
        action="append",
        default=[],
        help="Segment definition pre-processed for every site (repeatable)",
    )
    parser.add_argument(
        "--segments-file",
        type=Path,
        default=None,
        help='JSON file with segments: {"all": [...], "sites": {"<id>": [...]}}',
    )
    parser.add_argument(
        "--disable-scheduled-tasks",
        action="store_true",
        help="Do not trigger the scheduled tasks once archiving is done",
    )
    parser.add_argument(
        "--accept-invalid-ssl-certificate",
        action="store_true",
        help="Do not verify TLS certificates of the reporting server",
    )
    parser.add_argument("--testmode", action="store_true", help="Append testmode=1 to every API request")
    parser.add_argument(
        "--skip-url-check",
        action="store_true",
        help="Do not verify that --url points to a reporting API before starting",
    )
    parser.add_argument(
        "--concurrent-requests-per-website",
        type=int,
        default=ConsumerConfig().max_concurrent_requests,
        help=(
            "Maximum number of archiving requests this process keeps in flight at once, "
            "across all websites (name kept for compatibility with existing cron setups)"
        ),
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=ConsumerConfig().poll_interval,
        help="Seconds to wait between checks for finished requests",
    )
    parser.add_argument(
        "--lease-timeout",
        type=float,
        default=ConsumerConfig().lease_timeout,
        help="Seconds after which a claimed but unacknowledged job can be claimed again",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=TimeoutConfig().request_timeout,
        help="Timeout in seconds of a single archiving request",
    )
    return parser


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _parse_site_ids(raw_value: str | None, option: str) -> tuple[int, ...]:
    if not raw_value:
        return ()
    site_ids: list[int] = []
    for part in raw_value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            site_ids.append(int(part))
        except ValueError as exc:
            raise ConfigurationError(f"{option} expects comma-separated site ids, got {part!r}") from exc
    return tuple(dict.fromkeys(site_ids))


def _parse_periods(raw_value: str | None) -> tuple[str, ...]:
    if not raw_value:
        return ()
    periods = tuple(dict.fromkeys(part.strip().lower() for part in raw_value.split(",") if part.strip()))
    unknown = [period for period in periods if period not in ALL_PERIODS]
    if unknown:
        raise ConfigurationError(
            f"--force-periods got unknown periods {', '.join(unknown)}; valid values are {', '.join(ALL_PERIODS)}"
        )
    return periods


def _parse_force_all_periods(raw_value: object) -> bool | int | None:
    if raw_value is None or raw_value is True:
        return raw_value
    try:
        seconds = int(str(raw_value))
    except ValueError as exc:
        raise ConfigurationError(f"--force-all-periods expects a number of seconds, got {raw_value!r}") from exc
    # zero or less behaves as if the flag were absent
    return seconds if seconds > 0 else None


def build_config(args: argparse.Namespace) -> ArchiveConfig:
    extra_segments = tuple(segment for segment in args.segment if segment)
    if args.segments_file is not None:
        segments = SegmentConfig.from_file(args.segments_file, extra=extra_segments)
    else:
        segments = SegmentConfig(all_sites=tuple(dict.fromkeys(extra_segments)))

    if args.force_date_range:
        validate_date_range(args.force_date_range)
    if args.force_date_last_n is not None and args.force_date_last_n <= 0:
        raise ConfigurationError("--force-date-last-n must be a positive integer")
    if args.today_ttl < 0:
        raise ConfigurationError("--today-ttl cannot be negative")

    config = ArchiveConfig(
        base_url=args.url,
        token_auth=args.token_auth,
        db_url=args.db_url,
        force_idsites=_parse_site_ids(args.force_idsites, "--force-idsites"),
        skip_idsites=_parse_site_ids(args.skip_idsites, "--skip-idsites"),
        force_all_websites=args.force_all_websites,
        force_all_periods=_parse_force_all_periods(args.force_all_periods),
        force_timeout_for_periods=args.force_timeout_for_periods,
        today_archive_ttl=args.today_ttl,
        force_periods=_parse_periods(args.force_periods),
        force_date_last_n=args.force_date_last_n,
        force_date_range=args.force_date_range,
        segments=segments,
        disable_scheduled_tasks=args.disable_scheduled_tasks,
        accept_invalid_ssl_certificate=args.accept_invalid_ssl_certificate,
        testmode=args.testmode,
        check_api_url=not args.skip_url_check,
    )
    config.api_root()
    config.consumer.max_concurrent_requests = max(1, args.concurrent_requests_per_website)
    config.consumer.poll_interval = max(0.0, args.poll_interval)
    config.consumer.lease_timeout = max(1.0, args.lease_timeout)
    if args.request_timeout and args.request_timeout > 0:
        config.timeout.request_timeout = float(args.request_timeout)
    return config


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        parser.error(str(exc))

    engine = create_engine(config.db_url)
    Base.metadata.create_all(engine)  # ensure required tables exist before queries
    SessionLocal = sessionmaker(bind=engine)

    archiver = CronArchiver(config, SessionLocal)
    try:
        return archiver.main()
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_arg_parser", "build_config", "configure_logging", "main"]
