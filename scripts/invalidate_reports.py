"""Flag sites whose historical reports must be rebuilt by the next archiving run."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure the repository root is importable when executing from the scripts/ directory.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from archiver.invalidation import InvalidatedSites
from archiver.options import OptionStore
from models import Base


LOGGER = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Mark sites as invalidated, e.g. after importing old logs. The next archiving "
            "run processes them regardless of TTLs and over their full history."
        )
    )
    parser.add_argument(
        "--db-url",
        help="SQLAlchemy database URL. Defaults to ARCHIVER_DATABASE_URL.",
    )
    parser.add_argument(
        "--idsites",
        help="Comma-separated list of site ids to invalidate.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the currently invalidated site ids and exit.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which site ids would be added without storing them.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging output.",
    )
    return parser.parse_args(argv)


def resolve_db_url(cli_db_url: str | None) -> str:
    if cli_db_url:
        return cli_db_url

    env_db = os.getenv("ARCHIVER_DATABASE_URL")
    if env_db:
        return env_db

    raise SystemExit("No database URL provided. Supply --db-url or configure ARCHIVER_DATABASE_URL.")


def parse_site_ids(value: str | None) -> list[int]:
    if not value:
        return []
    site_ids: list[int] = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            site_id = int(part)
        except ValueError as exc:
            raise SystemExit(f"Invalid site id '{part}'") from exc
        if site_id <= 0:
            raise SystemExit(f"Invalid site id '{part}'")
        site_ids.append(site_id)
    return list(dict.fromkeys(site_ids))


def main(argv: Sequence[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    engine = create_engine(resolve_db_url(args.db_url))
    Base.metadata.create_all(engine)
    invalidated = InvalidatedSites(OptionStore(sessionmaker(bind=engine)))

    try:
        current = invalidated.site_ids()
        if args.list:
            LOGGER.info(
                "Invalidated site ids: %s", ", ".join(str(site_id) for site_id in current) or "<none>"
            )
            return 0

        requested = parse_site_ids(args.idsites)
        if not requested:
            LOGGER.error("Nothing to do: supply --idsites or --list.")
            return 2

        new_ids = [site_id for site_id in requested if site_id not in current]
        if args.dry_run:
            LOGGER.info(
                "[DRY-RUN] Would invalidate %d site(s): %s",
                len(new_ids),
                ", ".join(str(site_id) for site_id in new_ids) or "<none>",
            )
            return 0

        stored = invalidated.add(requested)
        LOGGER.info("Invalidated %d new site(s); %d site(s) now pending.", len(new_ids), len(stored))
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
