"""Sites whose archived reports were invalidated by an external system."""

from __future__ import annotations

import json
import logging
from typing import Iterable

from .options import OptionStore

LOGGER = logging.getLogger(__name__)

OPTION_INVALIDATED_IDSITES = "InvalidatedOldReports_WebsiteIds"


class InvalidatedSites:
    """The persistent invalidation set, stored as a JSON list option.

    Log importers add sites after back-filling old data; the orchestrator
    removes a site as soon as it queues that site's day job.
    """

    def __init__(self, options: OptionStore) -> None:
        self._options = options

    def site_ids(self) -> list[int]:
        raw = self._options.get(OPTION_INVALIDATED_IDSITES)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring corrupt invalidated sites option: %r", raw)
            return []

        site_ids: list[int] = []
        for value in payload if isinstance(payload, list) else []:
            try:
                site_id = int(value)
            except (TypeError, ValueError):
                continue
            if site_id not in site_ids:
                site_ids.append(site_id)
        return site_ids

    def add(self, site_ids: Iterable[int]) -> list[int]:
        current = self.site_ids()
        for site_id in site_ids:
            if site_id not in current:
                current.append(int(site_id))
        self._store(current)
        return current

    def remove(self, site_id: int) -> bool:
        current = self.site_ids()
        if site_id not in current:
            return False
        current.remove(site_id)
        self._store(current)
        LOGGER.debug("Site %s removed from the invalidated sites list", site_id)
        return True

    def _store(self, site_ids: list[int]) -> None:
        self._options.set(OPTION_INVALIDATED_IDSITES, json.dumps(site_ids))
