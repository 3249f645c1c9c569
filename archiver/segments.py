"""Segments to pre-process for each site."""

from __future__ import annotations

import logging

from .config import SegmentConfig

LOGGER = logging.getLogger(__name__)


class SegmentProvider:
    """Merge the globally configured segments with site-specific ones."""

    def __init__(self, config: SegmentConfig) -> None:
        self._config = config

    @property
    def all_sites(self) -> tuple[str, ...]:
        return self._config.all_sites

    def for_site(self, site_id: int) -> list[str]:
        site_segments = self._config.per_site.get(site_id, ())
        if site_segments:
            LOGGER.info(
                "Will pre-process the following %d segments for website id %s: %s",
                len(site_segments),
                site_id,
                ", ".join(site_segments),
            )
        return list(dict.fromkeys((*self._config.all_sites, *site_segments)))
