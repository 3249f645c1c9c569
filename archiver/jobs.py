"""Archiving job descriptors and their request-URL wire form."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

PERIODS: tuple[str, ...] = ("day", "week", "month", "year")

# Marks requests issued by the archiver so the server can tell them apart.
TRIGGER_PARAMETER = ("trigger", "archivephp")


@dataclass(slots=True, frozen=True)
class ArchiveJob:
    site_id: int
    period: str
    date: str
    segment: Optional[str] = None

    @property
    def is_day(self) -> bool:
        return self.period == "day"

    def with_segment(self, segment: str) -> "ArchiveJob":
        return ArchiveJob(site_id=self.site_id, period=self.period, date=self.date, segment=segment)

    def to_url(self, api_root: str, token_auth: str, *, testmode: bool = False) -> str:
        """Serialise the job into the report request URL executed by workers."""

        params: list[tuple[str, str]] = [
            ("module", "API"),
            ("method", "API.get"),
            ("idSite", str(self.site_id)),
            ("period", self.period),
            ("date", self.date),
            ("format", "json"),
            ("token_auth", token_auth),
            TRIGGER_PARAMETER,
        ]
        if testmode:
            params.append(("testmode", "1"))
        if self.segment:
            params.append(("segment", self.segment))
        return f"{api_root}?{urlencode(params, safe=',')}"

    @classmethod
    def from_url(cls, url: str) -> Optional["ArchiveJob"]:
        """Recover the job from a request URL or bare query string.

        Returns ``None`` when ``idSite``, ``period`` or ``date`` is missing or
        unusable; such results cannot be attributed to a site.
        """

        query = urlsplit(url).query if "?" in url else url.lstrip("?")
        params = parse_qs(query, keep_blank_values=False)

        def _first(name: str) -> Optional[str]:
            values = params.get(name)
            return values[0] if values else None

        raw_site = _first("idSite")
        period = _first("period")
        date = _first("date")
        if not raw_site or not date or period not in PERIODS:
            return None
        try:
            site_id = int(raw_site)
        except ValueError:
            return None
        return cls(site_id=site_id, period=period, date=date, segment=_first("segment"))

    def describe(self) -> str:
        segment = self.segment or ""
        return f"site={self.site_id} period={self.period} date={self.date} segment={segment!r}"


def job_key(url: str) -> str:
    """Return a fixed-size identity for a job URL."""

    return hashlib.sha256(url.encode("utf-8")).hexdigest()
