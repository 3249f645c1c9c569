"""HTTP client issuing archiving requests against the reporting API."""

from __future__ import annotations

import logging

import httpx

from .config import DEFAULT_USER_AGENT

LOGGER = logging.getLogger(__name__)


class ReportRequestError(RuntimeError):
    """Raised when a report request fails irrecoverably."""


class ReportClient:
    """Thin wrapper over ``httpx.Client`` returning raw response bodies.

    The body is returned as-is, even for error payloads; interpreting it is
    the completion handler's job.
    """

    def __init__(
        self,
        *,
        timeout: float = 300.0,
        user_agent: str = DEFAULT_USER_AGENT,
        verify: bool = True,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._verify = verify
        self._transport = transport
        self._client = client or self._build_client()
        self._owns_client = client is None

    def _build_client(self) -> httpx.Client:
        kwargs: dict[str, object] = {
            "timeout": self._timeout,
            "headers": {"User-Agent": self._user_agent},
            "follow_redirects": True,
            "verify": self._verify,
        }
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def request(self, url: str) -> str:
        try:
            response = self._client.get(url)
        except httpx.HTTPError as exc:
            raise ReportRequestError(f"Request to {url} failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise ReportRequestError(f"Unexpected status {response.status_code} for {url}")
        return response.text

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ReportClient":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()
