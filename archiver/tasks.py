"""Celery task executing one archiving request."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from celery import Task

from .celery_app import celery_app
from .config import DEFAULT_USER_AGENT, TimeoutConfig
from .http_client import ReportClient, ReportRequestError

LOGGER = logging.getLogger(__name__)


def _build_client(options: Mapping[str, Any]) -> ReportClient:
    default_timeout = TimeoutConfig().request_timeout
    try:
        timeout = float(options.get("request_timeout", default_timeout))
    except (TypeError, ValueError):
        LOGGER.warning(
            "Invalid request_timeout %r in task payload; using %.1f",
            options.get("request_timeout"),
            default_timeout,
        )
        timeout = default_timeout
    return ReportClient(
        timeout=timeout,
        user_agent=str(options.get("user_agent") or DEFAULT_USER_AGENT),
        verify=not bool(options.get("accept_invalid_ssl_certificate", False)),
    )


@celery_app.task(name="archiver.request_report", bind=True)
def request_report_task(self: Task, url: str, options: Mapping[str, Any] | None = None) -> str:
    """Return the raw response body for ``url``; an empty string when the request failed.

    Jobs are never retried here: an empty body makes the completion handler
    record the failure and the next archiving run picks the site up again.
    """

    with _build_client(options or {}) as client:
        try:
            return client.request(url)
        except ReportRequestError as exc:
            LOGGER.warning("Archiving request failed: %s", exc)
            return ""


__all__ = ["request_report_task"]
