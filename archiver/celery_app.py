"""Celery application executing archiving requests on any number of workers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from celery import Celery

REQUEST_QUEUE = "archiving"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return max(0, int(value))
    except ValueError:
        return default


def _with_prefix(db_url: Optional[str], prefix: str) -> Optional[str]:
    if not db_url:
        return None
    return db_url if db_url.startswith(prefix) else f"{prefix}{db_url}"


@dataclass(slots=True)
class CelerySettings:
    broker_url: str = "memory://"
    backend_url: str = "cache+memory://"
    always_eager: bool = True
    # Hard cap on a single report computation; 0 disables it.
    task_time_limit: int = 0
    result_expires: int = 86400

    @classmethod
    def from_env(cls) -> "CelerySettings":
        """Read ARCHIVER_* variables; the archiving database doubles as broker and backend."""

        db_url = os.getenv("ARCHIVER_DATABASE_URL")
        broker_url = os.getenv("ARCHIVER_CELERY_BROKER_URL") or _with_prefix(db_url, "sqla+")
        backend_url = os.getenv("ARCHIVER_CELERY_RESULT_BACKEND") or _with_prefix(db_url, "db+")
        defaults = cls()
        return cls(
            broker_url=broker_url or defaults.broker_url,
            backend_url=backend_url or defaults.backend_url,
            always_eager=_env_bool("ARCHIVER_CELERY_TASK_ALWAYS_EAGER", defaults.always_eager),
            task_time_limit=_env_int("ARCHIVER_TASK_TIME_LIMIT", defaults.task_time_limit),
            result_expires=_env_int("ARCHIVER_RESULT_EXPIRES", defaults.result_expires),
        )


def create_celery_app(settings: CelerySettings | None = None) -> Celery:
    settings = settings or CelerySettings.from_env()

    app = Celery(
        "archiver",
        broker=settings.broker_url,
        backend=settings.backend_url,
        include=["archiver.tasks"],
    )
    conf_updates = {
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "task_always_eager": settings.always_eager,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "task_default_queue": REQUEST_QUEUE,
        "worker_prefetch_multiplier": 1,
        "result_expires": settings.result_expires,
        "broker_connection_retry_on_startup": True,
    }
    if settings.task_time_limit:
        conf_updates["task_time_limit"] = settings.task_time_limit
    if settings.backend_url.startswith("db+"):
        conf_updates["database_engine_options"] = {
            # Workers only write short results; keep their pool small.
            "pool_size": _env_int("ARCHIVER_DB_POOL_SIZE", 2),
            "max_overflow": 0,
            "pool_pre_ping": True,
            "pool_recycle": 1800,
        }
        conf_updates["database_short_lived_sessions"] = True
    app.conf.update(**conf_updates)
    return app


celery_app = create_celery_app()


__all__ = ["CelerySettings", "celery_app", "create_celery_app"]
