"""Celery application for scheduled syncs and chapter refreshes."""

from __future__ import annotations

from typing import Optional

from celery import Celery

from .config import TrackerConfig


def _with_prefix(db_url: Optional[str], prefix: str) -> Optional[str]:
    if not db_url:
        return None
    return db_url if db_url.startswith(prefix) else f"{prefix}{db_url}"


def create_celery_app(config: TrackerConfig | None = None) -> Celery:
    """Build the Celery app from ``config`` (``TrackerConfig.from_env()`` by default).

    Without an explicit broker the tracker database doubles as the broker and
    result backend; with no database either, tasks run in memory.
    """

    config = config or TrackerConfig.from_env()
    worker = config.worker
    broker_url = worker.broker_url or _with_prefix(config.db_url, "sqla+") or "memory://"
    backend_url = worker.result_backend or _with_prefix(config.db_url, "db+") or "cache+memory://"

    app = Celery("tracker", broker=broker_url, backend=backend_url, include=["tracker.tasks"])
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_always_eager=worker.always_eager,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
    )
    if backend_url.startswith("db+") and not backend_url.startswith("db+sqlite"):
        app.conf.update(
            database_engine_options=worker.engine_options(),
            database_short_lived_sessions=True,
        )
    return app


celery_app = create_celery_app()


__all__ = ["celery_app", "create_celery_app"]
