"""Celery tasks that run tracker operations out of process."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Mapping

from celery import Task

from . import operations
from .celery_app import celery_app
from .config import ProxyConfig, TrackerConfig
from .operations import STATUS_ERROR, OperationResult, open_service
from .persistence import build_session_factory

LOGGER = logging.getLogger(__name__)


class RetryableOperationError(RuntimeError):
    """Raised when an operation ended in an unexpected error and may be retried."""


@lru_cache(maxsize=8)
def _session_factory(db_url: str):
    engine_options = {} if db_url.startswith("sqlite") else TrackerConfig.from_env().worker.engine_options()
    return build_session_factory(db_url, **engine_options)


def _build_config(job: Mapping[str, Any]) -> TrackerConfig:
    config = TrackerConfig.from_env()
    config.db_url = str(job["db_url"])

    user_agent = job.get("user_agent")
    if user_agent:
        config.user_agent = str(user_agent)
    request_timeout = job.get("request_timeout")
    if request_timeout is not None:
        try:
            config.timeout.request_timeout = float(request_timeout)
        except (TypeError, ValueError):
            LOGGER.warning(
                "Invalid request_timeout %r in task payload; using %.1f",
                request_timeout,
                config.timeout.request_timeout,
            )
    proxy = job.get("proxy")
    if proxy:
        config.proxy = ProxyConfig.from_endpoint(str(proxy))
    return config


def _finish(self: Task, result: OperationResult, context: str) -> dict[str, Any]:
    if result.status == STATUS_ERROR:
        LOGGER.error("%s failed: %s", context, result.error)
        raise self.retry(exc=RetryableOperationError(result.error or context))
    return result.to_dict()


@celery_app.task(name="tracker.sync_source", bind=True, max_retries=3, default_retry_delay=60)
def sync_source_task(self: Task, job: Mapping[str, Any]) -> dict[str, Any]:
    source = job.get("source")
    config = _build_config(job)
    limit = int(job.get("limit") or config.sync_limit)

    with open_service(config, session_factory=_session_factory(config.db_url)) as service:
        result = operations.sync(service, source, limit)

    LOGGER.info("Sync task for %s finished with status %s", source, result.status)
    return _finish(self, result, f"Sync of {source}")


@celery_app.task(name="tracker.update_work", bind=True, max_retries=3, default_retry_delay=60)
def update_work_task(self: Task, job: Mapping[str, Any]) -> dict[str, Any]:
    work_id = str(job["work_id"])
    config = _build_config(job)

    with open_service(config, session_factory=_session_factory(config.db_url)) as service:
        result = operations.update_work(service, work_id)

    LOGGER.info("Update task for manga %s finished with status %s", work_id, result.status)
    return _finish(self, result, f"Update of manga {work_id}")


__all__ = ["RetryableOperationError", "sync_source_task", "update_work_task"]
