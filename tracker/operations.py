"""Caller-facing operations returning ``{success, data | error}`` style results.

The CLI and the Celery tasks both go through these functions so that request
validation and error mapping live in one place. ``OperationResult.status``
maps onto HTTP codes as ``ok`` 200, ``invalid`` 400, ``not_found`` 404 and
``error`` 500.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterator

import httpx

from models import TrackedUnit, TrackedWork

from .config import TrackerConfig
from .http_client import HttpFetcher
from .persistence import WorkRepository, build_session_factory
from .registry import build_adapters
from .service import InvalidSourceError, TrackerService, WorkNotFoundError
from .sources import SearchResult

LOGGER = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_INVALID = "invalid"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"

_HTTP_STATUS = {STATUS_OK: 200, STATUS_INVALID: 400, STATUS_NOT_FOUND: 404, STATUS_ERROR: 500}


@dataclass(slots=True)
class OperationResult:
    success: bool
    data: Any = None
    error: str | None = None
    status: str = STATUS_OK

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.status]

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        payload: dict[str, Any] = {"success": False, "error": self.error}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    @classmethod
    def ok(cls, data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, status: str, error: str, data: Any = None) -> "OperationResult":
        return cls(success=False, data=data, error=error, status=status)


@contextmanager
def open_service(
    config: TrackerConfig,
    *,
    session_factory=None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Iterator[TrackerService]:
    """Wire fetcher, adapters and repository for one unit of work."""

    if session_factory is None:
        if not config.db_url:
            raise ValueError("A database URL is required")
        session_factory = build_session_factory(config.db_url)

    with HttpFetcher(config, transport=transport, sleep=sleep) as fetcher:
        service = TrackerService(
            build_adapters(config, fetcher),
            WorkRepository(session_factory),
            update_unit_limit=config.update_unit_limit,
        )
        yield service


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_search_result(result: SearchResult) -> dict[str, Any]:
    return asdict(result)


def serialize_work(work: TrackedWork) -> dict[str, Any]:
    latest = None
    if work.latest_unit_number is not None:
        latest = {
            "number": work.latest_unit_number,
            "title": work.latest_unit_title,
            "source": work.latest_unit_source,
            "updated_at": _isoformat(work.latest_unit_observed_at),
        }
    return {
        "id": str(work.id),
        "title": work.title,
        "alternative_titles": list(work.alternative_titles or []),
        "author": work.author,
        "artist": work.artist,
        "description": work.description,
        "cover_image": work.cover_image,
        "genres": list(work.genres or []),
        "status": work.status,
        "sources": [
            {"name": binding.source_name, "id": binding.source_id, "url": binding.url}
            for binding in work.sources
        ],
        "latest_chapter": latest,
        "created_at": _isoformat(work.created_at),
        "updated_at": _isoformat(work.updated_at),
    }


def serialize_unit(unit: TrackedUnit) -> dict[str, Any]:
    return {
        "id": str(unit.id),
        "number": unit.number,
        "title": unit.title,
        "volume": unit.volume,
        "source": unit.source_name,
        "source_id": unit.source_id,
        "url": unit.source_url,
        "published_at": _isoformat(unit.published_at),
        "pages": unit.pages,
        "language": unit.language,
        "group": unit.group,
    }


def _run(action: str, handler: Callable[[], Any]) -> OperationResult:
    try:
        return OperationResult.ok(handler())
    except InvalidSourceError as exc:
        return OperationResult.failure(
            STATUS_INVALID, f"Invalid source: {exc.source_name}", data={"available_sources": exc.available}
        )
    except WorkNotFoundError as exc:
        return OperationResult.failure(STATUS_NOT_FOUND, str(exc))
    except Exception as exc:
        LOGGER.exception("Failed to %s", action)
        return OperationResult.failure(STATUS_ERROR, str(exc) or f"Failed to {action}")


def list_sources(service: TrackerService) -> OperationResult:
    return OperationResult.ok(service.available_sources())


def search(service: TrackerService, query: str | None, source: str | None = None) -> OperationResult:
    if not query or not query.strip():
        return OperationResult.failure(STATUS_INVALID, "Query parameter is required")
    query = query.strip()

    if source:
        return _run(
            "search manga",
            lambda: [serialize_search_result(item) for item in service.search_source(source, query)],
        )

    def _search_all() -> dict[str, list[dict[str, Any]]]:
        return {
            source_name: [serialize_search_result(item) for item in results]
            for source_name, results in service.search_all(query).items()
        }

    return _run("search manga", _search_all)


def import_work(service: TrackerService, source: str | None, source_id: str | None) -> OperationResult:
    if not source or not source_id:
        return OperationResult.failure(STATUS_INVALID, "source and source_id parameters are required")
    return _run("import manga", lambda: serialize_work(service.import_work(source, source_id)))


def update_work(service: TrackerService, work_id: str) -> OperationResult:
    return _run("update manga", lambda: serialize_work(service.update_work(work_id)))


def sync(service: TrackerService, source: str | None, limit: int = 20) -> OperationResult:
    if not source:
        return OperationResult.failure(
            STATUS_INVALID,
            "source parameter is required",
            data={"available_sources": service.available_sources()},
        )
    if limit <= 0:
        return OperationResult.failure(STATUS_INVALID, "limit must be a positive integer")
    return _run("sync manga updates", lambda: asdict(service.sync_recent_updates(source, limit)))


def list_works(service: TrackerService, limit: int = 50, skip: int = 0) -> OperationResult:
    if limit < 0 or skip < 0:
        return OperationResult.failure(STATUS_INVALID, "limit and skip must not be negative")
    return _run("fetch manga", lambda: [serialize_work(work) for work in service.list_works(limit, skip)])


def get_work_with_units(service: TrackerService, work_id: str) -> OperationResult:
    def _load() -> dict[str, Any]:
        loaded = service.get_work_with_units(work_id)
        payload = serialize_work(loaded.work)
        payload["chapters"] = [serialize_unit(unit) for unit in loaded.units]
        return payload

    return _run("fetch manga", _load)


__all__ = [
    "OperationResult",
    "get_work_with_units",
    "import_work",
    "list_sources",
    "list_works",
    "open_service",
    "search",
    "serialize_search_result",
    "serialize_unit",
    "serialize_work",
    "sync",
    "update_work",
]
