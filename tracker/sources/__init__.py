"""Source adapter interface and the value objects adapters produce."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from ..http_client import HttpFetcher
from ..normalize import WorkStatus, unit_number_key
from ..rate_limit import RateLimiter

UNKNOWN_TITLE = "Unknown Title"
DEFAULT_SEARCH_LIMIT = 20


@dataclass(slots=True)
class SearchResult:
    source_id: str
    title: str
    source_url: str
    cover_image: str | None = None


@dataclass(slots=True)
class ScrapedWork:
    title: str
    source_id: str
    source_url: str
    alternative_titles: list[str] = field(default_factory=list)
    author: str | None = None
    artist: str | None = None
    description: str | None = None
    cover_image: str | None = None
    genres: list[str] = field(default_factory=list)
    status: WorkStatus = WorkStatus.ONGOING


@dataclass(slots=True)
class ScrapedUnit:
    number: str
    source_id: str
    source_url: str
    title: str | None = None
    volume: str | None = None
    published_at: datetime | None = None
    pages: int | None = None
    language: str | None = None
    group: str | None = None


@dataclass(slots=True)
class WorkDetails:
    work: ScrapedWork
    units: list[ScrapedUnit]


class SourcePayloadError(RuntimeError):
    """Raised when a source answers with an empty or unrecognised payload."""


class SourceAdapter:
    """Base interface for source-specific adapters.

    Subclasses wait on ``self._rate_limiter`` before each request. List
    operations degrade to an empty list on failure; ``get_details`` is the
    only operation that lets errors reach the caller.
    """

    source_name: str = ""
    default_delay: float = 1.0

    def __init__(
        self,
        fetcher: HttpFetcher,
        *,
        rate_limiter: RateLimiter | None = None,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        self._fetcher = fetcher
        self._rate_limiter = rate_limiter or RateLimiter(self.default_delay)
        self._search_limit = max(1, search_limit)

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def search_limit(self) -> int:
        return self._search_limit

    def search(self, query: str) -> list[SearchResult]:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_details(self, source_id: str) -> WorkDetails:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_latest_units(self, source_id: str, limit: int = 10) -> list[ScrapedUnit]:  # pragma: no cover
        raise NotImplementedError

    def get_recent_updates(self, limit: int = 20) -> list[SearchResult]:  # pragma: no cover - interface only
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(source='{self.source_name}', delay={self._rate_limiter.delay})>"


def sort_units_ascending(units: Iterable[ScrapedUnit]) -> list[ScrapedUnit]:
    """Order units by numeric chapter number; non-numeric numbers keep their place at the end."""

    indexed = list(enumerate(units))

    def _key(item: tuple[int, ScrapedUnit]) -> tuple[int, float, int]:
        index, unit = item
        value = unit_number_key(unit.number)
        if value is None:
            return (1, 0.0, index)
        return (0, value, index)

    return [unit for _, unit in sorted(indexed, key=_key)]


__all__ = [
    "DEFAULT_SEARCH_LIMIT",
    "ScrapedUnit",
    "ScrapedWork",
    "SearchResult",
    "SourceAdapter",
    "SourcePayloadError",
    "UNKNOWN_TITLE",
    "WorkDetails",
    "sort_units_ascending",
]
