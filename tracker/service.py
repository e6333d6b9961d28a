"""Coordinates source adapters and reconciles their output with storage."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Sequence
from uuid import UUID

from models import TrackedUnit, TrackedWork

from .normalize import unit_number_key
from .persistence import SourceBinding, UnitKey, WorkRepository
from .sources import ScrapedUnit, ScrapedWork, SearchResult, SourceAdapter

LOGGER = logging.getLogger(__name__)


class InvalidSourceError(KeyError):
    """Raised when an operation names a source that is not registered."""

    def __init__(self, source_name: str, available: Sequence[str]) -> None:
        super().__init__(source_name)
        self.source_name = source_name
        self.available = list(available)

    def __str__(self) -> str:
        return f"Invalid source '{self.source_name}' (available: {', '.join(self.available)})"


class WorkNotFoundError(LookupError):
    """Raised when a tracked work id does not exist in storage."""

    def __init__(self, work_id: object) -> None:
        super().__init__(f"Manga not found: {work_id}")
        self.work_id = work_id


@dataclass(slots=True)
class SyncReport:
    source_name: str
    processed: int = 0
    imported: int = 0
    updated: int = 0
    failed: int = 0


@dataclass(slots=True)
class WorkWithUnits:
    work: TrackedWork
    units: list[TrackedUnit]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TrackerService:
    """Fan out to registered adapters and merge results into tracked works.

    Works are identified across sources only through explicit bindings created
    by :meth:`import_work`; titles are never compared, so importing the same
    series from two sources yields two tracked works.
    """

    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        repository: WorkRepository,
        *,
        update_unit_limit: int = 50,
        clock=None,
    ) -> None:
        self._adapters = dict(adapters)
        self._repository = repository
        self._update_unit_limit = update_unit_limit
        self._clock = clock or _utcnow

    @property
    def repository(self) -> WorkRepository:
        return self._repository

    def available_sources(self) -> list[str]:
        return list(self._adapters)

    def get_adapter(self, source_name: str) -> SourceAdapter:
        try:
            return self._adapters[source_name]
        except KeyError:
            raise InvalidSourceError(source_name, self.available_sources()) from None

    def search_all(self, query: str) -> dict[str, list[SearchResult]]:
        if not self._adapters:
            return {}

        results: dict[str, list[SearchResult]] = {}
        with ThreadPoolExecutor(max_workers=len(self._adapters), thread_name_prefix="search") as executor:
            futures = {
                source_name: executor.submit(adapter.search, query)
                for source_name, adapter in self._adapters.items()
            }
            for source_name, future in futures.items():
                try:
                    results[source_name] = future.result()
                except Exception:
                    LOGGER.exception("Search failed for %s", source_name)
                    results[source_name] = []
        return results

    def search_source(self, source_name: str, query: str) -> list[SearchResult]:
        return self.get_adapter(source_name).search(query)

    def get_recent_updates(self, source_name: str, limit: int = 20) -> list[SearchResult]:
        return self.get_adapter(source_name).get_recent_updates(limit)

    def import_work(self, source_name: str, source_id: str) -> TrackedWork:
        adapter = self.get_adapter(source_name)
        details = adapter.get_details(source_id)
        work_fields = self._descriptive_fields(details.work)
        if details.units:
            work_fields.update(self._latest_fields(details.units[-1], source_name))

        existing = self._repository.find_work_by_source(source_name, source_id)
        work = self._repository.update_work_fields(existing.id, work_fields) if existing is not None else None
        if work is not None:
            LOGGER.info("Updated %s from %s/%s", work.title, source_name, source_id)
        else:
            binding = SourceBinding(source_name=source_name, source_id=source_id, url=details.work.source_url)
            work = self._repository.create_work(work_fields, [binding])
            LOGGER.info("Imported %s from %s/%s", work.title, source_name, source_id)

        written = self._upsert_units(work.id, source_name, details.units)
        LOGGER.info("Stored %d chapters for %s from %s", written, work.title, source_name)
        return work

    def update_work(self, work_id: UUID | str) -> TrackedWork:
        work = self._load_work(work_id)

        for binding in list(work.sources):
            adapter = self._adapters.get(binding.source_name)
            if adapter is None:
                LOGGER.warning(
                    "No adapter registered for source %s; skipping it for %s",
                    binding.source_name,
                    work.title,
                )
                continue

            try:
                units = adapter.get_latest_units(binding.source_id, self._update_unit_limit)
                self._upsert_units(work.id, binding.source_name, units)
                newest = self._newest_unit(units)
                if newest is not None:
                    self._repository.advance_latest_unit(work.id, self._latest_fields(newest, binding.source_name))
            except Exception:
                LOGGER.exception(
                    "Failed to update chapters from %s for manga %s", binding.source_name, work.title
                )

        refreshed = self._repository.get_work(work.id)
        if refreshed is None:
            raise WorkNotFoundError(work_id)
        return refreshed

    def sync_recent_updates(self, source_name: str, limit: int = 20) -> SyncReport:
        report = SyncReport(source_name=source_name)
        for entry in self.get_recent_updates(source_name, limit):
            report.processed += 1
            try:
                existing = self._repository.find_work_by_source(source_name, entry.source_id)
                if existing is not None:
                    self.update_work(existing.id)
                    report.updated += 1
                else:
                    self.import_work(source_name, entry.source_id)
                    report.imported += 1
            except Exception:
                report.failed += 1
                LOGGER.exception("Failed to sync manga %s (%s/%s)", entry.title, source_name, entry.source_id)

        LOGGER.info(
            "Synced %d recent updates from %s: %d imported, %d updated, %d failed",
            report.processed,
            source_name,
            report.imported,
            report.updated,
            report.failed,
        )
        return report

    def list_works(self, limit: int = 50, skip: int = 0) -> list[TrackedWork]:
        return self._repository.list_works(limit=limit, skip=skip)

    def get_work_with_units(self, work_id: UUID | str) -> WorkWithUnits:
        work = self._load_work(work_id)
        return WorkWithUnits(work=work, units=self._repository.find_units_by_work(work.id))

    def _load_work(self, work_id: UUID | str) -> TrackedWork:
        if isinstance(work_id, UUID):
            work_uuid = work_id
        else:
            try:
                work_uuid = UUID(str(work_id))
            except ValueError:
                raise WorkNotFoundError(work_id) from None

        work = self._repository.get_work(work_uuid)
        if work is None:
            raise WorkNotFoundError(work_id)
        return work

    def _upsert_units(self, work_id: UUID, source_name: str, units: Sequence[ScrapedUnit]) -> int:
        rows = [
            (
                UnitKey(work_id=work_id, source_name=source_name, source_id=unit.source_id),
                {
                    "number": unit.number,
                    "title": unit.title,
                    "volume": unit.volume,
                    "source_url": unit.source_url,
                    "published_at": unit.published_at,
                    "pages": unit.pages,
                    "language": unit.language,
                    "group": unit.group,
                },
            )
            for unit in units
        ]
        return self._repository.bulk_upsert_units(rows)

    @staticmethod
    def _descriptive_fields(work: ScrapedWork) -> dict[str, object]:
        return {
            "title": work.title,
            "alternative_titles": list(work.alternative_titles),
            "author": work.author,
            "artist": work.artist,
            "description": work.description,
            "cover_image": work.cover_image,
            "genres": list(work.genres),
            "status": work.status.value,
        }

    def _latest_fields(self, unit: ScrapedUnit, source_name: str) -> dict[str, object]:
        return {
            "latest_unit_number": unit.number,
            "latest_unit_title": unit.title,
            "latest_unit_source": source_name,
            "latest_unit_observed_at": self._clock(),
        }

    @staticmethod
    def _newest_unit(units: Sequence[ScrapedUnit]) -> ScrapedUnit | None:
        newest: ScrapedUnit | None = None
        newest_value: float | None = None
        for unit in units:
            value = unit_number_key(unit.number)
            if value is None:
                continue
            if newest_value is None or value > newest_value:
                newest, newest_value = unit, value
        return newest


__all__ = [
    "InvalidSourceError",
    "SyncReport",
    "TrackerService",
    "WorkNotFoundError",
    "WorkWithUnits",
]
