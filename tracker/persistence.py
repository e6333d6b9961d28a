"""Database persistence for tracked works and their chapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, NamedTuple, Sequence
from uuid import UUID

from sqlalchemy import create_engine, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from models import Base, TrackedUnit, TrackedWork, WorkSource, generate_uuid7

from .normalize import unit_number_key

LOGGER = logging.getLogger(__name__)

_UPSERT_BATCH_SIZE = 200
_UNIT_FIELDS = (
    "number",
    "title",
    "volume",
    "source_url",
    "published_at",
    "pages",
    "language",
    "group",
)
_LATEST_FIELDS = (
    "latest_unit_number",
    "latest_unit_title",
    "latest_unit_source",
    "latest_unit_observed_at",
)
_WORK_FIELDS = (
    "title",
    "alternative_titles",
    "author",
    "artist",
    "description",
    "cover_image",
    "genres",
    "status",
    *_LATEST_FIELDS,
)


class WorkPersistenceError(RuntimeError):
    """Raised when reading or writing tracked works fails."""


@dataclass(slots=True)
class SourceBinding:
    source_name: str
    source_id: str
    url: str


class UnitKey(NamedTuple):
    work_id: UUID
    source_name: str
    source_id: str


def build_session_factory(db_url: str, *, create_tables: bool = True, **engine_options: Any) -> sessionmaker:
    """Create an engine for ``db_url`` and return a session factory bound to it."""

    if (db_url.startswith("sqlite") and ":memory:" in db_url) or db_url in ("sqlite://", "sqlite+pysqlite://"):
        # One shared connection so every session sees the same in-memory database.
        engine_options.setdefault("poolclass", StaticPool)
        engine_options.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(db_url, **engine_options)
    if create_tables:
        Base.metadata.create_all(engine)  # ensure required tables exist before queries
    return sessionmaker(bind=engine, expire_on_commit=False)


class WorkRepository:
    """Storage operations the tracker service relies on.

    Instances returned by the repository are detached from their session.
    Partial writes go through :meth:`update_work_fields` and
    :meth:`advance_latest_unit`; :meth:`save_work` writes the whole row.
    """

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def find_work_by_source(self, source_name: str, source_id: str) -> TrackedWork | None:
        try:
            with self._session_factory() as session:
                return self._find_work_by_source(session, source_name, source_id)
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

    def get_work(self, work_id: UUID) -> TrackedWork | None:
        try:
            with self._session_factory() as session:
                return session.get(TrackedWork, work_id)
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

    def list_works(self, limit: int = 50, skip: int = 0) -> list[TrackedWork]:
        statement = (
            select(TrackedWork)
            .order_by(
                TrackedWork.latest_unit_observed_at.desc().nulls_last(),
                TrackedWork.created_at.desc(),
            )
            .offset(max(0, skip))
            .limit(max(0, limit))
        )
        try:
            with self._session_factory() as session:
                return list(session.scalars(statement))
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

    def create_work(self, fields: Mapping[str, Any], bindings: Sequence[SourceBinding]) -> TrackedWork:
        """Insert a work bound to ``bindings``.

        If another writer bound the same source identity first, the existing
        work receives ``fields`` instead and is returned.
        """

        if not bindings:
            raise ValueError("A tracked work needs at least one source binding")

        try:
            with self._session_factory() as session:
                work = TrackedWork(id=generate_uuid7())
                self._apply_fields(work, fields)
                for position, binding in enumerate(bindings):
                    work.sources.append(
                        WorkSource(
                            source_name=binding.source_name,
                            source_id=binding.source_id,
                            url=binding.url,
                            position=position,
                        )
                    )
                session.add(work)
                session.flush()
                session.commit()
                return work
        except IntegrityError:
            first = bindings[0]
            LOGGER.info(
                "Binding %s/%s was created concurrently; updating the existing work",
                first.source_name,
                first.source_id,
            )
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

        existing = self.find_work_by_source(bindings[0].source_name, bindings[0].source_id)
        updated = self.update_work_fields(existing.id, fields) if existing is not None else None
        if updated is None:
            raise WorkPersistenceError(
                f"Work creation for {bindings[0].source_name}/{bindings[0].source_id} conflicted "
                "but no existing work was found"
            )
        return updated

    def save_work(self, work: TrackedWork) -> TrackedWork:
        """Write every column of ``work`` and return the stored instance."""

        try:
            with self._session_factory() as session:
                merged = session.merge(work)
                session.commit()
                return merged
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

    def update_work_fields(self, work_id: UUID, fields: Mapping[str, Any]) -> TrackedWork | None:
        """Overwrite only the named columns of a stored work.

        Columns not named in ``fields`` keep whatever is stored now, not what
        the caller last read.
        """

        try:
            with self._session_factory() as session:
                work = session.get(TrackedWork, work_id, with_for_update=True)
                if work is None:
                    return None
                self._apply_fields(work, fields)
                session.commit()
                return work
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

    def advance_latest_unit(self, work_id: UUID, fields: Mapping[str, Any]) -> bool:
        """Move the latest-chapter pointer when ``fields`` names a greater number.

        The stored pointer is locked and compared inside one transaction.
        Returns ``True`` when the pointer moved.
        """

        unknown = set(fields) - set(_LATEST_FIELDS)
        if unknown:
            raise ValueError(f"Not a latest-chapter field: {', '.join(sorted(unknown))}")
        candidate = unit_number_key(fields.get("latest_unit_number"))
        if candidate is None:
            return False

        try:
            with self._session_factory() as session:
                work = session.get(TrackedWork, work_id, with_for_update=True)
                if work is None:
                    return False
                if work.latest_unit_number is not None:
                    current = unit_number_key(work.latest_unit_number)
                    if current is None or candidate <= current:
                        return False
                self._apply_fields(work, fields)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

    def bulk_upsert_units(self, rows: Iterable[tuple[UnitKey, Mapping[str, Any]]]) -> int:
        """Insert or update chapters keyed by ``(work_id, source_name, source_id)``.

        Returns the number of distinct keys written. Later rows win when a key
        repeats within ``rows``.
        """

        deduplicated: dict[UnitKey, Mapping[str, Any]] = {}
        for key, fields in rows:
            deduplicated[key] = fields
        if not deduplicated:
            return 0

        try:
            with self._session_factory() as session:
                dialect = session.get_bind().dialect.name
                items = list(deduplicated.items())
                for start in range(0, len(items), _UPSERT_BATCH_SIZE):
                    batch = items[start : start + _UPSERT_BATCH_SIZE]
                    if dialect in ("postgresql", "sqlite"):
                        self._upsert_with_conflict_clause(session, dialect, batch)
                    else:
                        self._upsert_with_orm(session, batch)
                session.commit()
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

        LOGGER.debug("Upserted %d chapters", len(deduplicated))
        return len(deduplicated)

    def find_units_by_work(self, work_id: UUID) -> list[TrackedUnit]:
        """Chapters of a work ordered by number (numeric first, then text)."""

        statement = select(TrackedUnit).where(TrackedUnit.work_id == work_id).order_by(TrackedUnit.number)
        try:
            with self._session_factory() as session:
                units = list(session.scalars(statement))
        except SQLAlchemyError as exc:
            raise WorkPersistenceError(str(exc)) from exc

        def _sort_key(unit: TrackedUnit) -> tuple[int, float, str, str]:
            value = unit_number_key(unit.number)
            if value is None:
                return (1, 0.0, unit.number, unit.source_name)
            return (0, value, unit.number, unit.source_name)

        return sorted(units, key=_sort_key)

    @staticmethod
    def _find_work_by_source(session: Session, source_name: str, source_id: str) -> TrackedWork | None:
        statement = (
            select(TrackedWork)
            .join(WorkSource, WorkSource.work_id == TrackedWork.id)
            .where(WorkSource.source_name == source_name, WorkSource.source_id == source_id)
        )
        return session.scalars(statement).first()

    @staticmethod
    def _apply_fields(work: TrackedWork, fields: Mapping[str, Any]) -> None:
        for name, value in fields.items():
            if name not in _WORK_FIELDS:
                raise ValueError(f"Unknown tracked work field {name!r}")
            setattr(work, name, value)

    @staticmethod
    def _unit_values(key: UnitKey, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = {name: fields.get(name) for name in _UNIT_FIELDS}
        values.update(work_id=key.work_id, source_name=key.source_name, source_id=key.source_id)
        return values

    def _upsert_with_conflict_clause(
        self,
        session: Session,
        dialect: str,
        batch: Sequence[tuple[UnitKey, Mapping[str, Any]]],
    ) -> None:
        insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
        rows = []
        for key, fields in batch:
            values = self._unit_values(key, fields)
            values.update(id=generate_uuid7(), created_at=func.now(), updated_at=func.now())
            rows.append(values)

        statement = insert(TrackedUnit).values(rows)
        statement = statement.on_conflict_do_update(
            index_elements=[TrackedUnit.work_id, TrackedUnit.source_name, TrackedUnit.source_id],
            set_={
                **{name: statement.excluded[name] for name in _UNIT_FIELDS},
                "updated_at": func.now(),
            },
        )
        session.execute(statement)

    def _upsert_with_orm(self, session: Session, batch: Sequence[tuple[UnitKey, Mapping[str, Any]]]) -> None:
        for key, fields in batch:
            unit = session.scalars(
                select(TrackedUnit).where(
                    TrackedUnit.work_id == key.work_id,
                    TrackedUnit.source_name == key.source_name,
                    TrackedUnit.source_id == key.source_id,
                )
            ).one_or_none()
            values = self._unit_values(key, fields)
            if unit is None:
                session.add(TrackedUnit(id=generate_uuid7(), **values))
            else:
                for name in _UNIT_FIELDS:
                    setattr(unit, name, values[name])
        session.flush()
