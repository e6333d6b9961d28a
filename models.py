from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func
import uuid_utils
import uuid


def generate_uuid7():
    """Generate UUIDv7 and convert to standard Python UUID"""
    uuid7_obj = uuid_utils.uuid7()
    return uuid.UUID(str(uuid7_obj))


JSONType = JSON().with_variant(JSONB(), "postgresql")

Base = declarative_base()


class TrackedWork(Base):
    __tablename__ = 'works'
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    title = Column(String(500), nullable=False, index=True)
    alternative_titles = Column(JSONType)
    author = Column(String(300))
    artist = Column(String(300))
    description = Column(Text)
    cover_image = Column(String(2000))
    genres = Column(JSONType)
    status = Column(String(20), nullable=False, default="ongoing")

    # Cached pointer to the newest known chapter
    latest_unit_number = Column(String(50))
    latest_unit_title = Column(String(500))
    latest_unit_source = Column(String(100))
    latest_unit_observed_at = Column(DateTime, index=True)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    sources = relationship(
        "WorkSource",
        back_populates="work",
        cascade="all, delete-orphan",
        order_by="WorkSource.position",
        lazy="selectin",
    )

    def binds(self, source_name: str, source_id: str) -> bool:
        return any(
            binding.source_name == source_name and binding.source_id == source_id
            for binding in self.sources
        )

    def __repr__(self):
        return f"<TrackedWork(id={self.id}, title='{(self.title or '')[:30]}', sources={len(self.sources)})>"


class WorkSource(Base):
    """Binding between a tracked work and one source identity."""

    __tablename__ = 'work_sources'
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    work_id = Column(Uuid, ForeignKey('works.id', ondelete='CASCADE'), nullable=False, index=True)
    source_name = Column(String(100), nullable=False)
    source_id = Column(String(200), nullable=False)
    url = Column(String(2000), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    # Relationship
    work = relationship("TrackedWork", back_populates="sources")

    # A source identity may be bound to a single work only
    __table_args__ = (
        UniqueConstraint('source_name', 'source_id', name='uq_work_sources_identity'),
    )

    def __repr__(self):
        return f"<WorkSource(work_id={self.work_id}, source='{self.source_name}', id='{self.source_id}')>"


class TrackedUnit(Base):
    __tablename__ = 'units'
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    work_id = Column(Uuid, ForeignKey('works.id', ondelete='CASCADE'), nullable=False)
    number = Column(String(50), nullable=False)
    title = Column(String(500))
    volume = Column(String(50))
    source_name = Column(String(100), nullable=False)
    source_id = Column(String(200), nullable=False)
    source_url = Column(String(2000), nullable=False)
    published_at = Column(DateTime(timezone=True), index=True)
    pages = Column(Integer)
    language = Column(String(20), default="en")
    group = Column(String(300))
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('work_id', 'source_name', 'source_id', name='uq_units_work_source'),
        Index('ix_units_work_id_number', 'work_id', 'number'),
    )

    def __repr__(self):
        return (
            f"<TrackedUnit(id={self.id}, work_id={self.work_id}, number='{self.number}', "
            f"source='{self.source_name}')>"
        )
