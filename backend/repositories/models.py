"""
SQLAlchemy ORM models for persistence.
"""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db import Base
from domain.models import utcnow


class VenueORM(Base):
    __tablename__ = "venues"
    __table_args__ = (Index("ix_venues_lat_lng", "latitude", "longitude"),)

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state_province = Column(String, nullable=True)
    country = Column(String, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    venue_type = Column(String, nullable=False)
    source = Column(String, nullable=False)
    external_place_id = Column(String, nullable=True, unique=True)
    external_id = Column(String, nullable=True, index=True)
    verification_tier = Column(Integer, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    visits = relationship("VisitORM", back_populates="venue")


class VisitORM(Base):
    __tablename__ = "visits"
    __table_args__ = (
        UniqueConstraint("user_id", "venue_id", "arrival_time", name="uq_visits_user_venue_arrival"),
    )

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    venue_id = Column(String, ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, index=True)
    arrival_time = Column(DateTime, nullable=False)
    departure_time = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
    source = Column(String, nullable=False)
    imported_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    venue = relationship("VenueORM", back_populates="visits")


class ImportHistoryORM(Base):
    __tablename__ = "import_history"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    imported_at = Column(DateTime, default=utcnow, nullable=False)
    file_name = Column(String, nullable=True)
    job_id = Column(String, nullable=True)
    total_places = Column(Integer, nullable=False, default=0)
    visits_created = Column(Integer, nullable=False, default=0)
    visits_skipped = Column(Integer, nullable=False, default=0)
    new_venues_created = Column(Integer, nullable=False, default=0)
    existing_venues_matched = Column(Integer, nullable=False, default=0)
    processing_time_ms = Column(Integer, nullable=False, default=0)
    metadata_json = Column(JSON, nullable=True)


class ImportJobORM(Base):
    __tablename__ = "import_jobs"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    file_name = Column(String, nullable=True)
    status = Column(String, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    payload = Column(JSON, nullable=True)
    progress = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
