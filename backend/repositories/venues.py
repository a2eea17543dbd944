"""
Venue repository backed by SQLAlchemy.
"""
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from domain.models import Venue, VenueSource, VenueType, utcnow
from repositories.models import VenueORM
from services.geo import bounding_box, haversine_m


def _venue_from_orm(orm: VenueORM) -> Venue:
    return Venue(
        id=orm.id,
        name=orm.name,
        latitude=orm.latitude,
        longitude=orm.longitude,
        venue_type=VenueType(orm.venue_type),
        source=VenueSource(orm.source),
        address=orm.address,
        city=orm.city,
        state_province=orm.state_province,
        country=orm.country,
        external_place_id=orm.external_place_id,
        external_id=orm.external_id,
        verification_tier=orm.verification_tier,
        metadata=orm.metadata_json or {},
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


class VenuesRepository:
    """Lookup and creation of shared venues."""

    def find_by_external_place_id(self, session: Session, place_id: str) -> Optional[Venue]:
        orm = (
            session.query(VenueORM)
            .filter(VenueORM.external_place_id == place_id)
            .first()
        )
        return _venue_from_orm(orm) if orm else None

    def find_by_external_id(self, session: Session, external_id: str) -> Optional[Venue]:
        orm = session.query(VenueORM).filter(VenueORM.external_id == external_id).first()
        return _venue_from_orm(orm) if orm else None

    def find_nearby(
        self, session: Session, lat: float, lon: float, radius_m: float
    ) -> List[Tuple[Venue, float]]:
        """
        Return venues within radius_m of the point, closest first, with their
        distance in meters.
        """
        min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius_m)
        candidates = (
            session.query(VenueORM)
            .filter(VenueORM.latitude >= min_lat, VenueORM.latitude <= max_lat)
            .filter(VenueORM.longitude >= min_lon, VenueORM.longitude <= max_lon)
            .all()
        )
        results: List[Tuple[Venue, float]] = []
        for orm in candidates:
            distance = haversine_m(lat, lon, orm.latitude, orm.longitude)
            if distance <= radius_m:
                results.append((_venue_from_orm(orm), distance))
        results.sort(key=lambda item: item[1])
        return results

    def create_venue(self, session: Session, venue: Venue) -> Venue:
        now = utcnow()
        orm = VenueORM(
            id=venue.id,
            name=venue.name,
            address=venue.address,
            city=venue.city,
            state_province=venue.state_province,
            country=venue.country,
            latitude=venue.latitude,
            longitude=venue.longitude,
            venue_type=venue.venue_type.value,
            source=venue.source.value,
            external_place_id=venue.external_place_id,
            external_id=venue.external_id,
            verification_tier=venue.verification_tier,
            metadata_json=venue.metadata or None,
            created_at=venue.created_at or now,
            updated_at=venue.updated_at or now,
        )
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _venue_from_orm(orm)

    def count_venues(self, session: Session) -> int:
        return session.query(VenueORM).count()
