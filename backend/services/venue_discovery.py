"""
Proactive venue discovery for an area.

The first time anyone searches near a point with no venues stored around
it, nearby breweries from the directory and brewery/winery features from map data are turned into
venues. A 24 h marker per ~11 km grid cell keeps repeat searches from
hitting the upstream services again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from db import SessionLocal
from domain.models import DirectoryBrewery, MapFeature, Venue, VenueSource, VenueType
from repositories.venues import VenuesRepository
from services.brewery_directory import BreweryDirectoryClient
from services.overpass_client import DISCOVERY_RADIUS_M, OverpassClient
from services.venue_matching import VenueMatcher
from services.verification_cache import VerificationCache

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryReport:
    searched: int = 0
    created: int = 0
    skipped: int = 0
    cached: bool = False
    existing: int = 0

    def to_dict(self) -> dict:
        return {
            "searched": self.searched,
            "created": self.created,
            "skipped": self.skipped,
            "cached": self.cached,
            "existing": self.existing,
        }


class VenueDiscovery:
    def __init__(
        self,
        cache: VerificationCache,
        directory: Optional[BreweryDirectoryClient] = None,
        overpass: Optional[OverpassClient] = None,
        matcher: Optional[VenueMatcher] = None,
        venues: Optional[VenuesRepository] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        enabled: bool = True,
    ):
        self.cache = cache
        self.enabled = enabled
        self.directory = directory
        self.overpass = overpass
        self.venues = venues or VenuesRepository()
        self.matcher = matcher or VenueMatcher(self.venues)
        self.session_factory = session_factory

    def _already_known(self, session: Session, external_id: str, lat: float, lng: float, name: str) -> bool:
        if self.venues.find_by_external_id(session, external_id):
            return True
        return self.matcher.match_by_proximity(session, lat, lng, name) is not None

    def _add_brewery(self, session: Session, brewery: DirectoryBrewery) -> bool:
        if self._already_known(session, brewery.id, brewery.latitude, brewery.longitude, brewery.name):
            return False
        self.venues.create_venue(
            session,
            Venue(
                id=Venue.generate_id(),
                name=brewery.name,
                latitude=brewery.latitude,
                longitude=brewery.longitude,
                venue_type=VenueType.BREWERY,
                source=VenueSource.BREWERY_DIRECTORY,
                address=brewery.street,
                city=brewery.city,
                state_province=brewery.state_province,
                country=brewery.country,
                external_id=brewery.id,
                verification_tier=2,
                metadata={"brewery_type": brewery.brewery_type, "website_url": brewery.website_url},
            ),
        )
        return True

    def _add_feature(self, session: Session, feature: MapFeature) -> bool:
        if self._already_known(session, feature.osm_id, feature.latitude, feature.longitude, feature.name):
            return False
        self.venues.create_venue(
            session,
            Venue(
                id=Venue.generate_id(),
                name=feature.name,
                latitude=feature.latitude,
                longitude=feature.longitude,
                venue_type=feature.venue_type,
                source=VenueSource.OSM,
                address=feature.address,
                external_id=feature.osm_id,
                verification_tier=3,
                metadata={"osm_tags": feature.tags},
            ),
        )
        return True

    def discover_area(self, lat: float, lng: float, radius_m: int = DISCOVERY_RADIUS_M) -> DiscoveryReport:
        if not self.enabled:
            logger.info("External lookups disabled; skipping area discovery")
            return DiscoveryReport()

        session = self.session_factory()
        try:
            local = self.venues.find_nearby(session, lat, lng, radius_m)
        finally:
            session.close()
        if local:
            logger.info("Area discovery: %d venues already stored nearby", len(local))
            return DiscoveryReport(existing=len(local))

        marker = self.cache.get_discovery(lat, lng)
        if marker is not None:
            return DiscoveryReport(cached=True)

        report = DiscoveryReport()
        breweries = self.directory.discover_nearby(lat, lng) if self.directory else []
        features = self.overpass.discover_nearby(lat, lng, radius_m) if self.overpass else []
        report.searched = len(breweries) + len(features)

        session = self.session_factory()
        try:
            for brewery in breweries:
                if self._add_brewery(session, brewery):
                    report.created += 1
                else:
                    report.skipped += 1
            for feature in features:
                if self._add_feature(session, feature):
                    report.created += 1
                else:
                    report.skipped += 1
        finally:
            session.close()

        self.cache.set_discovery(lat, lng, report.searched)
        logger.info(
            "Area discovery: searched=%d created=%d skipped=%d",
            report.searched,
            report.created,
            report.skipped,
        )
        return report
