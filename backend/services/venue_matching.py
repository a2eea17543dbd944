"""
Resolve a verified place visit to a venue, creating one only when needed.

Strategies run in order and the first hit wins:

1. exact external place id,
2. proximity within 100 m (with a fuzzy name check when a name is known),
3. creation of a new venue tagged with its verification tier.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from rapidfuzz import fuzz
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domain.models import (
    MatchResult,
    MatchType,
    PlaceVisit,
    Venue,
    VenueSource,
    VenueType,
)
from repositories.venues import VenuesRepository

logger = logging.getLogger(__name__)

PROXIMITY_RADIUS_M = 100.0
NAME_SIMILARITY_THRESHOLD = 80.0
UNNAMED_PROXIMITY_CONFIDENCE = 0.75


def token_set_similarity(a: str, b: str) -> float:
    """0-100 similarity that ignores word order and duplicated words."""
    return fuzz.token_set_ratio(a.lower(), b.lower())


def placeholder_name(venue_type: VenueType, lat: float, lng: float) -> str:
    return f"Unknown {venue_type.value} ({lat:.4f}, {lng:.4f})"


class VenueMatcher:
    def __init__(
        self,
        venues: Optional[VenuesRepository] = None,
        similarity: Callable[[str, str], float] = token_set_similarity,
        radius_m: float = PROXIMITY_RADIUS_M,
        name_threshold: float = NAME_SIMILARITY_THRESHOLD,
    ):
        self.venues = venues or VenuesRepository()
        self.similarity = similarity
        self.radius_m = radius_m
        self.name_threshold = name_threshold

    def match_by_place_id(self, session: Session, place_id: Optional[str]) -> Optional[MatchResult]:
        if not place_id:
            return None
        venue = self.venues.find_by_external_place_id(session, place_id)
        if venue is None:
            return None
        return MatchResult(venue=venue, match_type=MatchType.PLACE_ID, confidence=1.0, is_new=False)

    def match_by_proximity(
        self, session: Session, lat: float, lng: float, name: Optional[str]
    ) -> Optional[MatchResult]:
        nearby = self.venues.find_nearby(session, lat, lng, self.radius_m)
        if not nearby:
            return None

        if not name:
            venue, _distance = nearby[0]
            return MatchResult(
                venue=venue,
                match_type=MatchType.PROXIMITY,
                confidence=UNNAMED_PROXIMITY_CONFIDENCE,
                is_new=False,
            )

        best: Optional[MatchResult] = None
        for venue, _distance in nearby:
            score = self.similarity(name, venue.name)
            if score < self.name_threshold:
                continue
            if best is None or score / 100.0 > best.confidence:
                best = MatchResult(
                    venue=venue,
                    match_type=MatchType.PROXIMITY,
                    confidence=round(score / 100.0, 4),
                    is_new=False,
                )
        return best

    def create_venue(
        self,
        session: Session,
        place: PlaceVisit,
        venue_type: VenueType,
        verification_tier: int,
        name: Optional[str] = None,
        external: Optional[Dict[str, Any]] = None,
    ) -> Venue:
        external = external or {}
        metadata: Dict[str, Any] = {"import_confidence": place.confidence}
        if external:
            metadata["external_match"] = external
        venue = Venue(
            id=Venue.generate_id(),
            name=name or placeholder_name(venue_type, place.latitude, place.longitude),
            latitude=place.latitude,
            longitude=place.longitude,
            venue_type=venue_type,
            source=VenueSource.IMPORT,
            address=place.address or external.get("address") or external.get("street"),
            city=external.get("city"),
            state_province=external.get("state_province"),
            country=external.get("country"),
            external_place_id=place.place_id,
            external_id=external.get("id") or external.get("osm_id"),
            verification_tier=verification_tier,
            metadata=metadata,
        )
        return self.venues.create_venue(session, venue)

    def find_or_create_venue(
        self,
        session: Session,
        place: PlaceVisit,
        venue_type: VenueType,
        verification_tier: int,
        name: Optional[str] = None,
        external: Optional[Dict[str, Any]] = None,
    ) -> MatchResult:
        """
        Return the venue for a place and how it was resolved.

        ``name`` overrides the place's own name (e.g. a name learned from an
        external match); ``external`` is the matched external record, kept in
        the metadata of a newly created venue.
        """
        match = self.match_by_place_id(session, place.place_id)
        if match:
            return match

        effective_name = name or place.name
        match = self.match_by_proximity(session, place.latitude, place.longitude, effective_name)
        if match:
            return match

        try:
            venue = self.create_venue(
                session, place, venue_type, verification_tier, name=effective_name, external=external
            )
        except IntegrityError:
            # Another import created the same place id first.
            session.rollback()
            match = self.match_by_place_id(session, place.place_id)
            if match:
                return match
            raise
        logger.debug("Created %s venue from tier %d verification", venue_type.value, verification_tier)
        return MatchResult(venue=venue, match_type=MatchType.NONE, confidence=1.0, is_new=True)
