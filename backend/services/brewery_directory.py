"""
Tier 2 verification against the Open Brewery DB directory.

Lookups are by proximity only (``by_dist``): mobile exports often carry no
usable place name, so the confidence is banded on distance to the closest
listed brewery rather than on name similarity.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from domain.models import DirectoryBrewery, VenueType, VerificationResult
from services.failure_tracker import FailureTracker
from services.geo import haversine_km
from services.rate_limiter import TokenBucket
from services.verification_cache import VerificationCache
from settings import settings

logger = logging.getLogger(__name__)
_session = requests.Session()

SOURCE = "brewery_directory"
MAX_MATCH_DISTANCE_KM = 5.0
DEFAULT_VERIFY_PER_PAGE = 10
DEFAULT_DISCOVER_PER_PAGE = 20
OUTAGE_THRESHOLD = 5

# (max distance km, confidence), checked in order
DISTANCE_BANDS = (
    (0.1, 0.95),
    (0.5, 0.85),
    (1.0, 0.75),
    (MAX_MATCH_DISTANCE_KM, 0.65),
)


def confidence_for_distance(distance_km: float) -> float:
    """Distance-banded confidence; 0 beyond the match cutoff."""
    for max_km, confidence in DISTANCE_BANDS:
        if distance_km <= max_km:
            return confidence
    return 0.0


def default_directory_limiter() -> TokenBucket:
    hourly = settings.BREWERY_DIRECTORY_HOURLY_LIMIT
    return TokenBucket(capacity=hourly, refill_amount=hourly, refill_interval=3600.0, min_interval=0.6)


def _parse_brewery(item: Dict[str, Any]) -> Optional[DirectoryBrewery]:
    try:
        lat = float(item.get("latitude"))
        lng = float(item.get("longitude"))
    except (TypeError, ValueError):
        return None
    if not item.get("id") or not item.get("name"):
        return None
    return DirectoryBrewery(
        id=str(item["id"]),
        name=str(item["name"]),
        latitude=lat,
        longitude=lng,
        brewery_type=item.get("brewery_type"),
        street=item.get("address_1") or item.get("street"),
        city=item.get("city"),
        state_province=item.get("state_province") or item.get("state"),
        country=item.get("country"),
        website_url=item.get("website_url"),
    )


class BreweryDirectoryClient:
    def __init__(
        self,
        cache: VerificationCache,
        limiter: Optional[TokenBucket] = None,
        failures: Optional[FailureTracker] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.cache = cache
        self.limiter = limiter or default_directory_limiter()
        self.failures = failures or FailureTracker("brewery_directory", OUTAGE_THRESHOLD)
        self.base_url = base_url or settings.BREWERY_DIRECTORY_URL
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.session = session or _session

    def _fetch_nearby(self, lat: float, lng: float, per_page: int) -> Optional[List[DirectoryBrewery]]:
        """Return breweries sorted by distance, or None when the request failed."""
        self.limiter.acquire()
        try:
            resp = self.session.get(
                self.base_url,
                params={"by_dist": f"{lat},{lng}", "per_page": per_page},
                headers={"User-Agent": settings.HTTP_USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            self.failures.record_failure(str(exc))
            return None
        self.failures.record_success()
        if not isinstance(payload, list):
            return []
        breweries = [_parse_brewery(item) for item in payload if isinstance(item, dict)]
        return [b for b in breweries if b is not None]

    def search_nearby(self, name: Optional[str], lat: float, lng: float) -> VerificationResult:
        """
        Verify a place as a brewery by looking for the closest directory entry.

        Verified results are cached for 30 days; misses are not cached since
        directory coverage grows over time.
        """
        cached = self.cache.get_tier2(name, lat, lng)
        if cached is not None:
            logger.debug("Tier 2 cache hit")
            return cached

        breweries = self._fetch_nearby(lat, lng, DEFAULT_VERIFY_PER_PAGE)
        if not breweries:
            return VerificationResult(tier=2, verified=False, confidence=0.0, source=SOURCE)

        best: Optional[DirectoryBrewery] = None
        best_distance = float("inf")
        for brewery in breweries:
            distance = haversine_km(lat, lng, brewery.latitude, brewery.longitude)
            if distance < best_distance:
                best, best_distance = brewery, distance

        if best is None or best_distance > MAX_MATCH_DISTANCE_KM:
            return VerificationResult(tier=2, verified=False, confidence=0.0, source=SOURCE)

        match = best.to_dict()
        match["distance_km"] = round(best_distance, 4)
        result = VerificationResult(
            tier=2,
            verified=True,
            confidence=confidence_for_distance(best_distance),
            source=SOURCE,
            venue_type=VenueType.BREWERY,
            match=match,
        )
        self.cache.set_tier2(name, lat, lng, result)
        logger.info(
            "Tier 2 verified place against directory entry (%.2f confidence, %.2f km)",
            result.confidence,
            best_distance,
        )
        return result

    def discover_nearby(
        self, lat: float, lng: float, per_page: int = DEFAULT_DISCOVER_PER_PAGE
    ) -> List[DirectoryBrewery]:
        """Return up to per_page directory breweries near the point (no verification)."""
        breweries = self._fetch_nearby(lat, lng, per_page)
        if breweries is None:
            return []
        logger.info("Discovered %d directory breweries near search point", len(breweries))
        return breweries
