"""
OpenStreetMap (Overpass API) client for brewery/winery features.

Two operations share one rate limiter since they hit the same upstream:

- ``search_by_coordinates``: closest tagged feature within a small radius,
  used as the last verification escalation.
- ``discover_nearby``: every tagged feature within a larger radius, used to
  proactively populate venues for an area.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from domain.models import MapFeature, VenueType
from services.failure_tracker import FailureTracker
from services.geo import haversine_m
from services.rate_limiter import TokenBucket
from services.verification_cache import (
    OVERPASS_FOUND_TTL_SECONDS,
    OVERPASS_MISS_TTL_SECONDS,
    VerificationCache,
    overpass_key,
)
from settings import settings

logger = logging.getLogger(__name__)
_session = requests.Session()

POINT_RADIUS_M = 100
DISCOVERY_RADIUS_M = 10_000
OUTAGE_THRESHOLD = 5


def default_overpass_limiter() -> TokenBucket:
    return TokenBucket(
        capacity=30,
        refill_amount=30,
        refill_interval=60.0,
        min_interval=settings.OVERPASS_MIN_INTERVAL,
    )


def build_point_query(lat: float, lng: float, radius_m: int) -> str:
    around = f"(around:{radius_m},{lat},{lng})"
    return (
        "[out:json][timeout:25];\n(\n"
        f'  nwr["craft"="brewery"]{around};\n'
        f'  nwr["craft"="winery"]{around};\n'
        f'  nwr["amenity"="bar"]["brewery"]{around};\n'
        f'  nwr["amenity"="pub"]["microbrewery"="yes"]{around};\n'
        ");\nout center;"
    )


def build_discovery_query(lat: float, lng: float, radius_m: int) -> str:
    around = f"(around:{radius_m},{lat},{lng})"
    return (
        "[out:json][timeout:25];\n(\n"
        f'  nwr["craft"="brewery"]{around};\n'
        f'  nwr["microbrewery"="yes"]{around};\n'
        f'  nwr["industrial"="brewery"]{around};\n'
        f'  nwr["craft"="winery"]{around};\n'
        ");\nout center;"
    )


def _element_coords(element: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    lat = element.get("lat")
    lon = element.get("lon")
    if lat is None or lon is None:
        center = element.get("center") or {}
        lat, lon = center.get("lat"), center.get("lon")
    if lat is None or lon is None:
        return None
    try:
        return float(lat), float(lon)
    except (TypeError, ValueError):
        return None


def address_from_tags(tags: Dict[str, str]) -> Optional[str]:
    if not (tags.get("addr:housenumber") or tags.get("addr:street")):
        return None
    keys = ("addr:housenumber", "addr:street", "addr:city", "addr:state", "addr:postcode")
    return ", ".join(tags[k] for k in keys if tags.get(k))


def venue_type_from_tags(tags: Dict[str, str]) -> VenueType:
    if tags.get("craft") == "winery":
        return VenueType.WINERY
    return VenueType.BREWERY


def _feature_from_element(element: Dict[str, Any], coords: Tuple[float, float]) -> MapFeature:
    tags = element.get("tags") or {}
    return MapFeature(
        osm_id=f"{element.get('type', 'node')}/{element.get('id')}",
        name=tags.get("name") or "",
        latitude=coords[0],
        longitude=coords[1],
        venue_type=venue_type_from_tags(tags),
        address=address_from_tags(tags),
        tags={k: v for k, v in tags.items() if k in ("craft", "amenity", "brewery", "microbrewery", "website")},
    )


def parse_discovery_elements(elements: List[Dict[str, Any]]) -> List[MapFeature]:
    """Named features only, deduplicated by name + 3dp coordinates."""
    features: List[MapFeature] = []
    seen = set()
    for element in elements:
        tags = element.get("tags") or {}
        if not tags.get("name"):
            continue
        coords = _element_coords(element)
        if coords is None:
            continue
        dedupe_key = f"{tags['name'].lower()}-{coords[0]:.3f}-{coords[1]:.3f}"
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)
        features.append(_feature_from_element(element, coords))
    return features


def _feature_from_cache(data: Dict[str, Any]) -> MapFeature:
    return MapFeature(
        osm_id=data.get("osm_id", ""),
        name=data.get("name") or "",
        latitude=float(data["latitude"]),
        longitude=float(data["longitude"]),
        venue_type=VenueType(data.get("venue_type", VenueType.BREWERY.value)),
        address=data.get("address"),
        distance_m=data.get("distance_m"),
    )


class OverpassClient:
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
        self.limiter = limiter or default_overpass_limiter()
        self.failures = failures or FailureTracker("overpass", OUTAGE_THRESHOLD)
        self.base_url = base_url or settings.OVERPASS_URL
        self.timeout = timeout if timeout is not None else max(settings.HTTP_TIMEOUT_SECONDS, 30.0)
        self.session = session or _session

    def _execute(self, query: str) -> Optional[List[Dict[str, Any]]]:
        self.limiter.acquire()
        try:
            resp = self.session.post(
                self.base_url,
                data={"data": query},
                headers={"User-Agent": settings.HTTP_USER_AGENT},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            self.failures.record_failure(str(exc))
            return None
        self.failures.record_success()
        elements = payload.get("elements") if isinstance(payload, dict) else None
        return [e for e in elements or [] if isinstance(e, dict)]

    def search_by_coordinates(
        self, lat: float, lng: float, radius_m: int = POINT_RADIUS_M
    ) -> Optional[MapFeature]:
        """
        Return the closest brewery/winery feature within radius_m, or None.

        Hits are cached for 24 h and misses for 1 h; request failures are not
        cached.
        """
        key = overpass_key(lat, lng, radius_m)
        cached = self.cache.get(key)
        if isinstance(cached, dict):
            feature = cached.get("feature")
            if cached.get("found") and isinstance(feature, dict):
                try:
                    return _feature_from_cache(feature)
                except (KeyError, TypeError, ValueError):
                    logger.warning("Discarding malformed cached map feature")
            else:
                return None

        elements = self._execute(build_point_query(lat, lng, radius_m))
        if elements is None:
            return None

        closest: Optional[MapFeature] = None
        closest_distance = float("inf")
        for element in elements:
            coords = _element_coords(element)
            if coords is None:
                continue
            distance = haversine_m(lat, lng, coords[0], coords[1])
            if distance < closest_distance:
                closest = _feature_from_element(element, coords)
                closest.distance_m = round(distance)
                closest_distance = distance

        if closest is None:
            self.cache.set(key, {"found": False}, OVERPASS_MISS_TTL_SECONDS)
            return None

        self.cache.set(key, {"found": True, "feature": closest.to_dict()}, OVERPASS_FOUND_TTL_SECONDS)
        logger.info("Map data found a %s within %sm", closest.venue_type.value, closest.distance_m)
        return closest

    def discover_nearby(
        self, lat: float, lng: float, radius_m: int = DISCOVERY_RADIUS_M
    ) -> List[MapFeature]:
        elements = self._execute(build_discovery_query(lat, lng, radius_m))
        if elements is None:
            return []
        features = parse_discovery_elements(elements)
        logger.info("Discovered %d venues from map data", len(features))
        return features
