"""
Normalize location-history exports into PlaceVisit records.

Two export shapes are understood:

- ``{"placeVisits": [{"location": {...}, "duration": {...}}]}`` where the
  location carries ``latitudeE7``/``longitudeE7`` (fixed point, x1e7),
  plain ``latitude``/``longitude`` or a ``latLng`` value.
- ``{"semanticSegments": [{"startTime", "endTime", "visit": {"topCandidate":
  {"placeId", "placeLocation": {...}}}}]}`` as produced by the on-device
  Timeline export, where ``latLng`` is usually a string such as
  ``"47.6062°, -122.3321°"`` or ``"geo:47.6062,-122.3321"``.

Entries without both timestamps or with unusable coordinates are dropped
and logged; they never fail the whole export.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from domain.models import PlaceVisit
from services.errors import InvalidTimelineJSONError, PayloadTooLargeError, TimelineFormatError
from services.geo import is_valid_coordinate

logger = logging.getLogger(__name__)

FORMAT_PLACE_VISITS = "place_visits"
FORMAT_SEMANTIC_SEGMENTS = "semantic_segments"

E7_SCALE = 10_000_000


def check_payload_size(raw: str, max_bytes: int) -> int:
    """Raise PayloadTooLargeError when the serialized export exceeds max_bytes."""
    size = len(raw.encode("utf-8"))
    if size > max_bytes:
        raise PayloadTooLargeError(size, max_bytes)
    return size


def load_timeline_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidTimelineJSONError("Timeline data is not valid JSON") from exc


def detect_format(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("placeVisits"), list):
        return FORMAT_PLACE_VISITS
    if isinstance(data.get("semanticSegments"), list):
        return FORMAT_SEMANTIC_SEGMENTS
    return None


def parse_lat_lng_string(value: str) -> Optional[Tuple[float, float]]:
    """Parse ``"lat, lng"``, ``"lat°, lng°"`` or ``"geo:lat,lng"``."""
    if not value or not isinstance(value, str):
        return None
    cleaned = re.sub(r"^geo:", "", value.strip(), flags=re.IGNORECASE).replace("°", "")
    parts = re.split(r",\s*", cleaned)
    if len(parts) != 2:
        return None
    try:
        lat = float(parts[0])
        lng = float(parts[1])
    except ValueError:
        return None
    return lat, lng


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into naive UTC."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _resolve_coordinates(location: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    lat_e7 = _as_float(location.get("latitudeE7"))
    lng_e7 = _as_float(location.get("longitudeE7"))
    if lat_e7 is not None and lng_e7 is not None:
        return lat_e7 / E7_SCALE, lng_e7 / E7_SCALE

    lat = _as_float(location.get("latitude"))
    lng = _as_float(location.get("longitude"))
    if lat is not None and lng is not None:
        return lat, lng

    lat_lng = location.get("latLng")
    if isinstance(lat_lng, str):
        return parse_lat_lng_string(lat_lng)
    if isinstance(lat_lng, dict):
        lat = _as_float(lat_lng.get("latitude"))
        lng = _as_float(lat_lng.get("longitude"))
        if lat is not None and lng is not None:
            return lat, lng
    return None


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _normalize_entry(
    location: Dict[str, Any],
    start: Any,
    end: Any,
    place_id: Any = None,
    confidence: Any = None,
) -> Optional[PlaceVisit]:
    arrival = _parse_timestamp(start)
    departure = _parse_timestamp(end)
    if arrival is None or departure is None:
        logger.debug("Dropping timeline entry without usable start/end timestamps")
        return None

    coords = _resolve_coordinates(location)
    if coords is None:
        logger.warning("Dropping timeline entry without coordinates")
        return None
    lat, lng = coords
    if not is_valid_coordinate(lat, lng):
        logger.warning("Dropping timeline entry with out-of-range coordinates")
        return None

    pid = place_id if place_id is not None else location.get("placeId")
    return PlaceVisit(
        latitude=lat,
        longitude=lng,
        arrival_time=arrival,
        departure_time=departure,
        place_id=str(pid) if pid else None,
        name=_clean_text(location.get("name")),
        address=_clean_text(location.get("address")),
        confidence=_as_float(confidence),
    )


def _iter_place_visits(data: Dict[str, Any]):
    for raw in data.get("placeVisits") or []:
        if not isinstance(raw, dict):
            continue
        location = raw.get("location")
        duration = raw.get("duration")
        if not isinstance(location, dict) or not isinstance(duration, dict):
            continue
        yield _normalize_entry(
            location,
            duration.get("startTimestamp"),
            duration.get("endTimestamp"),
            confidence=raw.get("visitConfidence"),
        )


def _iter_semantic_segments(data: Dict[str, Any]):
    for segment in data.get("semanticSegments") or []:
        # Activity and path segments carry no visit and are skipped.
        if not isinstance(segment, dict) or not isinstance(segment.get("visit"), dict):
            continue
        visit = segment["visit"]
        candidate = visit.get("topCandidate")
        if not isinstance(candidate, dict) or not isinstance(candidate.get("placeLocation"), dict):
            continue
        yield _normalize_entry(
            candidate["placeLocation"],
            segment.get("startTime"),
            segment.get("endTime"),
            place_id=candidate.get("placeId"),
            confidence=candidate.get("probability", visit.get("probability")),
        )


def count_raw_entries(data: Any) -> int:
    fmt = detect_format(data)
    if fmt == FORMAT_PLACE_VISITS:
        return len(data["placeVisits"])
    if fmt == FORMAT_SEMANTIC_SEGMENTS:
        return len(data["semanticSegments"])
    return 0


def extract_place_visits(data: Any) -> List[PlaceVisit]:
    """
    Return the canonical place visits of an export, in input order.

    Raises TimelineFormatError when the object matches no known shape.
    """
    fmt = detect_format(data)
    if fmt is None:
        raise TimelineFormatError(
            "Unrecognized timeline format: expected 'placeVisits' or 'semanticSegments'"
        )
    entries = _iter_place_visits(data) if fmt == FORMAT_PLACE_VISITS else _iter_semantic_segments(data)
    visits = [entry for entry in entries if entry is not None]
    logger.info(
        "Extracted %d valid place visits from %d %s entries",
        len(visits),
        count_raw_entries(data),
        fmt,
    )
    return visits
