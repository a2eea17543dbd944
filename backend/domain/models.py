"""
Core domain models for the timeline import pipeline.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how rows are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VenueType(str, Enum):
    """Kinds of venue the pipeline records visits for."""
    BREWERY = "brewery"
    WINERY = "winery"


class VenueSource(str, Enum):
    """Where a venue record originally came from."""
    OSM = "osm"
    BREWERY_DIRECTORY = "brewery_directory"
    MANUAL = "manual"
    IMPORT = "import"


class VisitSource(str, Enum):
    IMPORT = "import"
    AUTO_DETECT = "auto_detect"
    MANUAL = "manual"


class JobStatus(str, Enum):
    """Lifecycle of an async import job."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class MatchType(str, Enum):
    PLACE_ID = "place_id"
    PROXIMITY = "proximity"
    NONE = "none"


class ImportErrorCode(str, Enum):
    """Stable per-place error codes reported in import summaries."""
    INVALID_COORDINATES = "INVALID_COORDINATES"
    NOT_BREWERY_OR_WINERY = "NOT_BREWERY_OR_WINERY"
    DUPLICATE_VISIT = "DUPLICATE_VISIT"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    VENUE_CREATION_FAILED = "VENUE_CREATION_FAILED"
    VISIT_CREATION_FAILED = "VISIT_CREATION_FAILED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


@dataclass
class PlaceVisit:
    """A normalized (location, time-span) unit extracted from an export."""
    latitude: float
    longitude: float
    arrival_time: datetime
    departure_time: datetime
    place_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class ClassificationResult:
    is_venue: bool
    venue_type: Optional[VenueType]
    confidence: float
    keywords: List[str] = field(default_factory=list)


@dataclass
class VerificationResult:
    """
    Outcome of an external verification tier.

    Cached as JSON by the verification cache; `match` carries the external
    record (directory brewery or map feature) when one was found.
    """
    tier: int
    verified: bool
    confidence: float
    source: str
    venue_type: Optional[VenueType] = None
    keywords_found: List[str] = field(default_factory=list)
    match: Optional[Dict[str, Any]] = None
    cached_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "verified": self.verified,
            "confidence": self.confidence,
            "source": self.source,
            "venue_type": self.venue_type.value if self.venue_type else None,
            "keywords_found": list(self.keywords_found),
            "match": self.match,
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationResult":
        venue_type = data.get("venue_type")
        return cls(
            tier=int(data.get("tier", 0)),
            verified=bool(data.get("verified", False)),
            confidence=float(data.get("confidence", 0.0)),
            source=data.get("source", ""),
            venue_type=VenueType(venue_type) if venue_type else None,
            keywords_found=list(data.get("keywords_found") or []),
            match=data.get("match"),
            cached_at=data.get("cached_at"),
        )


@dataclass
class DirectoryBrewery:
    """A brewery record from the public brewery directory."""
    id: str
    name: str
    latitude: float
    longitude: float
    brewery_type: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    country: Optional[str] = None
    website_url: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        parts = [p for p in (self.street, self.city, self.state_province) if p]
        return ", ".join(parts) if parts else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "brewery_type": self.brewery_type,
            "street": self.street,
            "city": self.city,
            "state_province": self.state_province,
            "country": self.country,
            "website_url": self.website_url,
        }


@dataclass
class MapFeature:
    """A brewery/winery feature from the open map database."""
    osm_id: str
    name: str
    latitude: float
    longitude: float
    venue_type: VenueType
    address: Optional[str] = None
    distance_m: Optional[float] = None
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "osm_id": self.osm_id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "venue_type": self.venue_type.value,
            "address": self.address,
            "distance_m": self.distance_m,
        }


@dataclass
class Venue:
    """A persisted brewery/winery shared across users."""
    id: str
    name: str
    latitude: float
    longitude: float
    venue_type: VenueType
    source: VenueSource
    address: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    country: Optional[str] = None
    external_place_id: Optional[str] = None
    external_id: Optional[str] = None
    verification_tier: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())


@dataclass
class Visit:
    id: str
    user_id: str
    venue_id: str
    arrival_time: datetime
    departure_time: Optional[datetime]
    is_active: bool = False
    source: VisitSource = VisitSource.IMPORT
    imported_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())


@dataclass
class MatchResult:
    venue: Venue
    match_type: MatchType
    confidence: float
    is_new: bool


@dataclass
class ImportErrorEntry:
    """A single skipped place, as reported to the caller."""
    place_name: str
    timestamp: datetime
    error: str
    address: Optional[str] = None
    error_code: Optional[ImportErrorCode] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "place_name": self.place_name,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }
        if self.address:
            data["address"] = self.address
        if self.error_code:
            data["error_code"] = self.error_code.value
        return data


@dataclass
class TierStatistics:
    tier1_matches: int = 0
    tier2_matches: int = 0
    tier3_matches: int = 0
    unverified: int = 0

    @property
    def total(self) -> int:
        return self.tier1_matches + self.tier2_matches + self.tier3_matches + self.unverified

    def record(self, tier: Optional[int]) -> None:
        if tier == 1:
            self.tier1_matches += 1
        elif tier == 2:
            self.tier2_matches += 1
        elif tier == 3:
            self.tier3_matches += 1
        else:
            self.unverified += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "tier1_matches": self.tier1_matches,
            "tier2_matches": self.tier2_matches,
            "tier3_matches": self.tier3_matches,
            "unverified": self.unverified,
        }


@dataclass
class ImportSummary:
    """Result of one import run; identical for the sync and async paths."""
    success: bool
    total_places: int = 0
    visits_created: int = 0
    visits_skipped: int = 0
    new_venues_created: int = 0
    existing_venues_matched: int = 0
    processing_time_ms: int = 0
    errors: List[ImportErrorEntry] = field(default_factory=list)
    tier_statistics: TierStatistics = field(default_factory=TierStatistics)
    job_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "total_places": self.total_places,
            "visits_created": self.visits_created,
            "visits_skipped": self.visits_skipped,
            "new_venues_created": self.new_venues_created,
            "existing_venues_matched": self.existing_venues_matched,
            "processing_time_ms": self.processing_time_ms,
            "errors": [e.to_dict() for e in self.errors],
            "tier_statistics": self.tier_statistics.to_dict(),
        }
        if self.job_id:
            data["job_id"] = self.job_id
        return data


@dataclass
class ImportHistoryRecord:
    id: str
    user_id: str
    source: str
    total_places: int
    visits_created: int
    visits_skipped: int
    new_venues_created: int
    existing_venues_matched: int
    processing_time_ms: int
    file_name: Optional[str] = None
    job_id: Optional[str] = None
    imported_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "source": self.source,
            "file_name": self.file_name,
            "job_id": self.job_id,
            "imported_at": self.imported_at.isoformat() if self.imported_at else None,
            "total_places": self.total_places,
            "visits_created": self.visits_created,
            "visits_skipped": self.visits_skipped,
            "new_venues_created": self.new_venues_created,
            "existing_venues_matched": self.existing_venues_matched,
            "processing_time_ms": self.processing_time_ms,
            "metadata": self.metadata,
        }


@dataclass
class JobProgress:
    processed: int
    total: int
    percentage: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "total": self.total,
            "percentage": self.percentage,
            "message": self.message,
        }


@dataclass
class ImportJob:
    id: str
    user_id: str
    status: JobStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    file_name: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 1
    progress: Optional[JobProgress] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def status_dict(self) -> Dict[str, Any]:
        """Client-facing status snapshot."""
        data: Dict[str, Any] = {"status": self.status.value}
        if self.progress:
            data["progress"] = self.progress.to_dict()
        if self.result is not None:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        return data
