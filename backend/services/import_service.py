"""
Timeline import orchestration.

Each place visit runs through the same sequence:

    classify -> (directory) -> (web search / map data) -> match venue
             -> duplicate check -> create visit

and any step may end the place as skipped. One place's failure is recorded
in the summary with a stable error code and never stops the run; only a
store outage or invalid input aborts it, yielding ``success=False``.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from db import SessionLocal
from domain.models import (
    ImportErrorCode,
    ImportErrorEntry,
    ImportHistoryRecord,
    ImportSummary,
    PlaceVisit,
    VenueType,
    utcnow,
)
from repositories.import_history import ImportHistoryRepository
from services.brewery_directory import BreweryDirectoryClient
from services.errors import PayloadTooLargeError, TimelineFormatError
from services.geo import is_valid_coordinate
from services.overpass_client import OverpassClient
from services.timeline_parser import extract_place_visits
from services.venue_classifier import classify, is_high_confidence
from services.venue_matching import VenueMatcher
from services.visit_creation import VisitCreator
from services.web_search_verifier import WebSearchVerifier
from settings import settings

logger = logging.getLogger(__name__)

IMPORT_SOURCE = "google_timeline"
HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 100
PROGRESS_EVERY = 25
# A directory match this close is trusted to name an unnamed place.
NAME_ENRICHMENT_MAX_KM = 0.1

SENSITIVE_KEYS = ("latitude", "longitude", "address", "user_id", "userId", "timeline_data")

ProgressCallback = Callable[[int, int], None]


def redact_name(name: Optional[str]) -> str:
    if not name:
        return "<unnamed>"
    return name[:3] + "***"


def filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Strip coordinates/addresses/user ids and truncate place names for logs."""
    filtered = {k: v for k, v in data.items() if k not in SENSITIVE_KEYS}
    if isinstance(filtered.get("place_name"), str):
        filtered["place_name"] = redact_name(filtered["place_name"])
    return filtered


@dataclass
class Verdict:
    """Which tier accepted a place and what it learned about it."""
    tier: int
    venue_type: VenueType
    name: Optional[str] = None
    external: Dict[str, Any] = field(default_factory=dict)


class _PlaceSkipped(Exception):
    def __init__(self, code: ImportErrorCode, message: str):
        self.code = code
        super().__init__(message)


class ImportService:
    def __init__(
        self,
        directory: Optional[BreweryDirectoryClient] = None,
        web_search: Optional[WebSearchVerifier] = None,
        overpass: Optional[OverpassClient] = None,
        matcher: Optional[VenueMatcher] = None,
        visit_creator: Optional[VisitCreator] = None,
        history: Optional[ImportHistoryRepository] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        external_verification: Optional[bool] = None,
        max_payload_bytes: Optional[int] = None,
        async_threshold: Optional[int] = None,
    ):
        self.directory = directory
        self.web_search = web_search
        self.overpass = overpass
        self.matcher = matcher or VenueMatcher()
        self.visit_creator = visit_creator or VisitCreator()
        self.history = history or ImportHistoryRepository()
        self.session_factory = session_factory
        if external_verification is None:
            external_verification = settings.EXTERNAL_VERIFICATION_ENABLED
        self.external_verification = external_verification
        self.max_payload_bytes = max_payload_bytes or settings.IMPORT_MAX_PAYLOAD_BYTES
        self.async_threshold = async_threshold if async_threshold is not None else settings.IMPORT_ASYNC_THRESHOLD

    # Input checks -------------------------------------------------------

    def validate_import_data(self, timeline_data: Any) -> None:
        if not isinstance(timeline_data, dict):
            raise TimelineFormatError("Invalid timeline data: must be a JSON object")
        size = len(json.dumps(timeline_data, separators=(",", ":")).encode("utf-8"))
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(size, self.max_payload_bytes)

    def should_process_async(self, place_count: int) -> bool:
        return place_count > self.async_threshold

    # Verification cascade ----------------------------------------------

    def verify_place(self, place: PlaceVisit) -> Tuple[Optional[Verdict], str]:
        """
        Return the accepting verdict (or None) and a short reason for logs.

        A low-confidence keyword verdict still escalates; it is only used
        when no external tier accepts the place.
        """
        classification = classify(place.name, place.address)
        if is_high_confidence(classification):
            return Verdict(tier=1, venue_type=classification.venue_type, name=place.name), "tier1"

        if self.external_verification:
            verdict = self._verify_externally(place)
            if verdict:
                return verdict, f"tier{verdict.tier}"

        if classification.is_venue and classification.venue_type:
            return Verdict(tier=1, venue_type=classification.venue_type, name=place.name), "tier1-low"
        if classification.keywords:
            return None, "excluded"
        return None, "unverified"

    def _verify_externally(self, place: PlaceVisit) -> Optional[Verdict]:
        if self.directory:
            tier2 = self.directory.search_nearby(place.name, place.latitude, place.longitude)
            if tier2.verified and tier2.venue_type:
                external = tier2.match or {}
                name = place.name
                distance = external.get("distance_km")
                if not name and distance is not None and distance <= NAME_ENRICHMENT_MAX_KM:
                    name = external.get("name")
                return Verdict(tier=2, venue_type=tier2.venue_type, name=name, external=external)

        if self.web_search:
            if place.name:
                tier3 = self.web_search.verify_venue(place.name, place.address)
            elif place.address:
                tier3 = self.web_search.search_by_address(place.address)
            else:
                tier3 = None
            if tier3 and tier3.verified and tier3.venue_type:
                return Verdict(tier=3, venue_type=tier3.venue_type, name=place.name)

        if self.overpass:
            feature = self.overpass.search_by_coordinates(place.latitude, place.longitude)
            if feature:
                return Verdict(
                    tier=3,
                    venue_type=feature.venue_type,
                    name=place.name or feature.name or None,
                    external=feature.to_dict(),
                )
        return None

    # Per-place processing -----------------------------------------------

    def _skip(self, summary: ImportSummary, place: PlaceVisit, code: ImportErrorCode, message: str) -> None:
        summary.visits_skipped += 1
        summary.errors.append(
            ImportErrorEntry(
                place_name=place.name or "Unknown",
                address=place.address,
                timestamp=place.arrival_time,
                error=message,
                error_code=code,
            )
        )

    def _process_place(
        self,
        session: Session,
        user_id: str,
        place: PlaceVisit,
        summary: ImportSummary,
        accepted: Dict[str, List[datetime]],
    ) -> None:
        stats = summary.tier_statistics
        stage = "verify"
        tier_recorded = False
        try:
            if not is_valid_coordinate(place.latitude, place.longitude):
                raise _PlaceSkipped(ImportErrorCode.INVALID_COORDINATES, "Invalid coordinates")

            verdict, reason = self.verify_place(place)
            if verdict is None:
                if reason == "excluded":
                    raise _PlaceSkipped(
                        ImportErrorCode.VERIFICATION_FAILED,
                        "Not a brewery or winery (excluded venue category)",
                    )
                raise _PlaceSkipped(
                    ImportErrorCode.VERIFICATION_FAILED,
                    "Could not verify as brewery or winery (all tiers failed)",
                )
            stats.record(verdict.tier)
            tier_recorded = True

            stage = "match"
            match = self.matcher.find_or_create_venue(
                session,
                place,
                verdict.venue_type,
                verdict.tier,
                name=verdict.name,
                external=verdict.external,
            )
            if match.is_new:
                summary.new_venues_created += 1
            else:
                summary.existing_venues_matched += 1

            stage = "visit"
            if self.visit_creator.seen_in_run(accepted, match.venue.id, place.arrival_time):
                raise _PlaceSkipped(ImportErrorCode.DUPLICATE_VISIT, "Duplicate visit in the same 15-minute window")
            if self.visit_creator.detect_duplicate(session, user_id, match.venue.id, place.arrival_time):
                raise _PlaceSkipped(ImportErrorCode.DUPLICATE_VISIT, "Duplicate visit in the same 15-minute window")
            try:
                self.visit_creator.create_imported_visit(
                    session, user_id, match.venue.id, place.arrival_time, place.departure_time
                )
            except IntegrityError:
                session.rollback()
                raise _PlaceSkipped(ImportErrorCode.DUPLICATE_VISIT, "Duplicate visit in the same 15-minute window")
            summary.visits_created += 1
            accepted.setdefault(match.venue.id, []).append(place.arrival_time)
        except _PlaceSkipped as skipped:
            if not tier_recorded:
                stats.record(None)
            self._skip(summary, place, skipped.code, str(skipped))
        except OperationalError:
            raise
        except Exception as exc:
            session.rollback()
            if not tier_recorded:
                stats.record(None)
            code = {
                "verify": ImportErrorCode.VERIFICATION_FAILED,
                "match": ImportErrorCode.VENUE_CREATION_FAILED,
            }.get(stage, ImportErrorCode.VISIT_CREATION_FAILED)
            logger.error(
                "Error processing place visit at stage %s: %s (%s)",
                stage,
                exc,
                filter_sensitive_data({"place_name": place.name, "stage": stage}),
            )
            self._skip(summary, place, code, str(exc) or "Unknown error")

    # Entry points -------------------------------------------------------

    def process_import(
        self,
        user_id: str,
        timeline_data: Any,
        file_name: Optional[str] = None,
        job_id: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ImportSummary:
        """
        Run a whole import and return its summary; never raises for bad
        input or store failures, which yield ``success=False`` instead.
        """
        started = time.monotonic()
        summary = ImportSummary(success=True, job_id=job_id)
        logger.info("Starting import %s", filter_sensitive_data({"file_name": file_name, "job_id": job_id}))

        session = self.session_factory()
        try:
            self.validate_import_data(timeline_data)
            places = extract_place_visits(timeline_data)
            summary.total_places = len(places)

            accepted: Dict[str, List[datetime]] = {}
            for index, place in enumerate(places, start=1):
                self._process_place(session, user_id, place, summary, accepted)
                if progress_callback and index % PROGRESS_EVERY == 0:
                    progress_callback(index, len(places))

            summary.processing_time_ms = int((time.monotonic() - started) * 1000)
            self._record_history(session, user_id, file_name, job_id, summary)
        except Exception as exc:
            session.rollback()
            logger.error("Import failed with critical error: %s", exc)
            return ImportSummary(
                success=False,
                total_places=summary.total_places,
                visits_created=summary.visits_created,
                visits_skipped=summary.visits_skipped,
                new_venues_created=summary.new_venues_created,
                existing_venues_matched=summary.existing_venues_matched,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                errors=[ImportErrorEntry(place_name="N/A", timestamp=utcnow(), error=str(exc) or "Import failed")],
                tier_statistics=summary.tier_statistics,
                job_id=job_id,
            )
        finally:
            session.close()

        logger.info(
            "Import completed: total=%d created=%d skipped=%d new_venues=%d matched=%d "
            "tier1=%d tier2=%d tier3=%d unverified=%d in %dms",
            summary.total_places,
            summary.visits_created,
            summary.visits_skipped,
            summary.new_venues_created,
            summary.existing_venues_matched,
            summary.tier_statistics.tier1_matches,
            summary.tier_statistics.tier2_matches,
            summary.tier_statistics.tier3_matches,
            summary.tier_statistics.unverified,
            summary.processing_time_ms,
        )
        return summary

    def _record_history(
        self,
        session: Session,
        user_id: str,
        file_name: Optional[str],
        job_id: Optional[str],
        summary: ImportSummary,
    ) -> None:
        record = ImportHistoryRecord(
            id=ImportHistoryRecord.generate_id(),
            user_id=user_id,
            source=IMPORT_SOURCE,
            file_name=file_name,
            job_id=job_id,
            total_places=summary.total_places,
            visits_created=summary.visits_created,
            visits_skipped=summary.visits_skipped,
            new_venues_created=summary.new_venues_created,
            existing_venues_matched=summary.existing_venues_matched,
            processing_time_ms=summary.processing_time_ms,
            metadata={
                "errors": [e.to_dict() for e in summary.errors],
                "tier_statistics": summary.tier_statistics.to_dict(),
            },
        )
        try:
            self.history.create_record(session, record)
        except Exception as exc:
            session.rollback()
            logger.error("Failed to record import history: %s", exc)

    def get_history(
        self, user_id: str, limit: int = HISTORY_DEFAULT_LIMIT, offset: int = 0
    ) -> Tuple[List[ImportHistoryRecord], int]:
        limit = max(1, min(limit, HISTORY_MAX_LIMIT))
        offset = max(0, offset)
        session = self.session_factory()
        try:
            records = self.history.list_for_user(session, user_id, limit=limit, offset=offset)
            total = self.history.count_for_user(session, user_id)
        finally:
            session.close()
        return records, total
