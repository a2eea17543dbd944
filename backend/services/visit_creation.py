"""
Create imported visits with privacy-rounded timestamps.

Imported arrival/departure times are snapped to the nearest 15-minute
boundary before anything is stored. A user gets at most one visit per venue
per 15-minute arrival bucket, and within one import two raw arrivals at the
same venue less than 15 minutes apart count as one visit.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from domain.models import Visit, VisitSource, utcnow
from repositories.visits import VisitsRepository

logger = logging.getLogger(__name__)

ROUNDING_INTERVAL = timedelta(minutes=15)
_EPOCH = datetime(1970, 1, 1)


def round_to_interval(value: datetime, interval: timedelta = ROUNDING_INTERVAL) -> datetime:
    """Round a naive UTC timestamp to the nearest multiple of interval (ties round half to even)."""
    step = interval.total_seconds()
    seconds = (value - _EPOCH).total_seconds()
    return _EPOCH + timedelta(seconds=round(seconds / step) * step)


def arrives_within_window(
    accepted: List[datetime], arrival: datetime, window: timedelta = ROUNDING_INTERVAL
) -> bool:
    """True when arrival is less than one window away from an accepted arrival."""
    return any(abs(arrival - seen) < window for seen in accepted)


class VisitCreator:
    def __init__(self, visits: Optional[VisitsRepository] = None):
        self.visits = visits or VisitsRepository()

    def seen_in_run(
        self, accepted: Dict[str, List[datetime]], venue_id: str, arrival: datetime
    ) -> bool:
        """
        Check raw arrivals already accepted for the venue in this import.

        Stored arrivals are rounded, so two raw arrivals a few minutes apart
        can land in neighbouring buckets; comparing the raw times catches them.
        """
        return arrives_within_window(accepted.get(venue_id, []), arrival)

    def detect_duplicate(self, session: Session, user_id: str, venue_id: str, arrival: datetime) -> bool:
        """
        True when the user already has a visit at the venue in the same
        15-minute bucket. Store errors count as "not a duplicate" so that data
        is over-created rather than silently dropped.
        """
        bucket = round_to_interval(arrival)
        try:
            return self.visits.exists_in_window(
                session, user_id, venue_id, bucket, bucket + ROUNDING_INTERVAL
            )
        except SQLAlchemyError as exc:
            logger.warning("Duplicate visit check failed, assuming no duplicate: %s", exc)
            session.rollback()
            return False

    def create_imported_visit(
        self,
        session: Session,
        user_id: str,
        venue_id: str,
        arrival: datetime,
        departure: Optional[datetime],
    ) -> Visit:
        rounded_arrival = round_to_interval(arrival)
        rounded_departure = round_to_interval(departure) if departure else None
        visit = Visit(
            id=Visit.generate_id(),
            user_id=user_id,
            venue_id=venue_id,
            arrival_time=rounded_arrival,
            departure_time=rounded_departure,
            is_active=False,
            source=VisitSource.IMPORT,
            imported_at=utcnow(),
        )
        return self.visits.create_visit(session, visit)
