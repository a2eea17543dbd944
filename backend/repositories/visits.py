"""
Visit repository backed by SQLAlchemy.
"""
from datetime import datetime
from sqlalchemy.orm import Session

from domain.models import Visit, VisitSource, utcnow
from repositories.models import VisitORM


def _visit_from_orm(orm: VisitORM) -> Visit:
    return Visit(
        id=orm.id,
        user_id=orm.user_id,
        venue_id=orm.venue_id,
        arrival_time=orm.arrival_time,
        departure_time=orm.departure_time,
        is_active=orm.is_active,
        source=VisitSource(orm.source),
        imported_at=orm.imported_at,
        created_at=orm.created_at,
    )


class VisitsRepository:
    def exists_in_window(
        self,
        session: Session,
        user_id: str,
        venue_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> bool:
        """True when the user already has a visit at the venue with arrival in [start, end)."""
        row = (
            session.query(VisitORM.id)
            .filter(VisitORM.user_id == user_id, VisitORM.venue_id == venue_id)
            .filter(VisitORM.arrival_time >= window_start, VisitORM.arrival_time < window_end)
            .first()
        )
        return row is not None

    def create_visit(self, session: Session, visit: Visit) -> Visit:
        orm = VisitORM(
            id=visit.id,
            user_id=visit.user_id,
            venue_id=visit.venue_id,
            arrival_time=visit.arrival_time,
            departure_time=visit.departure_time,
            is_active=visit.is_active,
            source=visit.source.value,
            imported_at=visit.imported_at,
            created_at=visit.created_at or utcnow(),
        )
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _visit_from_orm(orm)

    def count_for_user(self, session: Session, user_id: str) -> int:
        return session.query(VisitORM).filter(VisitORM.user_id == user_id).count()
