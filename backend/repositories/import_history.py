"""
Import history repository backed by SQLAlchemy.
"""
from typing import List
from sqlalchemy.orm import Session

from domain.models import ImportHistoryRecord, utcnow
from repositories.models import ImportHistoryORM


def _record_from_orm(orm: ImportHistoryORM) -> ImportHistoryRecord:
    return ImportHistoryRecord(
        id=orm.id,
        user_id=orm.user_id,
        source=orm.source,
        file_name=orm.file_name,
        job_id=orm.job_id,
        imported_at=orm.imported_at,
        total_places=orm.total_places,
        visits_created=orm.visits_created,
        visits_skipped=orm.visits_skipped,
        new_venues_created=orm.new_venues_created,
        existing_venues_matched=orm.existing_venues_matched,
        processing_time_ms=orm.processing_time_ms,
        metadata=orm.metadata_json or {},
    )


class ImportHistoryRepository:
    """Append-only log of import runs."""

    def create_record(self, session: Session, record: ImportHistoryRecord) -> ImportHistoryRecord:
        orm = ImportHistoryORM(
            id=record.id,
            user_id=record.user_id,
            source=record.source,
            imported_at=record.imported_at or utcnow(),
            file_name=record.file_name,
            job_id=record.job_id,
            total_places=record.total_places,
            visits_created=record.visits_created,
            visits_skipped=record.visits_skipped,
            new_venues_created=record.new_venues_created,
            existing_venues_matched=record.existing_venues_matched,
            processing_time_ms=record.processing_time_ms,
            metadata_json=record.metadata,
        )
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _record_from_orm(orm)

    def list_for_user(
        self, session: Session, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[ImportHistoryRecord]:
        rows = (
            session.query(ImportHistoryORM)
            .filter(ImportHistoryORM.user_id == user_id)
            .order_by(ImportHistoryORM.imported_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [_record_from_orm(r) for r in rows]

    def count_for_user(self, session: Session, user_id: str) -> int:
        return (
            session.query(ImportHistoryORM)
            .filter(ImportHistoryORM.user_id == user_id)
            .count()
        )
