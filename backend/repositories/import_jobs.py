"""
Import job repository backed by SQLAlchemy.

Job rows are the durable side of the async queue: the worker reads the
payload from here and clients poll status from here.
"""
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from domain.models import ImportJob, JobProgress, JobStatus, utcnow
from repositories.models import ImportJobORM


def _job_from_orm(orm: ImportJobORM) -> ImportJob:
    progress = JobProgress(**orm.progress) if orm.progress else None
    return ImportJob(
        id=orm.id,
        user_id=orm.user_id,
        status=JobStatus(orm.status),
        payload=orm.payload or {},
        file_name=orm.file_name,
        attempts=orm.attempts,
        max_attempts=orm.max_attempts,
        progress=progress,
        result=orm.result,
        error=orm.error,
        created_at=orm.created_at,
        started_at=orm.started_at,
        finished_at=orm.finished_at,
    )


class ImportJobsRepository:
    def create_job(self, session: Session, job: ImportJob) -> ImportJob:
        orm = ImportJobORM(
            id=job.id,
            user_id=job.user_id,
            file_name=job.file_name,
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            payload=job.payload,
            progress=job.progress.to_dict() if job.progress else None,
            created_at=job.created_at or utcnow(),
        )
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _job_from_orm(orm)

    def get_job(self, session: Session, job_id: str) -> Optional[ImportJob]:
        orm = session.get(ImportJobORM, job_id)
        if not orm:
            return None
        return _job_from_orm(orm)

    def _require(self, session: Session, job_id: str) -> ImportJobORM:
        orm = session.get(ImportJobORM, job_id)
        if not orm:
            raise ValueError("Import job not found")
        return orm

    def _save(self, session: Session, orm: ImportJobORM) -> ImportJob:
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _job_from_orm(orm)

    def mark_active(self, session: Session, job_id: str, attempt: int) -> ImportJob:
        orm = self._require(session, job_id)
        orm.status = JobStatus.ACTIVE.value
        orm.attempts = attempt
        orm.started_at = orm.started_at or utcnow()
        orm.error = None
        return self._save(session, orm)

    def update_progress(self, session: Session, job_id: str, progress: JobProgress) -> ImportJob:
        orm = self._require(session, job_id)
        orm.progress = progress.to_dict()
        return self._save(session, orm)

    def mark_waiting_for_retry(self, session: Session, job_id: str, reason: str) -> ImportJob:
        orm = self._require(session, job_id)
        orm.status = JobStatus.WAITING.value
        orm.error = reason
        return self._save(session, orm)

    def mark_completed(self, session: Session, job_id: str, result: Dict[str, Any]) -> ImportJob:
        orm = self._require(session, job_id)
        orm.status = JobStatus.COMPLETED.value
        orm.result = result
        orm.error = None
        orm.finished_at = utcnow()
        return self._save(session, orm)

    def mark_failed(
        self,
        session: Session,
        job_id: str,
        reason: str,
        result: Optional[Dict[str, Any]] = None,
    ) -> ImportJob:
        orm = self._require(session, job_id)
        orm.status = JobStatus.FAILED.value
        orm.error = reason
        if result is not None:
            orm.result = result
        orm.finished_at = utcnow()
        return self._save(session, orm)
