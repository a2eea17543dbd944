"""
Timeline import worker.

The Celery task is a thin shell around ``execute_import_job`` so the job
lifecycle (active -> completed / waiting-for-retry / failed) can be run and
tested without a broker.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from db import SessionLocal
from domain.models import ImportJob, ImportSummary, JobProgress
from repositories.import_jobs import ImportJobsRepository
from services.errors import ImportJobFailedError
from services.import_service import ImportService
from settings import settings
from tasks import celery_app

logger = logging.getLogger(__name__)


def compute_retry_countdown(attempt: int, backoff: Optional[float] = None) -> float:
    """Exponential backoff: backoff, 2*backoff, 4*backoff, ... for attempts 1, 2, 3."""
    base = settings.IMPORT_JOB_BACKOFF_SECONDS if backoff is None else backoff
    return base * (2 ** (max(attempt, 1) - 1))


def _failure_reason(summary: ImportSummary) -> str:
    if summary.errors:
        return summary.errors[0].error
    return "Import failed"


def _run_job(
    session: Session,
    jobs: ImportJobsRepository,
    service: ImportService,
    job: ImportJob,
    attempt: int,
) -> Dict[str, Any]:
    job_id = job.id
    payload = job.payload or {}
    total = int(payload.get("place_count") or 0)
    jobs.mark_active(session, job_id, attempt)
    jobs.update_progress(
        session, job_id, JobProgress(processed=0, total=total, percentage=0, message="Starting import")
    )

    def report(processed: int, place_total: int) -> None:
        percentage = int(processed * 100 / place_total) if place_total else 0
        jobs.update_progress(
            session,
            job_id,
            JobProgress(
                processed=processed,
                total=place_total,
                percentage=percentage,
                message=f"Processed {processed} of {place_total} places",
            ),
        )

    summary = service.process_import(
        job.user_id,
        payload.get("timeline_data"),
        file_name=job.file_name,
        job_id=job_id,
        progress_callback=report,
    )
    result = summary.to_dict()

    if not summary.success:
        reason = _failure_reason(summary)
        if attempt < job.max_attempts:
            jobs.mark_waiting_for_retry(session, job_id, reason)
            logger.warning("Import job %s attempt %d failed: %s", job_id, attempt, reason)
            raise ImportJobFailedError(reason)
        jobs.mark_failed(session, job_id, reason, result=result)
        logger.error("Import job %s failed after %d attempts: %s", job_id, attempt, reason)
        return result

    jobs.update_progress(
        session,
        job_id,
        JobProgress(
            processed=summary.total_places,
            total=summary.total_places,
            percentage=100,
            message="Import complete",
        ),
    )
    jobs.mark_completed(session, job_id, result)
    logger.info("Import job %s completed", job_id)
    return result


def execute_import_job(
    job_id: str,
    attempt: int = 1,
    service: Optional[ImportService] = None,
    jobs: Optional[ImportJobsRepository] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Dict[str, Any]:
    """
    Run one attempt of an import job and return the summary dict.

    Raises ImportJobFailedError when the run failed and attempts remain; the
    job is then back in ``waiting`` with the failure reason recorded. An
    unexpected error is recorded on the job the same way, so it never stays
    ``active``.
    """
    jobs = jobs or ImportJobsRepository()
    if service is None:
        from services.factory import get_import_service

        service = get_import_service()

    session = session_factory()
    try:
        job = jobs.get_job(session, job_id)
        if job is None:
            logger.error("Import job %s not found", job_id)
            return {"status": "error", "error": "job_not_found"}

        try:
            return _run_job(session, jobs, service, job, attempt)
        except ImportJobFailedError:
            raise
        except Exception as exc:
            session.rollback()
            reason = str(exc) or exc.__class__.__name__
            logger.exception("Import job %s attempt %d raised", job_id, attempt)
            if attempt < job.max_attempts:
                jobs.mark_waiting_for_retry(session, job_id, reason)
                raise ImportJobFailedError(reason) from exc
            jobs.mark_failed(session, job_id, reason)
            return {"status": "failed", "error": reason}
    finally:
        session.close()


@celery_app.task(
    name="imports.process_timeline_import",
    bind=True,
    max_retries=max(settings.IMPORT_JOB_MAX_ATTEMPTS - 1, 0),
)
def process_import_job(self, job_id: str) -> Dict[str, Any]:
    attempt = self.request.retries + 1
    try:
        return execute_import_job(job_id, attempt=attempt)
    except ImportJobFailedError as exc:
        raise self.retry(exc=exc, countdown=compute_retry_countdown(attempt))
