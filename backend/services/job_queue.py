"""
Async import job queue.

A job is an ``import_jobs`` row holding the payload plus a Celery task
dispatched with ``task_id == job_id``. Clients poll the row, not Celery,
so finished and failed jobs stay visible for as long as the row exists.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from db import SessionLocal
from domain.models import ImportJob, JobProgress, JobStatus
from repositories.import_jobs import ImportJobsRepository
from services.errors import JobNotFoundError
from settings import settings

logger = logging.getLogger(__name__)

Dispatcher = Callable[[str], None]


def make_job_id(user_id: str, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"import-{user_id}-{now_ms}"


def _celery_dispatch(job_id: str) -> None:
    from tasks.import_tasks import process_import_job

    process_import_job.apply_async(args=[job_id], task_id=job_id)


class ImportJobQueue:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        jobs: Optional[ImportJobsRepository] = None,
        dispatch: Optional[Dispatcher] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.jobs = jobs or ImportJobsRepository()
        self.dispatch = dispatch or _celery_dispatch
        self.max_attempts = max_attempts or settings.IMPORT_JOB_MAX_ATTEMPTS

    def enqueue(
        self,
        user_id: str,
        timeline_data: Dict[str, Any],
        file_name: Optional[str] = None,
        place_count: int = 0,
    ) -> str:
        job_id = make_job_id(user_id)
        job = ImportJob(
            id=job_id,
            user_id=user_id,
            status=JobStatus.WAITING,
            file_name=file_name,
            max_attempts=self.max_attempts,
            payload={
                "user_id": user_id,
                "timeline_data": timeline_data,
                "file_name": file_name,
                "place_count": place_count,
            },
            progress=JobProgress(processed=0, total=place_count, percentage=0, message="Queued"),
        )
        session = self.session_factory()
        try:
            self.jobs.create_job(session, job)
        finally:
            session.close()
        self.dispatch(job_id)
        logger.info("Queued import job %s (%d places)", job_id, place_count)
        return job_id

    def get_status(self, job_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Return ``{status, progress?, result?, error?}`` for a job.

        When user_id is given, jobs owned by someone else are reported as
        missing.
        """
        session = self.session_factory()
        try:
            job = self.jobs.get_job(session, job_id)
        finally:
            session.close()
        if job is None or (user_id is not None and job.user_id != user_id):
            raise JobNotFoundError(f"Job {job_id} not found")
        return job.status_dict()
