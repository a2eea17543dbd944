from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from domain.models import ImportErrorEntry, ImportSummary, JobStatus, utcnow
from repositories.import_jobs import ImportJobsRepository
from services.errors import ImportJobFailedError, JobNotFoundError
from services.job_queue import ImportJobQueue, make_job_id
from tasks.import_tasks import compute_retry_countdown, execute_import_job

TIMELINE = {"placeVisits": []}


@pytest.fixture
def dispatch():
    return MagicMock()


@pytest.fixture
def queue(session_factory, dispatch):
    return ImportJobQueue(session_factory=session_factory, dispatch=dispatch, max_attempts=3)


def _job(session_factory, job_id):
    session = session_factory()
    try:
        return ImportJobsRepository().get_job(session, job_id)
    finally:
        session.close()


def _service_returning(*summaries):
    service = MagicMock()
    service.process_import.side_effect = list(summaries)
    return service


def test_make_job_id_embeds_user_and_time():
    assert make_job_id("user-1", now_ms=1717264800000) == "import-user-1-1717264800000"


def test_enqueue_stores_waiting_job_and_dispatches(queue, dispatch, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, file_name="export.json", place_count=250)

    dispatch.assert_called_once_with(job_id)
    status = queue.get_status(job_id, user_id="user-1")
    assert status["status"] == "waiting"
    assert status["progress"] == {"processed": 0, "total": 250, "percentage": 0, "message": "Queued"}
    job = _job(session_factory, job_id)
    assert job.payload["timeline_data"] == TIMELINE
    assert job.max_attempts == 3


def test_status_of_unknown_or_foreign_job_is_not_found(queue):
    job_id = queue.enqueue("user-1", TIMELINE, place_count=150)

    with pytest.raises(JobNotFoundError):
        queue.get_status("import-nobody-1")
    with pytest.raises(JobNotFoundError):
        queue.get_status(job_id, user_id="user-2")


def test_successful_job_completes_with_result(queue, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, file_name="export.json", place_count=120)
    service = _service_returning(ImportSummary(success=True, total_places=120, visits_created=80, job_id=job_id))

    result = execute_import_job(job_id, service=service, session_factory=session_factory)

    _, kwargs = service.process_import.call_args
    assert kwargs["job_id"] == job_id
    assert kwargs["file_name"] == "export.json"
    assert callable(kwargs["progress_callback"])
    assert result["visits_created"] == 80
    status = queue.get_status(job_id)
    assert status["status"] == "completed"
    assert status["progress"]["percentage"] == 100
    assert status["result"]["job_id"] == job_id


def test_progress_callback_updates_job_row(queue, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, place_count=200)
    seen = {}

    def fake_import(user_id, timeline_data, file_name=None, job_id=None, progress_callback=None):
        progress_callback(50, 200)
        seen.update(queue.get_status(job_id))
        return ImportSummary(success=True, total_places=200)

    service = MagicMock()
    service.process_import.side_effect = fake_import

    execute_import_job(job_id, service=service, session_factory=session_factory)

    assert seen["status"] == "active"
    assert seen["progress"]["processed"] == 50
    assert seen["progress"]["percentage"] == 25


def _failed_summary():
    return ImportSummary(
        success=False,
        errors=[ImportErrorEntry(place_name="N/A", timestamp=utcnow(), error="database is locked")],
    )


def test_failure_with_attempts_left_returns_job_to_waiting(queue, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, place_count=150)

    with pytest.raises(ImportJobFailedError):
        execute_import_job(job_id, attempt=1, service=_service_returning(_failed_summary()), session_factory=session_factory)

    job = _job(session_factory, job_id)
    assert job.status == JobStatus.WAITING
    assert job.attempts == 1
    assert job.error == "database is locked"


def test_failure_on_last_attempt_marks_job_failed(queue, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, place_count=150)

    result = execute_import_job(
        job_id, attempt=3, service=_service_returning(_failed_summary()), session_factory=session_factory
    )

    assert result["success"] is False
    status = queue.get_status(job_id)
    assert status["status"] == "failed"
    assert status["error"] == "database is locked"
    assert status["result"]["success"] is False


def _locked():
    return OperationalError("UPDATE import_jobs", {}, Exception("database is locked"))


def test_store_error_on_last_attempt_marks_job_failed(queue, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, place_count=150)
    jobs = ImportJobsRepository()
    service = _service_returning(ImportSummary(success=True, total_places=150))

    with patch.object(jobs, "mark_completed", side_effect=_locked()):
        result = execute_import_job(job_id, attempt=3, service=service, jobs=jobs, session_factory=session_factory)

    assert result["status"] == "failed"
    assert "database is locked" in result["error"]
    job = _job(session_factory, job_id)
    assert job.status == JobStatus.FAILED
    assert "database is locked" in job.error
    assert job.finished_at is not None


def test_store_error_with_attempts_left_returns_job_to_waiting(queue, session_factory):
    job_id = queue.enqueue("user-1", TIMELINE, place_count=150)
    jobs = ImportJobsRepository()
    service = _service_returning(ImportSummary(success=True, total_places=150))

    with patch.object(jobs, "mark_completed", side_effect=_locked()):
        with pytest.raises(ImportJobFailedError):
            execute_import_job(job_id, attempt=1, service=service, jobs=jobs, session_factory=session_factory)

    job = _job(session_factory, job_id)
    assert job.status == JobStatus.WAITING
    assert job.attempts == 1
    assert "database is locked" in job.error


def test_missing_job_is_reported_not_raised(session_factory):
    result = execute_import_job("import-ghost-1", service=MagicMock(), session_factory=session_factory)
    assert result == {"status": "error", "error": "job_not_found"}


def test_retry_countdown_doubles_per_attempt():
    assert compute_retry_countdown(1, backoff=2.0) == 2.0
    assert compute_retry_countdown(2, backoff=2.0) == 4.0
    assert compute_retry_countdown(3, backoff=2.0) == 8.0
    assert compute_retry_countdown(0, backoff=2.0) == 2.0
