"""
Timeline import API routes.

The caller's identity comes from the ``X-User-Id`` header set by the
authentication layer in front of this service.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Response
from pydantic import BaseModel, Field

from domain.models import ImportHistoryRecord
from services.errors import ImportValidationError, JobNotFoundError, PayloadTooLargeError
from services.factory import get_import_service, get_job_queue
from services.timeline_parser import check_payload_size, extract_place_visits, load_timeline_json

router = APIRouter()
logger = logging.getLogger(__name__)

STATUS_CACHE_CONTROL = "max-age=5, must-revalidate"


class TimelineImportRequest(BaseModel):
    timeline_data: str = Field(..., description="Raw Timeline export JSON, as a string")
    file_name: Optional[str] = None


class AsyncImportResponse(BaseModel):
    job_id: str
    message: str


class JobStatusResponse(BaseModel):
    status: str
    progress: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ImportHistoryItem(BaseModel):
    id: str
    source: str
    file_name: Optional[str] = None
    job_id: Optional[str] = None
    imported_at: Optional[str] = None
    total_places: int
    visits_created: int
    visits_skipped: int
    new_venues_created: int
    existing_venues_matched: int
    processing_time_ms: int
    metadata: Dict[str, Any] = {}


class ImportHistoryResponse(BaseModel):
    imports: List[ImportHistoryItem]
    total: int


def _require_user(x_user_id: Optional[str]) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def history_to_item(record: ImportHistoryRecord) -> ImportHistoryItem:
    return ImportHistoryItem(
        id=record.id,
        source=record.source,
        file_name=record.file_name,
        job_id=record.job_id,
        imported_at=record.imported_at.isoformat() if record.imported_at else None,
        total_places=record.total_places,
        visits_created=record.visits_created,
        visits_skipped=record.visits_skipped,
        new_venues_created=record.new_venues_created,
        existing_venues_matched=record.existing_venues_matched,
        processing_time_ms=record.processing_time_ms,
        metadata=record.metadata or {},
    )


@router.post("/google-timeline")
def import_google_timeline(
    body: TimelineImportRequest,
    x_user_id: Optional[str] = Header(default=None),
):
    """
    Import a Timeline export.

    Small exports are processed inline and return the import summary;
    exports with more places than the async threshold are queued and return
    a job id to poll.
    """
    user_id = _require_user(x_user_id)
    service = get_import_service()

    try:
        check_payload_size(body.timeline_data, service.max_payload_bytes)
        timeline_data = load_timeline_json(body.timeline_data)
        service.validate_import_data(timeline_data)
        places = extract_place_visits(timeline_data)
    except PayloadTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc))
    except ImportValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if service.should_process_async(len(places)):
        try:
            job_id = get_job_queue().enqueue(
                user_id, timeline_data, file_name=body.file_name, place_count=len(places)
            )
        except Exception:
            logger.exception("Failed to queue import job")
            raise HTTPException(status_code=500, detail="Failed to queue import job")
        return AsyncImportResponse(
            job_id=job_id,
            message=f"Import of {len(places)} places queued for background processing",
        )

    summary = service.process_import(user_id, timeline_data, file_name=body.file_name)
    return summary.to_dict()


@router.get("/status/{job_id}", response_model=JobStatusResponse)
def get_import_status(
    job_id: str,
    response: Response,
    x_user_id: Optional[str] = Header(default=None),
):
    user_id = _require_user(x_user_id)
    try:
        status = get_job_queue().get_status(job_id, user_id=user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Import job not found")
    response.headers["Cache-Control"] = STATUS_CACHE_CONTROL
    return JobStatusResponse(**status)


@router.get("/history", response_model=ImportHistoryResponse)
def get_import_history(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    x_user_id: Optional[str] = Header(default=None),
):
    user_id = _require_user(x_user_id)
    try:
        records, total = get_import_service().get_history(user_id, limit=limit, offset=offset)
    except Exception:
        logger.exception("Failed to fetch import history")
        raise HTTPException(status_code=500, detail="Failed to fetch import history")
    return ImportHistoryResponse(imports=[history_to_item(r) for r in records], total=total)
