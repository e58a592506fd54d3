"""
Bulk export ingestion endpoints.

POST /ingestion/bulk            run a job (JSON report, or SSE with ?stream=true)
POST /ingestion/bulk/preview    decode + normalise only, no writes
GET  /ingestion/bulk/{job_id}   persisted job status
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import get_raw_export
from app.schemas.bulk_ingestion import (
    BulkIngestionReportResponse,
    BulkJobStatusResponse,
    BulkPreviewResponse,
)
from app.services.bulk_ingestion_service import BulkIngestionService, get_bulk_ingestion_service
from db.models.ingestion_job import IngestionJob
from ingestion.normalizer import EmptyExportError, RawInput
from ingestion.orchestrator import JobStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bulk-ingestion"])

_STATUS_CODES = {
    JobStatus.COMPLETED: status.HTTP_200_OK,
    JobStatus.PARTIAL: status.HTTP_207_MULTI_STATUS,
    JobStatus.FAILED: status.HTTP_502_BAD_GATEWAY,
}


@router.post(
    "/ingestion/bulk",
    response_model=BulkIngestionReportResponse,
    responses={
        207: {"description": "Some chunks failed; the report lists them."},
        502: {"description": "Every chunk failed."},
    },
)
def run_bulk_ingestion(
    response: Response,
    raw: RawInput = Depends(get_raw_export),
    stream: bool = Query(default=False, description="Stream progress as server-sent events"),
    service: BulkIngestionService = Depends(get_bulk_ingestion_service),
):
    if stream:
        job_id, frames = service.start_stream(raw)
        return StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                "X-Job-Id": str(job_id),
            },
        )

    try:
        report = service.submit(raw)
    except EmptyExportError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    response.status_code = _STATUS_CODES.get(report.status, status.HTTP_502_BAD_GATEWAY)
    return BulkIngestionReportResponse.model_validate(report.to_dict())


@router.post("/ingestion/bulk/preview", response_model=BulkPreviewResponse)
def preview_bulk_export(
    raw: RawInput = Depends(get_raw_export),
    service: BulkIngestionService = Depends(get_bulk_ingestion_service),
) -> BulkPreviewResponse:
    try:
        preview = service.preview(raw)
    except EmptyExportError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return BulkPreviewResponse(**preview)


@router.get("/ingestion/bulk/{job_id}", response_model=BulkJobStatusResponse)
def get_bulk_job(
    job_id: UUID,
    service: BulkIngestionService = Depends(get_bulk_ingestion_service),
) -> BulkJobStatusResponse:
    try:
        job = service.get_job(job_id)
    except SQLAlchemyError as exc:
        logger.exception("Job lookup failed job_id=%s", job_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job store is unavailable.",
        ) from exc

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Ingestion job not found: {job_id}",
        )
    return _to_status_response(job)


def _to_status_response(job: IngestionJob) -> BulkJobStatusResponse:
    return BulkJobStatusResponse(
        job_id=job.id,
        job_type=job.job_type,
        status=job.status,
        file_name=job.file_name,
        total_records=job.total_records,
        total_reconciled=job.total_reconciled,
        total_errors=job.total_errors,
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        request_payload=job.request_payload,
        result_payload=job.result_payload,
        error_message=job.error_message,
    )
