"""
Schemas for bulk ingestion, preview, and job status endpoints.

Job reports keep the camelCase wire names that progress frames use.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChunkReportResponse(_CamelModel):
    sequence: int
    rows: int
    succeeded: bool
    reconciled: int
    errors: list[str] = Field(default_factory=list)
    duration_ms: int


class BulkIngestionReportResponse(_CamelModel):
    job_id: UUID
    status: str
    total_records: int
    total_reconciled: int
    total_errors: int
    processing_time_ms: int
    per_chunk: list[ChunkReportResponse] = Field(default_factory=list)


class BulkPreviewResponse(BaseModel):
    file_name: str
    encoding: str
    encoding_fallback: bool
    headers: list[str]
    original_header: str
    total_records: int
    rows: list[dict[str, Any]] = Field(default_factory=list)


class BulkJobStatusResponse(BaseModel):
    job_id: UUID
    job_type: str
    status: str
    file_name: str | None = None
    total_records: int | None = None
    total_reconciled: int | None = None
    total_errors: int | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    request_payload: dict[str, Any] | None = None
    result_payload: dict[str, Any] | None = None
    error_message: str | None = None
