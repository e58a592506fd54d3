"""
app/services package marker.
"""

from app.services.apply_service import ApplyService, ApplyServiceError, get_apply_service
from app.services.bulk_ingestion_service import (
    BulkIngestionService,
    build_apply_invoker,
    build_pipeline_config,
    get_bulk_ingestion_service,
)

__all__ = [
    "ApplyService",
    "ApplyServiceError",
    "get_apply_service",
    "BulkIngestionService",
    "build_apply_invoker",
    "build_pipeline_config",
    "get_bulk_ingestion_service",
]
