"""
app/schemas package marker.
"""

from app.schemas.apply import (
    ApplyRequest,
    ApplyResultResponse,
    ProductionCountResponse,
    ProductionDeleteResponse,
)
from app.schemas.bulk_ingestion import (
    BulkIngestionReportResponse,
    BulkJobStatusResponse,
    BulkPreviewResponse,
    ChunkReportResponse,
)

__all__ = [
    "ApplyRequest",
    "ApplyResultResponse",
    "BulkIngestionReportResponse",
    "BulkJobStatusResponse",
    "BulkPreviewResponse",
    "ChunkReportResponse",
    "ProductionCountResponse",
    "ProductionDeleteResponse",
]
