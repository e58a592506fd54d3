"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.ingestion_job import IngestionJob, IngestionJobStatus, IngestionJobType
from db.models.production_order import ProductionOrder

__all__ = [
    "IngestionJob",
    "IngestionJobStatus",
    "IngestionJobType",
    "ProductionOrder",
]
