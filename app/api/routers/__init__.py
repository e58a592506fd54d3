"""
app/api/routers package marker.
"""

from app.api.routers.apply import router as apply_router
from app.api.routers.bulk_ingestion import router as bulk_ingestion_router
from app.api.routers.productions import router as productions_router

__all__ = [
    "apply_router",
    "bulk_ingestion_router",
    "productions_router",
]
