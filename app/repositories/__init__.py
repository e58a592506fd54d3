"""
app/repositories package marker.
"""

from app.repositories.production_order_repository import ProductionOrderRepository, build_upsert_statement

__all__ = [
    "ProductionOrderRepository",
    "build_upsert_statement",
]
