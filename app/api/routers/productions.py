"""
Production order store maintenance endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.repositories.production_order_repository import ProductionOrderRepository
from app.schemas.apply import ProductionCountResponse, ProductionDeleteResponse
from db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/productions", tags=["productions"])


@router.get("/count", response_model=ProductionCountResponse)
def count_productions(db: Session = Depends(get_db)) -> ProductionCountResponse:
    try:
        count = ProductionOrderRepository(db).count()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Production order store is unavailable.",
        ) from exc
    return ProductionCountResponse(count=count)


@router.delete("", response_model=ProductionDeleteResponse)
def delete_productions(db: Session = Depends(get_db)) -> ProductionDeleteResponse:
    try:
        deleted = ProductionOrderRepository(db).delete_all()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to delete production orders.",
        ) from exc

    logger.warning("All production orders deleted count=%s", deleted)
    return ProductionDeleteResponse(deleted=deleted)
