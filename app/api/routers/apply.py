"""
Apply endpoint: reconcile one staged chunk into the production order store.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas.apply import ApplyRequest, ApplyResultResponse
from app.services.apply_service import ApplyService, ApplyServiceError, get_apply_service
from ingestion.staging import StagedArtifactNotFoundError, StagedReference, StagingError

router = APIRouter(tags=["apply"])


@router.post("/apply", response_model=ApplyResultResponse)
def apply_staged_chunk(
    payload: ApplyRequest,
    service: ApplyService = Depends(get_apply_service),
) -> ApplyResultResponse:
    reference = StagedReference(path=payload.staged_reference)
    try:
        result = service.apply(reference)
    except StagedArtifactNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StagingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ApplyServiceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ApplyResultResponse.model_validate(result.to_dict())
