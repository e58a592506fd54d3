"""
Schemas for the apply endpoint and store maintenance endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApplyRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    staged_reference: str = Field(min_length=1)


class ApplyResultResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    succeeded: bool
    reconciled_count: int
    errors: list[str] = Field(default_factory=list)
    processing_duration_ms: int


class ProductionCountResponse(BaseModel):
    count: int


class ProductionDeleteResponse(BaseModel):
    deleted: int
