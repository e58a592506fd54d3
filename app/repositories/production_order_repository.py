"""
app/repositories/production_order_repository.py

Persistence layer for canonical production orders.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.orm import Session

from db.models.production_order import ProductionOrder
from ingestion.schema import BUSINESS_KEY, CANONICAL_FIELDS, CanonicalRow

_DEFAULT_BATCH_SIZE = 1000
_UPDATABLE_FIELDS = tuple(name for name in CANONICAL_FIELDS if name != BUSINESS_KEY)


def build_upsert_statement(payloads: Sequence[dict[str, Any]]) -> Insert:
    """
    INSERT ... ON CONFLICT (production_order_number) DO UPDATE for one batch.
    """

    stmt = insert(ProductionOrder).values(list(payloads))
    update_columns: dict[str, Any] = {name: stmt.excluded[name] for name in _UPDATABLE_FIELDS}
    update_columns["updated_at"] = func.now()
    return stmt.on_conflict_do_update(
        index_elements=[ProductionOrder.production_order_number],
        set_=update_columns,
    )


class ProductionOrderRepository:
    """
    Batch upserts keyed by production order number.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def upsert(
        self,
        rows: Sequence[CanonicalRow],
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Upsert rows and return how many input rows were reconciled.

        A row superseded by a later row with the same key counts as
        reconciled. Rows without a business key must be filtered out by the
        caller.
        """

        if not rows:
            return 0

        payloads = self._deduplicate_payloads([row.to_record() for row in rows])
        size = max(1, batch_size)
        for start in range(0, len(payloads), size):
            self._session.execute(build_upsert_statement(payloads[start : start + size]))
        return len(rows)

    def count(self) -> int:
        return int(self._session.scalar(select(func.count()).select_from(ProductionOrder)) or 0)

    def delete_all(self) -> int:
        result = self._session.execute(delete(ProductionOrder))
        return int(result.rowcount or 0)

    def _deduplicate_payloads(
        self,
        payloads: Sequence[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        # One statement may not touch the same conflict key twice; last row wins.
        by_key: dict[str, dict[str, Any]] = {}
        for payload in payloads:
            key = payload.get(BUSINESS_KEY)
            if not key:
                raise ValueError("Cannot upsert a production order without a production_order_number.")
            by_key.pop(key, None)
            by_key[key] = payload
        return list(by_key.values())
