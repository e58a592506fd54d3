"""
tests/test_apply_service.py

Apply step behaviour against an in-memory staging backend and a fake store.
"""

from __future__ import annotations

from collections.abc import Sequence
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.services import apply_service as apply_module
from app.services.apply_service import ApplyService, ApplyServiceError
from ingestion.chunker import split_into_chunks
from ingestion.normalizer import ExportNormalizer, RawInput
from ingestion.schema import CANONICAL_FIELDS, CanonicalRow, canonical_header_line
from ingestion.staging import StagedArtifactNotFoundError, StagedReference

REFERENCE = StagedReference(path="job/chunk-00001.csv")


class FakeBackend:
    def __init__(self, objects: dict[str, bytes]) -> None:
        self.objects = objects

    def read(self, reference: StagedReference) -> bytes:
        if reference.path not in self.objects:
            raise StagedArtifactNotFoundError(reference.path)
        return self.objects[reference.path]


class FakeRepository:
    """Stands in for ProductionOrderRepository; rejects configured keys."""

    rejected: set[str] = set()
    outage = False
    upserted: list[str] = []

    def __init__(self, session: object) -> None:
        self._session = session

    def upsert(self, rows: Sequence[CanonicalRow], *, batch_size: int = 1000) -> int:
        if FakeRepository.outage:
            raise OperationalError("INSERT", {}, Exception("server closed the connection"))
        for row in rows:
            if row.business_key in FakeRepository.rejected:
                raise IntegrityError("INSERT", {}, Exception(f"value too long for {row.business_key}"))
        FakeRepository.upserted.extend(row.business_key for row in rows)  # type: ignore[misc]
        return len(rows)


def _chunk_bytes(order_numbers: list[str]) -> bytes:
    key_index = CANONICAL_FIELDS.index("production_order_number")
    lines = [canonical_header_line()]
    for number in order_numbers:
        values = [""] * len(CANONICAL_FIELDS)
        values[key_index] = number
        lines.append(",".join(values))
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture()
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture(autouse=True)
def fake_repository(monkeypatch: pytest.MonkeyPatch) -> type[FakeRepository]:
    FakeRepository.rejected = set()
    FakeRepository.outage = False
    FakeRepository.upserted = []
    monkeypatch.setattr(apply_module, "ProductionOrderRepository", FakeRepository)
    return FakeRepository


def _service(session: MagicMock, content: bytes, batch_size: int = 1000) -> ApplyService:
    factory = MagicMock()
    factory.return_value.__enter__.return_value = session
    return ApplyService(
        backend=FakeBackend({REFERENCE.path: content}),
        session_factory=factory,
        batch_size=batch_size,
    )


def test_all_rows_reconciled(session: MagicMock) -> None:
    result = _service(session, _chunk_bytes(["A1", "A2", "A3"]), batch_size=2).apply(REFERENCE)

    assert result.succeeded is True
    assert result.reconciled_count == 3
    assert result.errors == ()
    assert session.commit.call_count == 2


def test_rows_without_business_key_are_reported(session: MagicMock) -> None:
    result = _service(session, _chunk_bytes(["A1", "", "0", "A4"])).apply(REFERENCE)

    assert result.succeeded is True
    assert result.reconciled_count == 2
    assert result.errors == (
        "row 2: missing production_order_number",
        "row 3: missing production_order_number",
    )


def test_rejected_batch_falls_back_to_row_by_row(
    session: MagicMock, fake_repository: type[FakeRepository]
) -> None:
    fake_repository.rejected = {"A2"}

    result = _service(session, _chunk_bytes(["A1", "A2", "A3"])).apply(REFERENCE)

    assert result.succeeded is True
    assert result.reconciled_count == 2
    assert result.errors == ("row 2: value too long for A2",)
    assert fake_repository.upserted == ["A1", "A3"]
    session.rollback.assert_called_once()
    assert session.begin_nested.call_count == 3


def test_store_outage_raises(session: MagicMock, fake_repository: type[FakeRepository]) -> None:
    fake_repository.outage = True

    with pytest.raises(ApplyServiceError):
        _service(session, _chunk_bytes(["A1"])).apply(REFERENCE)
    session.rollback.assert_called()


def test_missing_artifact_raises(session: MagicMock) -> None:
    service = _service(session, b"")

    with pytest.raises(StagedArtifactNotFoundError):
        service.apply(StagedReference(path="job/other.csv"))


def test_empty_chunk_reconciles_nothing(session: MagicMock) -> None:
    result = _service(session, (canonical_header_line() + "\n").encode("utf-8")).apply(REFERENCE)

    assert result.succeeded is True
    assert result.reconciled_count == 0
    session.commit.assert_not_called()


def test_every_counted_record_is_reconciled_or_reported(session: MagicMock) -> None:
    key_index = CANONICAL_FIELDS.index("production_order_number")
    records = []
    for number in ("A1", "", "A3"):
        values = ["x"] * len(CANONICAL_FIELDS)
        values[key_index] = number
        records.append(",".join(values) if number else "," * (len(CANONICAL_FIELDS) - 1))
    export = ExportNormalizer(("utf-8",)).normalize(
        RawInput(content=("header\n" + "\n".join(records) + "\n").encode("utf-8"))
    )
    (chunk,) = split_into_chunks(export, chunk_size=10)

    result = _service(session, chunk.to_csv_bytes()).apply(REFERENCE)

    assert chunk.row_count == 3
    assert result.reconciled_count + len(result.errors) == chunk.row_count
    assert result.errors == ("row 2: missing production_order_number",)
