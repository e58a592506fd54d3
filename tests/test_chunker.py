from __future__ import annotations

import math

import pytest

from ingestion.chunker import split_into_chunks
from ingestion.normalizer import NormalizedExport
from ingestion.schema import canonical_header_line


def _export(row_count: int) -> NormalizedExport:
    records = tuple(f"r{i}" for i in range(row_count))
    return NormalizedExport(
        text="\n".join((canonical_header_line(), *records)),
        encoding="utf-8",
        original_header="h",
        records=records,
    )


@pytest.mark.parametrize(
    ("rows", "size"),
    [(1, 8000), (8000, 8000), (8001, 8000), (37125, 8000), (10, 3), (10, 1)],
)
def test_chunk_count_and_order(rows: int, size: int) -> None:
    export = _export(rows)

    chunks = split_into_chunks(export, size)

    assert len(chunks) == math.ceil(rows / size)
    assert [chunk.sequence for chunk in chunks] == list(range(1, len(chunks) + 1))
    assert all(0 < chunk.row_count <= size for chunk in chunks)
    flattened = [record for chunk in chunks for record in chunk.records]
    assert flattened == list(export.records)


def test_large_export_chunk_sizes() -> None:
    chunks = split_into_chunks(_export(37125), 8000)

    assert [chunk.row_count for chunk in chunks] == [8000, 8000, 8000, 8000, 5125]


def test_zero_rows_produce_no_chunks() -> None:
    assert split_into_chunks(_export(0), 8000) == []


def test_every_chunk_carries_canonical_header() -> None:
    chunks = split_into_chunks(_export(5), 2)

    for chunk in chunks:
        lines = chunk.to_csv_bytes().decode("utf-8").splitlines()
        assert lines[0] == canonical_header_line()
        assert lines[1:] == list(chunk.records)


@pytest.mark.parametrize("size", [0, -1])
def test_invalid_chunk_size(size: int) -> None:
    with pytest.raises(ValueError):
        split_into_chunks(_export(3), size)
