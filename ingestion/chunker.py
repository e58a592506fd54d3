"""
ingestion/chunker.py

Deterministic partitioning of a normalized export into bounded chunks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from ingestion.normalizer import NormalizedExport
from ingestion.schema import CanonicalRow, parse_records


@dataclass(frozen=True)
class Chunk:
    """
    A self-contained slice of the export: canonical header plus records.

    ``sequence`` starts at 1 and increases by one per chunk within a job.
    """

    sequence: int
    header: str
    records: tuple[str, ...]

    @property
    def row_count(self) -> int:
        return len(self.records)

    def rows(self) -> Iterator[CanonicalRow]:
        yield from parse_records(self.records)

    def to_csv_bytes(self) -> bytes:
        body = "\n".join((self.header, *self.records))
        return f"{body}\n".encode("utf-8")


def split_into_chunks(export: NormalizedExport, chunk_size: int) -> list[Chunk]:
    """
    Split data records into consecutive chunks of at most ``chunk_size``.

    Produces ``ceil(N / chunk_size)`` chunks, or none when the export has no
    data records. Record order is preserved across chunk boundaries.
    """

    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}.")

    records = export.records
    return [
        Chunk(
            sequence=index + 1,
            header=export.header,
            records=records[start : start + chunk_size],
        )
        for index, start in enumerate(range(0, len(records), chunk_size))
    ]
