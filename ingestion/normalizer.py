"""
ingestion/normalizer.py

Encoding detection and positional header replacement for raw exports.

The producer writes CP932 (Shift-JIS) files whose header row is frequently
mangled in transit. Rather than matching header text, the whole first record
is replaced with the canonical header; columns are bound by index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Sequence

from ingestion.schema import (
    CANONICAL_FIELDS,
    CanonicalRow,
    canonical_header_line,
    parse_records,
)

logger = logging.getLogger(__name__)

DEFAULT_ENCODINGS: tuple[str, ...] = ("cp932", "utf-8")

_UTF8_BOM = b"\xef\xbb\xbf"
_REPLACEMENT_CHAR = "\ufffd"


class EmptyExportError(ValueError):
    """
    Raised when an export has no content or no header record.
    """


@dataclass(frozen=True)
class RawInput:
    """
    Raw upload bytes as received from the caller.
    """

    content: bytes
    file_name: str = "upload.csv"
    declared_encoding: str | None = None


@dataclass(frozen=True)
class DecodedExport:
    text: str
    encoding: str
    fallback: bool = False


@dataclass(frozen=True)
class NormalizedExport:
    """
    Export text with the canonical header plus its data records.

    ``records`` holds one entry per logical CSV record (quoted values that
    span physical lines stay together); blank lines are not records.
    """

    text: str
    encoding: str
    original_header: str
    records: tuple[str, ...]
    fallback: bool = False
    header: str = field(default_factory=canonical_header_line)

    @property
    def row_count(self) -> int:
        return len(self.records)

    @property
    def fields(self) -> tuple[str, ...]:
        return CANONICAL_FIELDS

    def rows(self) -> Iterator[CanonicalRow]:
        yield from parse_records(self.records)


def _candidate_encodings(raw: RawInput, encodings: Sequence[str]) -> list[str]:
    candidates: list[str] = []
    if raw.content.startswith(_UTF8_BOM):
        candidates.append("utf-8-sig")
    if raw.declared_encoding:
        candidates.append(raw.declared_encoding)
    for encoding in encodings:
        if encoding not in candidates:
            candidates.append(encoding)
    return candidates


def decode_export(raw: RawInput, encodings: Sequence[str] = DEFAULT_ENCODINGS) -> DecodedExport:
    """
    Decode raw bytes with the first encoding that yields clean text.

    Clean means strict decoding succeeds and no U+FFFD replacement character
    appears. When every candidate fails, the last one is applied with
    ``errors="replace"`` and the result is flagged as a fallback.
    """

    candidates = _candidate_encodings(raw, encodings)
    if not candidates:
        raise ValueError("At least one text encoding must be configured.")

    for encoding in candidates:
        try:
            text = raw.content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            logger.debug("Export decode rejected encoding=%s error=%s", encoding, exc)
            continue
        if _REPLACEMENT_CHAR in text:
            logger.debug("Export decode rejected encoding=%s reason=replacement_char", encoding)
            continue
        return DecodedExport(text=text, encoding=encoding)

    last_encoding = candidates[-1]
    logger.warning(
        "Export could not be decoded cleanly file=%s tried=%s using=%s with replacement",
        raw.file_name,
        ",".join(candidates),
        last_encoding,
    )
    return DecodedExport(
        text=raw.content.decode(last_encoding, errors="replace"),
        encoding=last_encoding,
        fallback=True,
    )


def split_records(lines: Sequence[str]) -> list[str]:
    """
    Group physical lines into CSV records, joining lines inside open quotes.
    """

    records: list[str] = []
    pending: list[str] = []
    quote_open = False
    for line in lines:
        pending.append(line)
        if line.count('"') % 2 == 1:
            quote_open = not quote_open
        if quote_open:
            continue
        records.append("\n".join(pending))
        pending = []
    if pending:
        records.append("\n".join(pending))
    return records


def replace_header(text: str) -> tuple[str, str, list[str]]:
    """
    Replace the first record of ``text`` with the canonical header.

    Returns ``(normalized_text, original_header, data_records)``.
    """

    lines = text.splitlines()
    records = split_records(lines)
    if not records or not records[0].strip():
        raise EmptyExportError("CSV header row is missing.")

    original_header = records[0]
    header_line_count = original_header.count("\n") + 1
    body_lines = lines[header_line_count:]
    normalized_text = "\n".join([canonical_header_line(), *body_lines])
    data_records = [record for record in records[1:] if record.strip()]
    return normalized_text, original_header, data_records


class ExportNormalizer:
    """
    Decodes raw exports and rewrites their header to the canonical field list.
    """

    def __init__(self, encodings: Sequence[str] = DEFAULT_ENCODINGS) -> None:
        self._encodings = tuple(encodings)

    def normalize(self, raw: RawInput) -> NormalizedExport:
        if not raw.content or not raw.content.strip():
            raise EmptyExportError("Uploaded file is empty.")

        decoded = decode_export(raw, self._encodings)
        text = decoded.text.lstrip("\ufeff")
        normalized_text, original_header, data_records = replace_header(text)

        logger.info(
            "Export normalized file=%s encoding=%s fallback=%s rows=%s original_header=%r",
            raw.file_name,
            decoded.encoding,
            decoded.fallback,
            len(data_records),
            original_header[:200],
        )
        return NormalizedExport(
            text=normalized_text,
            encoding=decoded.encoding,
            original_header=original_header,
            records=tuple(data_records),
            fallback=decoded.fallback,
        )
