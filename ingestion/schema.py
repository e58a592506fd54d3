"""
ingestion/schema.py

Canonical production-order row shared by the pipeline and the apply step.

The producer's export has a fixed column order but unreliable header text
(Shift-JIS headers frequently arrive garbled), so fields are bound by
position, never by header name.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Iterable, Iterator, Sequence

CANONICAL_FIELDS: tuple[str, ...] = (
    "arrangement_method",
    "inspection_type",
    "customer_name",
    "part_number",
    "production_order_number",
    "line_code",
    "work_area",
    "operator_main",
    "operator_plating",
    "plating_type",
    "plating_jig",
    "issue_date",
    "plating_payout_date",
    "due_date",
    "order_quantity",
    "oohito_shipment_date",
    "plating_process",
    "tamagawa_receipt_date",
    "operator_5x",
    "shelf_number",
    "plating_capacity",
    "bending_count",
    "brazing_count",
    "machine_number",
    "brazing_jig",
    "subcontractor",
)

BUSINESS_KEY = "production_order_number"

INTEGER_FIELDS: frozenset[str] = frozenset(
    {"order_quantity", "plating_capacity", "bending_count", "brazing_count"}
)

DATE_FIELDS: frozenset[str] = frozenset(
    {
        "issue_date",
        "plating_payout_date",
        "due_date",
        "oohito_shipment_date",
        "tamagawa_receipt_date",
    }
)

# Producer writes "0" for "no value" in every column type.
_NULL_SENTINELS = {"", "0"}
_COMPACT_DATE = re.compile(r"^\d{8}$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_INTEGER = re.compile(r"^[+-]?\d+$")


def canonical_header_line() -> str:
    return ",".join(CANONICAL_FIELDS)


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip().replace('"', "")
    if cleaned in _NULL_SENTINELS:
        return None
    return cleaned


def parse_text(value: Any) -> str | None:
    """
    Normalize a text column: trimmed, unquoted, empty or "0" become None.
    """

    return _clean(value)


def parse_int(value: Any) -> int | None:
    cleaned = _clean(value)
    if cleaned is None or not _INTEGER.match(cleaned):
        return None
    return int(cleaned)


def parse_date(value: Any) -> date | None:
    """
    Parse an 8-digit ``YYYYMMDD`` code or an ISO ``YYYY-MM-DD`` string.

    Anything else, including impossible calendar dates, yields None.
    """

    cleaned = _clean(value)
    if cleaned is None:
        return None
    try:
        if _COMPACT_DATE.match(cleaned):
            return date(int(cleaned[0:4]), int(cleaned[4:6]), int(cleaned[6:8]))
        if _ISO_DATE.match(cleaned):
            return date.fromisoformat(cleaned)
    except ValueError:
        return None
    return None


def _coerce(field_name: str, value: Any) -> Any:
    if field_name in INTEGER_FIELDS:
        return parse_int(value)
    if field_name in DATE_FIELDS:
        return parse_date(value)
    return parse_text(value)


@dataclass(frozen=True)
class CanonicalRow:
    """
    One production order in canonical field order.
    """

    arrangement_method: str | None = None
    inspection_type: str | None = None
    customer_name: str | None = None
    part_number: str | None = None
    production_order_number: str | None = None
    line_code: str | None = None
    work_area: str | None = None
    operator_main: str | None = None
    operator_plating: str | None = None
    plating_type: str | None = None
    plating_jig: str | None = None
    issue_date: date | None = None
    plating_payout_date: date | None = None
    due_date: date | None = None
    order_quantity: int | None = None
    oohito_shipment_date: date | None = None
    plating_process: str | None = None
    tamagawa_receipt_date: date | None = None
    operator_5x: str | None = None
    shelf_number: str | None = None
    plating_capacity: int | None = None
    bending_count: int | None = None
    brazing_count: int | None = None
    machine_number: str | None = None
    brazing_jig: str | None = None
    subcontractor: str | None = None

    @classmethod
    def from_values(cls, values: Sequence[Any]) -> "CanonicalRow":
        """
        Bind raw column values to canonical fields by position.

        Short rows leave the trailing fields None; surplus values are dropped.
        """

        kwargs = {
            name: _coerce(name, values[index]) if index < len(values) else None
            for index, name in enumerate(CANONICAL_FIELDS)
        }
        return cls(**kwargs)

    @property
    def business_key(self) -> str | None:
        return self.production_order_number

    def to_values(self) -> list[str]:
        values: list[str] = []
        for name in CANONICAL_FIELDS:
            value = getattr(self, name)
            if value is None:
                values.append("")
            elif isinstance(value, date):
                values.append(value.isoformat())
            else:
                values.append(str(value))
        return values

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


def parse_records(records: Iterable[str]) -> Iterator[CanonicalRow]:
    """
    Parse raw CSV data records (no header) into typed rows.

    Only physically empty lines are skipped; a record of bare separators
    still yields a row so it reaches the business-key check.
    """

    for values in csv.reader(records):
        if not values:
            continue
        yield CanonicalRow.from_values(values)


def parse_canonical_csv(text: str) -> list[CanonicalRow]:
    """
    Parse a staged chunk (canonical header + data records) into typed rows.
    """

    reader = csv.reader(io.StringIO(text))
    next(reader, None)
    return [
        CanonicalRow.from_values(values)
        for values in reader
        if values
    ]


def render_canonical_csv(rows: Iterable[CanonicalRow]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CANONICAL_FIELDS)
    for row in rows:
        writer.writerow(row.to_values())
    return buffer.getvalue()
