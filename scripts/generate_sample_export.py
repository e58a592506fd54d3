"""
Write a synthetic production order export the way the producer does:
CP932-encoded with the Japanese header row.
"""

from __future__ import annotations

import argparse
from datetime import date, timedelta
from pathlib import Path

from ingestion.schema import CanonicalRow, render_canonical_csv

SOURCE_HEADER_LABELS = (
    "手配方式",
    "検査区分",
    "代表得意先",
    "部品番号",
    "製造指示番号",
    "ラインコード",
    "作業区",
    "曲げ/ろう付け作業者",
    "めっき作業者",
    "めっき種類",
    "めっき冶具",
    "発行日",
    "めっき払出日",
    "製造納期",
    "製造指示数",
    "大仁出荷",
    "めっき工程",
    "玉川受入",
    "5X作業者",
    "棚番",
    "めっき収容数",
    "曲げ数",
    "ろう付け箇所数",
    "NC_UNC機械番号",
    "ろう付け治具",
    "二次協力企業",
)


def build_rows(count: int, start: date) -> list[CanonicalRow]:
    rows: list[CanonicalRow] = []
    for i in range(1, count + 1):
        issued = start + timedelta(days=i % 30)
        rows.append(
            CanonicalRow(
                arrangement_method="1",
                inspection_type="2",
                customer_name=f"得意先{i % 40:03d}",
                part_number=f"PART{i:06d}",
                production_order_number=f"ORDER{i:08d}",
                line_code="A",
                work_area=f"AREA{i % 5 + 1}",
                operator_main=f"OP{i % 100:03d}",
                operator_plating=f"PL{i % 50:03d}",
                plating_type="TYPE1",
                plating_jig="JIG1",
                issue_date=issued,
                plating_payout_date=issued + timedelta(days=1),
                due_date=issued + timedelta(days=14),
                order_quantity=100 + i % 500,
                plating_process="PROC1",
                operator_5x=f"5X{i % 30:03d}",
                shelf_number=f"SHELF{i % 20:02d}",
                plating_capacity=100 + i % 500,
                bending_count=1 + i % 10,
                brazing_count=1 + i % 8,
                machine_number=f"MACH{i % 15:02d}",
                brazing_jig="JIGA",
                subcontractor=f"SUB{i % 5:02d}",
            )
        )
    return rows


def render_export(rows: list[CanonicalRow]) -> bytes:
    _, body = render_canonical_csv(rows).split("\n", 1)
    # Producer writes compact YYYYMMDD dates.
    lines = [",".join(SOURCE_HEADER_LABELS)]
    for line in body.splitlines():
        lines.append(",".join(_compact_date(value) for value in line.split(",")))
    return ("\r\n".join(lines) + "\r\n").encode("cp932")


def _compact_date(value: str) -> str:
    if len(value) == 10 and value[4] == "-" and value[7] == "-":
        return value.replace("-", "")
    return value


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a sample CP932 production order export.")
    parser.add_argument("output", type=Path, help="Destination CSV path.")
    parser.add_argument("--rows", type=int, default=1000, help="Number of data rows.")
    args = parser.parse_args()

    content = render_export(build_rows(max(0, args.rows), date(2025, 8, 1)))
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(content)
    print(f"wrote {args.rows} rows to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
