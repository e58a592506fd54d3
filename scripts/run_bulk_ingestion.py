"""
Run a bulk export ingestion from the CLI.

Exit codes: 0 completed, 1 partial success, 2 every chunk failed, 3 empty export.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from app.services.bulk_ingestion_service import (
    BulkIngestionService,
    build_apply_invoker,
    build_pipeline_config,
)
from app.config import get_staging_settings
from ingestion.normalizer import EmptyExportError, RawInput
from ingestion.orchestrator import JobStatus, PipelineConfig
from ingestion.staging import ChunkStager, LocalStagingBackend

_EXIT_CODES = {
    JobStatus.COMPLETED: 0,
    JobStatus.PARTIAL: 1,
    JobStatus.FAILED: 2,
}


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest a production order export.")
    parser.add_argument("path", type=Path, help="CSV export to ingest.")
    parser.add_argument("--encoding", default=None, help="Source encoding to try first.")
    parser.add_argument("--chunk-size", type=int, default=None, help="Override BULK_CHUNK_SIZE.")
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Skip the pause between chunks.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    def config_factory() -> PipelineConfig:
        config = build_pipeline_config()
        if args.chunk_size is not None:
            config = replace(config, chunk_size=args.chunk_size)
        if args.no_delay:
            config = replace(config, inter_chunk_delay_seconds=0.0)
        return config

    service = BulkIngestionService(
        stager=ChunkStager(LocalStagingBackend(get_staging_settings().root_dir)),
        invoker=build_apply_invoker(),
        config_factory=config_factory,
    )
    raw = RawInput(
        content=args.path.read_bytes(),
        file_name=args.path.name,
        declared_encoding=args.encoding,
    )

    try:
        report = service.submit(raw)
    except EmptyExportError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 3

    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return _EXIT_CODES.get(report.status, 2)


if __name__ == "__main__":
    raise SystemExit(main())
