"""
Delete staged chunk artifacts older than the configured (or given) age.
"""

from __future__ import annotations

import argparse
import logging
from datetime import timedelta

from app.config import get_staging_settings
from ingestion.staging import ChunkStager, LocalStagingBackend


def main() -> int:
    settings = get_staging_settings()
    parser = argparse.ArgumentParser(description="Sweep orphaned staged chunks.")
    parser.add_argument(
        "--max-age-minutes",
        type=int,
        default=settings.sweep_max_age_minutes,
        help="Only artifacts older than this are removed.",
    )
    parser.add_argument("--root", default=settings.root_dir, help="Staging root directory.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    stager = ChunkStager(LocalStagingBackend(args.root))
    removed = stager.sweep(timedelta(minutes=max(0, args.max_age_minutes)))
    print(f"removed {removed} staged artifact(s) from {args.root}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
