#!/usr/bin/env python3
"""Seed a demo database through the mock collaborators.

Usage:
    python scripts/seed_demo.py [--images 300] [--batch 5]

This script:
1. Initializes the demo database
2. Runs one curation cycle against a synthetic mock source
3. Runs one batch through the mock entry generator
4. Prints the resulting pipeline stats
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from curio.config import Settings  # noqa: E402
from curio.db.session import get_session_factory, init_db  # noqa: E402
from curio.providers.mock import (  # noqa: E402
    MockAttributeExtractor,
    MockClassifier,
    MockEntryGenerator,
    MockScorer,
    MockSource,
)
from curio.service import PopulationService  # noqa: E402

# Constants
DEMO_DB_PATH = PROJECT_ROOT / "demo.db"


def build_service(db_path: Path, image_count: int) -> PopulationService:
    """Wire a service with mock collaborators and no real delays."""
    settings = Settings(
        db_path=str(db_path),
        inter_item_delay_seconds=0.0,
        retry_base_delay_seconds=0.0,
        fetch_limit=image_count,
        source_page_size=50,
    )
    init_db(db_path)
    return PopulationService(
        settings,
        get_session_factory(db_path),
        source=MockSource.synthetic(image_count),
        classifier=MockClassifier(),
        scorer=MockScorer(),
        extractor=MockAttributeExtractor(),
        generator=MockEntryGenerator(cost_usd=0.02),
        sleep=lambda _: None,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--images", type=int, default=300, help="synthetic source size")
    parser.add_argument("--batch", type=int, default=5, help="batch size to generate")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    service = build_service(DEMO_DB_PATH, args.images)

    cycle = service.run_curation_cycle()
    print(
        f"Fetched {cycle.fetched}: {cycle.curation.approved} approved, "
        f"{cycle.curation.rejected} rejected {cycle.curation.rejection_reasons}"
    )

    run = service.trigger_batch(args.batch)
    print(
        f"Batch {run.run_id}: {run.succeeded_count} succeeded, {run.failed_count} failed, "
        f"cost ${run.cost_estimate_usd or 0:.2f}"
    )

    stats = service.get_stats()
    print(stats.model_dump_json(indent=2, exclude={"recent_runs"}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
