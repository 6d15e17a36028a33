#!/usr/bin/env python3
"""Run the curation/batch scheduler until interrupted.

Usage:
    CURIO_DB_PATH=data/curio.db python scripts/run_scheduler.py [--mock]

Without --mock the Civitai source adapter is used for discovery. The
classifier, scorer, attribute extractor and entry generator are always the
mock collaborators here; production deployments wire their own.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from curio.config import get_settings  # noqa: E402
from curio.db.session import get_session_factory, init_db  # noqa: E402
from curio.providers.civitai import CivitaiSource  # noqa: E402
from curio.providers.mock import (  # noqa: E402
    MockAttributeExtractor,
    MockClassifier,
    MockEntryGenerator,
    MockScorer,
    MockSource,
)
from curio.scheduler.scheduler import Scheduler  # noqa: E402
from curio.service import PopulationService  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--mock", action="store_true", help="use the synthetic mock source")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    settings = get_settings()
    db_path = Path(settings.db_path)
    init_db(db_path)

    source = MockSource.synthetic(500) if args.mock else CivitaiSource.from_settings(settings)
    service = PopulationService(
        settings,
        get_session_factory(db_path),
        source=source,
        classifier=MockClassifier(),
        scorer=MockScorer(),
        extractor=MockAttributeExtractor(),
        generator=MockEntryGenerator(),
    )
    scheduler = Scheduler(service, settings)

    stop = threading.Event()

    def _stop(signum, frame):
        print("Stopping scheduler...")
        stop.set()
        service.cancel_batch()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    try:
        scheduler.run_forever(stop)
    finally:
        if isinstance(source, CivitaiSource):
            source.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
