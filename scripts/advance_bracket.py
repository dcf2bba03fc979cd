#!/usr/bin/env python3
"""
Retry next-level generation for a category.

Background advancement is fire and forget; if a job failed (or a match was
corrected by hand), run this to generate the level manually. Running it
for a level that already exists is a no-op.

Usage:
    python scripts/advance_bracket.py --category 12 --from-level Semifinal
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shiai.config import settings
from shiai.db.session import get_session
from shiai.errors import CompetitionError
from shiai.events import LoggingPublisher
from shiai.services.competition import CompetitionService

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate the next level of a category")
    parser.add_argument("--category", type=int, required=True, help="Category id")
    parser.add_argument("--from-level", required=True, help="Completed level, e.g. 'Semifinal'")
    args = parser.parse_args()

    try:
        with get_session() as session:
            service = CompetitionService(session, publisher=LoggingPublisher())
            outcome = service.generate_next_level(args.category, args.from_level)
            logger.info(outcome.summary())
    except CompetitionError as e:
        logger.error("%s: %s %s", type(e).__name__, e.message, e.details or "")
        return 1

    return 0 if outcome.status in ("created", "already_exists", "terminal", "decided") else 2


if __name__ == "__main__":
    raise SystemExit(main())
