#!/usr/bin/env python3
"""
Create all tables directly from the ORM models.

For local development only; deployed databases are managed with
`alembic upgrade head`.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shiai.config import settings
from shiai.db.models import Base
from shiai.db.session import get_engine

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create Shiai tables")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first")
    args = parser.parse_args()

    engine = get_engine()
    if args.drop:
        logger.warning("Dropping all tables on %s", engine.url.render_as_string(hide_password=True))
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    logger.info("Created %d tables", len(Base.metadata.tables))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
