#!/usr/bin/env python3
"""
Generate (or regenerate) the opening bracket of a sparring category.

This REPLACES the category's existing matches and scores.

Usage:
    python scripts/generate_draws.py --category 12
    python scripts/generate_draws.py --category 12 --no-assistant --seed 7
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shiai.config import settings
from shiai.db.session import get_session
from shiai.errors import CompetitionError
from shiai.events import LoggingPublisher
from shiai.seeding.gemini import GeminiSeedingAssistant
from shiai.services.draw_generation import DrawGenerator

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a sparring draw")
    parser.add_argument("--category", type=int, required=True, help="Category id")
    parser.add_argument(
        "--no-assistant",
        action="store_true",
        help="Skip the seeding assistant and draw at random",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for the random draw")
    args = parser.parse_args()

    use_assistant = not args.no_assistant and bool(settings.gemini_api_key)
    assistant = GeminiSeedingAssistant() if use_assistant else None
    rng = random.Random(args.seed) if args.seed is not None else None

    try:
        with get_session() as session:
            generator = DrawGenerator(
                session,
                assistant=assistant,
                publisher=LoggingPublisher(),
                rng=rng,
                use_assistant=use_assistant,
            )
            bracket = generator.generate_draws(args.category)
            for match in bracket.matches:
                print(f"  {match.level} #{match.position}: {match.competitor_ids} [{match.status}]")
            print(bracket.summary())
    except CompetitionError as e:
        logger.error("%s: %s %s", type(e).__name__, e.message, e.details or "")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
