"""
Shiai services - business logic of the competition progression engine.

This package contains the engines that move a category from entries to
medals:

1. Draw generation: Opening sparring bracket (assistant proposal or random)
2. Forms rounds: Performances per round and final placements
3. Score aggregation: Judge score upserts and unit finalization
4. Sparring matches: Winner resolution and match lifecycle
5. Bracket progression: Next-level generation when a level completes
6. Standings: Medal tables

Usage:
    from shiai.services import CompetitionService

    with get_session() as session:
        service = CompetitionService(session)
        service.submit_score(judge_id, "performance", performance_id, competitor_id, 8.5)
"""

from shiai.services.bracket_progression import (
    BracketProgressionEngine,
    ProgressionOutcome,
)
from shiai.services.competition import CompetitionService
from shiai.services.draw_generation import (
    Bracket,
    DrawGenerator,
    RepairReport,
    build_fallback_bracket,
    repair_proposal,
)
from shiai.services.forms_rounds import FormsRoundEngine, placements_for
from shiai.services.score_aggregator import (
    FinalResult,
    PendingResult,
    ScoreAggregator,
    ScoreReceipt,
)
from shiai.services.sparring_matches import SparringMatchEngine
from shiai.services.standings import Standing, forms_standings, sparring_standings

__all__ = [
    # Progression
    "BracketProgressionEngine",
    "ProgressionOutcome",
    # Facade
    "CompetitionService",
    # Draws
    "Bracket",
    "DrawGenerator",
    "RepairReport",
    "build_fallback_bracket",
    "repair_proposal",
    # Forms
    "FormsRoundEngine",
    "placements_for",
    # Scores
    "FinalResult",
    "PendingResult",
    "ScoreAggregator",
    "ScoreReceipt",
    # Sparring
    "SparringMatchEngine",
    # Standings
    "Standing",
    "forms_standings",
    "sparring_standings",
]
