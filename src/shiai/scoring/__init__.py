"""
Scoring rules.

Pure functions that turn judge input into unit results. Nothing in this
package touches the database, so the rules can be tested on plain values.
"""

from shiai.scoring.forms import (
    FormsBreakdown,
    forms_breakdown,
    forms_total,
    select_counted_scores,
    validate_forms_score,
)
from shiai.scoring.sparring import (
    ParticipantTotals,
    SparringDecision,
    SparringTally,
    aggregate_tallies,
    decide_winner,
    totals_for_pair,
)

__all__ = [
    "FormsBreakdown",
    "forms_breakdown",
    "forms_total",
    "select_counted_scores",
    "validate_forms_score",
    "ParticipantTotals",
    "SparringDecision",
    "SparringTally",
    "aggregate_tallies",
    "decide_winner",
    "totals_for_pair",
]
