"""
Sparring (kumite) scoring.

Each judge records, per participant, counts of three scoring techniques
and four escalating penalties:

    Points:     yuko = 1, waza-ari = 2, ippon = 3
    Penalties:  chukoku -0.5, keikoku -1.0, hansoku-chui -1.5, hansoku -2.0

A keikoku also gives the opponent one point, and any hansoku disqualifies
the participant. Tallies from all judges are summed before totals are
computed.

Winner precedence, first rule that applies decides:

    1. disqualification  - the other participant wins
    2. senshu_gap        - a gap of 8 or more ends the match for the leader
    3. points            - higher total wins
    4. first_score       - on a tie, the earlier first score wins
    5. default_first_listed - nobody scored first, first-listed wins
"""

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from shiai.errors import ValidationError

POINT_VALUES: dict[str, int] = {
    "yuko": 1,
    "waza_ari": 2,
    "ippon": 3,
}

PENALTY_DEDUCTIONS: dict[str, Decimal] = {
    "chukoku": Decimal("0.5"),
    "keikoku": Decimal("1.0"),
    "hansoku_chui": Decimal("1.5"),
    "hansoku": Decimal("2.0"),
}

# Point awarded to the opponent for each keikoku
KEIKOKU_OPPONENT_POINTS = Decimal("1")

DEFAULT_SENSHU_GAP = Decimal("8")

RULE_DISQUALIFICATION = "disqualification"
RULE_SENSHU_GAP = "senshu_gap"
RULE_POINTS = "points"
RULE_FIRST_SCORE = "first_score"
RULE_DEFAULT_FIRST_LISTED = "default_first_listed"


@dataclass
class SparringTally:
    """Counts one judge (or all judges summed) recorded for one participant."""

    yuko: int = 0
    waza_ari: int = 0
    ippon: int = 0
    chukoku: int = 0
    keikoku: int = 0
    hansoku_chui: int = 0
    hansoku: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "SparringTally":
        """Build a tally from submitted counts, rejecting unknown or negative entries."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(
                "Unknown sparring score categories",
                {"unknown": sorted(unknown)},
            )
        tally = cls(**{k: data[k] for k in known if k in data})
        tally.validate()
        return tally

    @classmethod
    def from_row(cls, row) -> "SparringTally":
        """Build a tally from any object carrying the count attributes (e.g. MatchScore)."""
        return cls(**{f.name: getattr(row, f.name) or 0 for f in fields(cls)})

    def validate(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(
                    f"'{f.name}' must be a non-negative whole number",
                    {"field": f.name, "value": value},
                )

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def __add__(self, other: "SparringTally") -> "SparringTally":
        return SparringTally(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    @property
    def points(self) -> int:
        return sum(getattr(self, name) * value for name, value in POINT_VALUES.items())

    @property
    def deductions(self) -> Decimal:
        return sum(
            (getattr(self, name) * value for name, value in PENALTY_DEDUCTIONS.items()),
            Decimal("0"),
        )

    @property
    def is_disqualified(self) -> bool:
        return self.hansoku > 0


@dataclass
class ParticipantTotals:
    """A participant's aggregated standing in a match."""

    competitor_id: int
    tally: SparringTally
    total: Decimal
    disqualified: bool
    first_scored_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "competitor_id": self.competitor_id,
            "tally": self.tally.to_dict(),
            "total": str(self.total),
            "disqualified": self.disqualified,
            "first_scored_at": self.first_scored_at.isoformat() if self.first_scored_at else None,
        }


@dataclass
class SparringDecision:
    """Outcome of the precedence rules for one match."""

    winner_id: int
    loser_id: int
    rule: str
    winner_total: Decimal
    loser_total: Decimal
    disqualified_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "rule": self.rule,
            "winner_total": str(self.winner_total),
            "loser_total": str(self.loser_total),
            "disqualified_id": self.disqualified_id,
        }


def aggregate_tallies(tallies: Iterable[SparringTally]) -> SparringTally:
    """Sum the tallies every judge submitted for one participant."""
    combined = SparringTally()
    for tally in tallies:
        combined = combined + tally
    return combined


def totals_for_pair(
    first_id: int,
    first_tally: SparringTally,
    second_id: int,
    second_tally: SparringTally,
    *,
    first_scored_at: Optional[datetime] = None,
    second_scored_at: Optional[datetime] = None,
) -> tuple[ParticipantTotals, ParticipantTotals]:
    """
    Compute both participants' totals.

    Each total is the participant's own points, minus their own penalty
    deductions, plus one point per keikoku the opponent committed.

    Example:
        A: 2 ippon + 1 yuko = 7, B: 1 waza-ari = 2  ->  (7, 2)
    """
    first_total = (
        Decimal(first_tally.points)
        - first_tally.deductions
        + second_tally.keikoku * KEIKOKU_OPPONENT_POINTS
    )
    second_total = (
        Decimal(second_tally.points)
        - second_tally.deductions
        + first_tally.keikoku * KEIKOKU_OPPONENT_POINTS
    )
    return (
        ParticipantTotals(
            competitor_id=first_id,
            tally=first_tally,
            total=first_total,
            disqualified=first_tally.is_disqualified,
            first_scored_at=first_scored_at,
        ),
        ParticipantTotals(
            competitor_id=second_id,
            tally=second_tally,
            total=second_total,
            disqualified=second_tally.is_disqualified,
            first_scored_at=second_scored_at,
        ),
    )


def _decision(winner: ParticipantTotals, loser: ParticipantTotals, rule: str) -> SparringDecision:
    return SparringDecision(
        winner_id=winner.competitor_id,
        loser_id=loser.competitor_id,
        rule=rule,
        winner_total=winner.total,
        loser_total=loser.total,
        disqualified_id=loser.competitor_id if rule == RULE_DISQUALIFICATION else None,
    )


def decisive_rule(
    first: ParticipantTotals,
    second: ParticipantTotals,
    *,
    senshu_gap: Decimal = DEFAULT_SENSHU_GAP,
) -> Optional[str]:
    """The rule that ends a match before time, if any applies right now."""
    if first.disqualified or second.disqualified:
        return RULE_DISQUALIFICATION
    if abs(first.total - second.total) >= senshu_gap:
        return RULE_SENSHU_GAP
    return None


def decide_winner(
    first: ParticipantTotals,
    second: ParticipantTotals,
    *,
    senshu_gap: Decimal = DEFAULT_SENSHU_GAP,
) -> SparringDecision:
    """
    Apply the winner precedence to a first-listed and second-listed participant.

    When both are disqualified the first-listed check runs first, so the
    second-listed participant is awarded the match.
    """
    if first.disqualified:
        return _decision(second, first, RULE_DISQUALIFICATION)
    if second.disqualified:
        return _decision(first, second, RULE_DISQUALIFICATION)

    leader, trailer = (first, second) if first.total >= second.total else (second, first)

    if leader.total - trailer.total >= senshu_gap:
        return _decision(leader, trailer, RULE_SENSHU_GAP)

    if leader.total != trailer.total:
        return _decision(leader, trailer, RULE_POINTS)

    # Tied on points: earliest first score wins
    if first.first_scored_at and second.first_scored_at:
        if second.first_scored_at < first.first_scored_at:
            return _decision(second, first, RULE_FIRST_SCORE)
        return _decision(first, second, RULE_FIRST_SCORE)
    if first.first_scored_at:
        return _decision(first, second, RULE_FIRST_SCORE)
    if second.first_scored_at:
        return _decision(second, first, RULE_FIRST_SCORE)

    return _decision(first, second, RULE_DEFAULT_FIRST_LISTED)
