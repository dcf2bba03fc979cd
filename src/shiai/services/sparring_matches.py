"""
Sparring match engine - runs matches from first bow to a decided winner.

Per-judge tallies (see scoring/sparring.py) are summed per participant and
the winner precedence is applied when the match is resolved. A match also
resolves itself as soon as a decisive condition appears mid-bout: a
disqualification or an 8-point gap.

Every completion publishes unit.completed and hands the level to the
progression trigger, which builds the next level once all of its matches
are done.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from shiai.collaborators import DbJudgePanel
from shiai.config import settings
from shiai.db.models import Match, MatchParticipant, MatchScore
from shiai.errors import NotFoundError, ValidationError
from shiai.events import UNIT_COMPLETED, EventPublisher, NullPublisher, safe_publish
from shiai.levels import BRONZE, SEMIFINAL
from shiai.scoring.sparring import (
    RULE_DISQUALIFICATION,
    ParticipantTotals,
    SparringDecision,
    SparringTally,
    aggregate_tallies,
    decide_winner,
    decisive_rule,
    totals_for_pair,
)
from shiai.services.match_builder import attach_panel, complete_bye
from shiai.tasks.progression import BackgroundProgression, ProgressionTrigger
from shiai.unit_statuses import (
    CANCELLED,
    COMPLETED,
    IN_PROGRESS,
    POSTPONED,
    RESULT_DISQUALIFIED,
    RESULT_LOSS,
    RESULT_WIN,
    SCHEDULED,
    validate_transition,
)

logger = logging.getLogger(__name__)


class SparringMatchEngine:
    """
    Drives sparring matches through their lifecycle.

    Args:
        session: Database session (caller owns the transaction)
        publisher: Receives unit.completed events
        progression: Trigger for next-level generation. Defaults to inline
                     advancement in the same session.
        senshu_gap: Point gap that ends a match (defaults to settings)
    """

    def __init__(
        self,
        session: Session,
        publisher: Optional[EventPublisher] = None,
        progression: Optional[ProgressionTrigger] = None,
        senshu_gap: Optional[Decimal] = None,
    ):
        self.session = session
        self.publisher = publisher or NullPublisher()
        self.progression = progression or BackgroundProgression(inline=True, publisher=self.publisher)
        self.senshu_gap = senshu_gap if senshu_gap is not None else settings.sparring_senshu_gap

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_match(self, match_id: int) -> Match:
        match = self.session.get(Match, match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found", {"match_id": match_id})
        return match

    def compute_totals(self, match: Match) -> tuple[ParticipantTotals, ParticipantTotals]:
        """Aggregate every judge's tally for both participants, first-listed first."""
        if len(match.participants) != 2:
            raise ValidationError(
                "Totals need exactly two participants",
                {"match_id": match.id, "participants": len(match.participants)},
            )
        first, second = match.participants

        rows = self.session.query(MatchScore).filter(MatchScore.match_id == match.id).all()
        tallies: dict[int, list[SparringTally]] = {first.competitor_id: [], second.competitor_id: []}
        first_scored: dict[int, Optional[datetime]] = {first.competitor_id: None, second.competitor_id: None}
        for row in rows:
            if row.competitor_id not in tallies:
                continue
            tallies[row.competitor_id].append(SparringTally.from_row(row))
            earliest = first_scored[row.competitor_id]
            if earliest is None or row.submitted_at < earliest:
                first_scored[row.competitor_id] = row.submitted_at

        return totals_for_pair(
            first.competitor_id,
            aggregate_tallies(tallies[first.competitor_id]),
            second.competitor_id,
            aggregate_tallies(tallies[second.competitor_id]),
            first_scored_at=first_scored[first.competitor_id],
            second_scored_at=first_scored[second.competitor_id],
        )

    # =========================================================================
    # Status changes
    # =========================================================================

    def start_match(self, match_id: int) -> Match:
        match = self.get_match(match_id)
        validate_transition(match.status, IN_PROGRESS)
        if match.status != IN_PROGRESS:
            match.status = IN_PROGRESS
            match.started_at = match.started_at or datetime.utcnow()
            self.session.flush()
        return match

    def set_status(self, match_id: int, status: str) -> Match:
        """
        Apply an outside status change (cancel, postpone, resume).

        Completion goes through resolve_winner so a winner is always set.
        """
        if status == COMPLETED:
            raise ValidationError("Use resolve_winner to complete a match", {"match_id": match_id})
        match = self.get_match(match_id)
        validate_transition(match.status, status)
        match.status = status
        if status == IN_PROGRESS:
            match.started_at = match.started_at or datetime.utcnow()
        self.session.flush()
        logger.info("Match %s is now %s", match.id, status)
        return match

    # =========================================================================
    # Resolution
    # =========================================================================

    def finalize(self, match: Match) -> Optional[SparringDecision]:
        """
        Resolve the match early if a decisive condition holds.

        Called after every score submission. Returns the decision when the
        match was completed, None while the bout goes on.
        """
        if match.status not in (SCHEDULED, IN_PROGRESS) or len(match.participants) != 2:
            return None
        first, second = self.compute_totals(match)
        if decisive_rule(first, second, senshu_gap=self.senshu_gap) is None:
            return None
        decision = decide_winner(first, second, senshu_gap=self.senshu_gap)
        self._complete(match, decision)
        return decision

    def resolve_winner(self, match_id: int) -> Match:
        """
        Decide and record the winner of a match.

        Byes complete for their only participant. Resolving a match that is
        already Completed returns it unchanged.

        Raises:
            NotFoundError: Unknown match
            ValidationError: Match is Cancelled or Postponed, or has no participants
        """
        match = self.get_match(match_id)
        if match.status == COMPLETED:
            return match
        if match.status in (CANCELLED, POSTPONED):
            raise ValidationError(
                f"Cannot resolve a {match.status} match",
                {"match_id": match.id, "status": match.status},
            )
        if not match.participants:
            raise ValidationError("Match has no participants", {"match_id": match.id})

        if match.is_bye:
            complete_bye(match)
            self.session.flush()
            self._after_completion(match)
            return match

        first, second = self.compute_totals(match)
        decision = decide_winner(first, second, senshu_gap=self.senshu_gap)
        self._complete(match, decision)
        return match

    def _complete(self, match: Match, decision: SparringDecision) -> None:
        for participant in match.participants:
            if participant.competitor_id == decision.winner_id:
                participant.result = RESULT_WIN
            elif decision.rule == RULE_DISQUALIFICATION:
                participant.result = RESULT_DISQUALIFIED
            else:
                participant.result = RESULT_LOSS

        validate_transition(match.status, COMPLETED)
        match.status = COMPLETED
        match.winner_id = decision.winner_id
        match.decided_by = decision.rule
        match.completed_at = datetime.utcnow()
        self.session.flush()

        logger.info(
            "Match %s (%s) won by competitor %s via %s (%s-%s)",
            match.id, match.level, decision.winner_id, decision.rule,
            decision.winner_total, decision.loser_total,
        )
        self._after_completion(match, decision)

    def _after_completion(self, match: Match, decision: Optional[SparringDecision] = None) -> None:
        payload = {
            "unit_kind": "match",
            "unit_id": match.id,
            "category_id": match.category_id,
            "level": match.level,
            "winner_id": match.winner_id,
            "decided_by": match.decided_by,
        }
        if decision is not None:
            payload["totals"] = {
                "winner": str(decision.winner_total),
                "loser": str(decision.loser_total),
            }
        safe_publish(self.publisher, UNIT_COMPLETED, payload)
        self.progression.schedule(self.session, match.category_id, match.level)

    # =========================================================================
    # Side levels and scoreboard
    # =========================================================================

    def create_bronze_match(self, category_id: int, competitor_ids: list[int]) -> Match:
        """
        Create a Bronze-level match between two Semifinal losers.

        Bronze matches are never produced by progression and never feed a
        later level.
        """
        ids = list(dict.fromkeys(competitor_ids))
        if len(ids) != 2:
            raise ValidationError("A bronze match needs two different competitors", {"competitor_ids": competitor_ids})

        semifinal_losers = {
            p.competitor_id
            for m in self.session.query(Match).filter(
                Match.category_id == category_id, Match.level == SEMIFINAL, Match.status == COMPLETED
            )
            for p in m.participants
            if p.competitor_id != m.winner_id
        }
        not_eligible = [c for c in ids if c not in semifinal_losers]
        if not_eligible:
            raise ValidationError(
                "Bronze matches are contested by Semifinal losers",
                {"category_id": category_id, "not_eligible": not_eligible},
            )

        position = (
            self.session.query(Match)
            .filter(Match.category_id == category_id, Match.level == BRONZE)
            .count()
        ) + 1
        match = Match(category_id=category_id, level=BRONZE, position=position, status=SCHEDULED)
        for slot, competitor_id in enumerate(ids, start=1):
            match.participants.append(MatchParticipant(competitor_id=competitor_id, slot=slot))
        attach_panel(match, DbJudgePanel(self.session).confirmed_judges(category_id))
        self.session.add(match)
        self.session.flush()
        logger.info("Created bronze match %s for category %s: %s", match.id, category_id, ids)
        return match

    def scoreboard(self, category_id: int, level: str) -> list[dict]:
        """Matches of a level in bracket order with live or final totals."""
        matches = (
            self.session.query(Match)
            .filter(Match.category_id == category_id, Match.level == level)
            .order_by(Match.position)
            .all()
        )
        rows = []
        for match in matches:
            totals = {}
            if len(match.participants) == 2:
                first, second = self.compute_totals(match)
                totals = {first.competitor_id: first, second.competitor_id: second}
            rows.append({
                "match_id": match.id,
                "position": match.position,
                "status": match.status,
                "winner_id": match.winner_id,
                "decided_by": match.decided_by,
                "participants": [
                    {
                        "competitor_id": p.competitor_id,
                        "slot": p.slot,
                        "result": p.result,
                        "total": str(totals[p.competitor_id].total) if p.competitor_id in totals else None,
                    }
                    for p in match.participants
                ],
            })
        return rows
