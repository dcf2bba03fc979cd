"""
Bracket progression - creates the next sparring level once a level is done.

When every match at a level is Completed, the winners are paired in
bracket order into the next level of the fixed table:

    Preliminary -> Quarterfinal -> Semifinal -> Final

A preliminary round with more than eight matches is followed by another
preliminary round ("Preliminary 2", ...) so large brackets halve down to
a single Final. A Cancelled or Postponed match holds the level like any
other unfinished match; its competitors are never dropped.

Generation is idempotent. The first trigger to insert the
(category, level) row in level_generations creates the matches; every
later or concurrent trigger finds the row (or hits the unique constraint)
and returns 'already_exists' without writing anything.

Usage:
    from shiai.services.bracket_progression import BracketProgressionEngine

    with get_session() as session:
        outcome = BracketProgressionEngine(session).generate_next_level(category_id, "Semifinal")
        print(outcome.status)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiai.collaborators import DbJudgePanel, JudgePanel
from shiai.db.models import Category, LevelGeneration, Match
from shiai.errors import NotFoundError, ValidationError
from shiai.events import LEVEL_GENERATED, EventPublisher, NullPublisher, safe_publish
from shiai.levels import SPARRING, get_next_level, is_known_level, next_sparring_level
from shiai.services.match_builder import build_level, pair_entrants
from shiai.unit_statuses import COMPLETED

logger = logging.getLogger(__name__)

CREATED = "created"
ALREADY_EXISTS = "already_exists"
INCOMPLETE = "incomplete"
BLOCKED = "blocked"
TERMINAL = "terminal"
DECIDED = "decided"


@dataclass
class ProgressionOutcome:
    """Result of one generate_next_level call."""

    status: str
    category_id: int
    from_level: str
    level: Optional[str] = None
    matches: list[Match] = field(default_factory=list)
    reason: Optional[str] = None
    pending_match_ids: list[int] = field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.status == CREATED

    def summary(self) -> str:
        target = self.level or "-"
        text = f"{self.from_level} -> {target}: {self.status}"
        if self.matches:
            text += f" ({len(self.matches)} matches)"
        if self.reason:
            text += f" [{self.reason}]"
        return text

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "category_id": self.category_id,
            "from_level": self.from_level,
            "level": self.level,
            "match_ids": [m.id for m in self.matches],
            "reason": self.reason,
            "pending_match_ids": self.pending_match_ids,
        }


class BracketProgressionEngine:
    """
    Advances a sparring category one level at a time.

    Args:
        session: Database session (caller owns the transaction)
        judge_panel: Source of confirmed judges to carry onto new matches
        publisher: Receives a level.generated event per created level
    """

    def __init__(
        self,
        session: Session,
        judge_panel: Optional[JudgePanel] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.session = session
        self.judge_panel = judge_panel or DbJudgePanel(session)
        self.publisher = publisher or NullPublisher()

    def generate_next_level(self, category_id: int, from_level: str) -> ProgressionOutcome:
        """
        Create the level after ``from_level`` if ``from_level`` is finished.

        Returns:
            ProgressionOutcome with status:
            - created: next level built from the winners
            - already_exists: next level was already built (no-op)
            - incomplete: some match at from_level is not Completed yet
                          (Cancelled and Postponed matches included)
            - blocked: a Completed match has no winner
            - terminal: from_level is the last level, or a side level
            - decided: from_level produced a single winner, nothing to pair

        Raises:
            NotFoundError: Unknown category, or no matches at from_level
            ValidationError: Not a sparring category, or unknown level name
        """
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found", {"category_id": category_id})
        if category.discipline != SPARRING:
            raise ValidationError(
                "Bracket progression only applies to sparring categories",
                {"category_id": category_id, "discipline": category.discipline},
            )
        if not is_known_level(SPARRING, from_level):
            raise ValidationError(f"Unknown sparring level '{from_level}'", {"level": from_level})

        if get_next_level(SPARRING, from_level) is None:
            return ProgressionOutcome(TERMINAL, category_id, from_level, reason="no level follows")

        matches = self._matches_at(category_id, from_level)
        if not matches:
            raise NotFoundError(
                f"No matches at {from_level} for category {category_id}",
                {"category_id": category_id, "level": from_level},
            )

        next_level = next_sparring_level(from_level, len(matches))
        if self._level_exists(category_id, next_level):
            logger.debug("Category %s already has %s", category_id, next_level)
            return ProgressionOutcome(ALREADY_EXISTS, category_id, from_level, next_level)

        pending = [m.id for m in matches if m.status != COMPLETED]
        if pending:
            return ProgressionOutcome(
                INCOMPLETE, category_id, from_level, next_level,
                reason=f"{len(pending)} matches not completed",
                pending_match_ids=pending,
            )

        undecided = [m.id for m in matches if m.winner_id is None]
        if undecided:
            logger.warning(
                "Category %s %s has completed matches without a winner: %s",
                category_id, from_level, undecided,
            )
            return ProgressionOutcome(
                BLOCKED, category_id, from_level, next_level,
                reason="completed match without a winner",
                pending_match_ids=undecided,
            )

        winners = [m.winner_id for m in matches]
        if len(winners) < 2:
            return ProgressionOutcome(
                DECIDED, category_id, from_level, reason="single winner remains"
            )

        if not self._claim_level(category_id, next_level):
            return ProgressionOutcome(ALREADY_EXISTS, category_id, from_level, next_level)

        created = build_level(
            self.session,
            category_id,
            next_level,
            pair_entrants(winners),
            self.judge_panel.confirmed_judges(category_id),
        )

        logger.info(
            "Advanced category %s from %s to %s with %d winners",
            category_id, from_level, next_level, len(winners),
        )
        safe_publish(self.publisher, LEVEL_GENERATED, {
            "category_id": category_id,
            "level": next_level,
            "from_level": from_level,
            "match_ids": [m.id for m in created],
        })
        return ProgressionOutcome(CREATED, category_id, from_level, next_level, matches=created)

    def _matches_at(self, category_id: int, level: str) -> list[Match]:
        return (
            self.session.query(Match)
            .filter(Match.category_id == category_id, Match.level == level)
            .order_by(Match.position)
            .all()
        )

    def _level_exists(self, category_id: int, level: str) -> bool:
        generated = (
            self.session.query(LevelGeneration.id)
            .filter_by(category_id=category_id, level=level)
            .first()
        )
        if generated is not None:
            return True
        return (
            self.session.query(Match.id)
            .filter(Match.category_id == category_id, Match.level == level)
            .first()
            is not None
        )

    def _claim_level(self, category_id: int, level: str) -> bool:
        """Insert the level_generations row. False if another trigger got there first."""
        try:
            with self.session.begin_nested():
                self.session.add(
                    LevelGeneration(category_id=category_id, level=level, source="progression")
                )
                self.session.flush()
        except IntegrityError:
            logger.info("Lost race to generate %s for category %s", level, category_id)
            return False
        return True
