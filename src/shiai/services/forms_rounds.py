"""
Forms round engine - builds forms rounds and hands out final placements.

A forms category runs up to three rounds:

    First Round -> Second Round (Final 8) -> Third Round (Final 4)

Rounds are created explicitly by the organizer (or by advance_round from
the previous round's ranking); they are never chained automatically.
Recreating a round with replace=True is destructive: every performance and
judge score of that round is deleted first.

Placements are only handed out in the last round:

- Exactly 4 competitors: places 1, 2, 3, 3 (shared bronze)
- Any other count: sequential places, tied scores share a place, and
  once place 3 is reached the current and the next competitor both get 3
  and enumeration stops
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiai.collaborators import DbRegistrationGateway, RegistrationGateway
from shiai.db.models import Category, LevelGeneration, Performance, PerformanceScore
from shiai.errors import ConflictError, NotFoundError, ValidationError
from shiai.events import LEVEL_GENERATED, EventPublisher, NullPublisher, safe_publish
from shiai.levels import (
    FORMS,
    FORMS_ROUND_CAPACITY,
    get_next_level,
    is_known_level,
    is_terminal_level,
)
from shiai.unit_statuses import CANCELLED, IN_PROGRESS, SCHEDULED, validate_transition

logger = logging.getLogger(__name__)


@dataclass
class ScoreboardRow:
    """One line of a forms round scoreboard."""

    performance_id: int
    competitor_id: int
    competitor_name: str
    performance_order: int
    status: str
    final_score: Optional[Decimal]
    place: Optional[int]

    def to_dict(self) -> dict:
        return {
            "performance_id": self.performance_id,
            "competitor_id": self.competitor_id,
            "competitor_name": self.competitor_name,
            "performance_order": self.performance_order,
            "status": self.status,
            "final_score": str(self.final_score) if self.final_score is not None else None,
            "place": self.place,
        }


def ranking_key(performance: Performance) -> tuple:
    """Sort key: score descending, unscored last, then running order."""
    score = performance.final_score
    return (score is None, -(score or 0), performance.performance_order)


def placements_for(ranked: Sequence[Optional[Decimal]]) -> list[Optional[int]]:
    """
    Places for scores already sorted best first.

    Examples:
        >>> placements_for([28, 27, 26, 25])
        [1, 2, 3, 3]
        >>> placements_for([28, 27, 26, 25, 24])
        [1, 2, 3, 3, None]
        >>> placements_for([28, 28, 26])
        [1, 1, 2]
    """
    count = len(ranked)
    if count == 4:
        return [1, 2, 3, 3]

    places: list[Optional[int]] = [None] * count
    current = 1
    for i in range(count):
        if current == 3:
            places[i] = 3
            if i + 1 < count:
                places[i + 1] = 3
            break

        places[i] = current
        nxt = ranked[i + 1] if i + 1 < count else None
        tied = ranked[i] is not None and nxt is not None and ranked[i] == nxt
        if not tied:
            current += 1
    return places


class FormsRoundEngine:
    """
    Creates forms rounds, runs their performances and assigns placements.

    Args:
        session: Database session (caller owns the transaction)
        registrations: Eligibility source (defaults to the registrations table)
        publisher: Receives level.generated when a round is created
    """

    def __init__(
        self,
        session: Session,
        registrations: Optional[RegistrationGateway] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.session = session
        self.registrations = registrations or DbRegistrationGateway(session)
        self.publisher = publisher or NullPublisher()

    # =========================================================================
    # Rounds
    # =========================================================================

    def create_round(
        self,
        category_id: int,
        level: str,
        competitor_ids: Sequence[int],
        *,
        replace: bool = False,
    ) -> list[Performance]:
        """
        Create one performance per competitor, in the given running order.

        Args:
            category_id: Forms category
            level: Forms round name
            competitor_ids: Competitors in running order
            replace: Delete an existing round (performances and scores) first

        Raises:
            NotFoundError: Unknown category
            ValidationError: Wrong discipline, unknown level, duplicates, or
                             competitors without an approved and paid registration
            ConflictError: The round exists and replace is False
        """
        self._get_forms_category(category_id)
        if not is_known_level(FORMS, level):
            raise ValidationError(f"Unknown forms round '{level}'", {"level": level})

        ids = list(competitor_ids)
        if not ids:
            raise ValidationError("A round needs at least one competitor", {"level": level})
        duplicates = sorted({c for c in ids if ids.count(c) > 1})
        if duplicates:
            raise ValidationError("Competitors listed more than once", {"duplicates": duplicates})

        self._check_eligibility(category_id, ids)

        if replace:
            deleted = self.delete_round(category_id, level)
            if deleted:
                logger.warning(
                    "Replacing %s for category %s: discarded %d performances and their scores",
                    level, category_id, deleted,
                )
        elif self._round_exists(category_id, level):
            raise ConflictError(
                f"{level} already exists for category {category_id}",
                {"category_id": category_id, "level": level},
            )

        try:
            with self.session.begin_nested():
                self.session.add(LevelGeneration(category_id=category_id, level=level, source="round"))
                self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"{level} is being created concurrently for category {category_id}",
                {"category_id": category_id, "level": level},
            ) from e

        performances = [
            Performance(
                category_id=category_id,
                competitor_id=competitor_id,
                level=level,
                performance_order=order,
                status=SCHEDULED,
            )
            for order, competitor_id in enumerate(ids, start=1)
        ]
        self.session.add_all(performances)
        self.session.flush()

        logger.info("Created %s for category %s with %d performances", level, category_id, len(performances))
        safe_publish(self.publisher, LEVEL_GENERATED, {
            "category_id": category_id,
            "level": level,
            "performance_ids": [p.id for p in performances],
        })
        return performances

    def delete_round(self, category_id: int, level: str) -> int:
        """
        Delete a round's performances and every score submitted for them.

        Returns:
            Number of performances deleted
        """
        performance_ids = [
            pid for (pid,) in self.session.query(Performance.id)
            .filter(Performance.category_id == category_id, Performance.level == level)
            .all()
        ]
        if performance_ids:
            self.session.query(PerformanceScore).filter(
                PerformanceScore.performance_id.in_(performance_ids)
            ).delete(synchronize_session="fetch")
            self.session.query(Performance).filter(
                Performance.id.in_(performance_ids)
            ).delete(synchronize_session="fetch")
        self.session.query(LevelGeneration).filter_by(
            category_id=category_id, level=level
        ).delete(synchronize_session="fetch")
        self.session.flush()
        self.session.expire_all()
        return len(performance_ids)

    def get_round(self, category_id: int, level: str) -> list[Performance]:
        """Performances of a round in running order."""
        return (
            self.session.query(Performance)
            .filter(Performance.category_id == category_id, Performance.level == level)
            .order_by(Performance.performance_order)
            .all()
        )

    def advance_round(self, category_id: int, from_level: str) -> list[Performance]:
        """
        Create the next round from the best of ``from_level``.

        The next round takes its capacity (8, then 4) of the top-ranked
        competitors. The lowest qualifier performs first.

        Raises:
            ValidationError: from_level is the last round, or still has
                             performances without a final score
            ConflictError: The next round already exists
        """
        self._get_forms_category(category_id)
        next_level = get_next_level(FORMS, from_level)
        if next_level is None:
            raise ValidationError(f"No round follows '{from_level}'", {"level": from_level})

        ranked = self._ranked(category_id, from_level)
        if not ranked:
            raise NotFoundError(
                f"No performances in {from_level} for category {category_id}",
                {"category_id": category_id, "level": from_level},
            )
        unscored = [p.id for p in ranked if p.final_score is None]
        if unscored:
            raise ValidationError(
                f"{from_level} still has performances without a final score",
                {"pending_performance_ids": unscored},
            )

        qualified = self.qualifiers(category_id, from_level, FORMS_ROUND_CAPACITY[next_level])
        return self.create_round(category_id, next_level, list(reversed(qualified)))

    def qualifiers(self, category_id: int, level: str, count: Optional[int] = None) -> list[int]:
        """Competitor ids ranked best first, optionally cut to ``count``."""
        ranked = self._ranked(category_id, level)
        ids = [p.competitor_id for p in ranked]
        return ids if count is None else ids[:count]

    # =========================================================================
    # Performances
    # =========================================================================

    def start_performance(self, performance_id: int) -> Performance:
        performance = self._get_performance(performance_id)
        validate_transition(performance.status, IN_PROGRESS)
        performance.status = IN_PROGRESS
        performance.started_at = performance.started_at or datetime.utcnow()
        self.session.flush()
        return performance

    def set_status(self, performance_id: int, status: str) -> Performance:
        performance = self._get_performance(performance_id)
        validate_transition(performance.status, status)
        performance.status = status
        self.session.flush()
        logger.info("Performance %s is now %s", performance.id, status)
        return performance

    # =========================================================================
    # Placements and scoreboard
    # =========================================================================

    def assign_placements(self, category_id: int, level: str) -> list[Performance]:
        """
        Assign places in the last forms round.

        Returns:
            Performances ranked best first, with place set

        Raises:
            ValidationError: level is not the last round, or a performance
                             has no final score yet
            NotFoundError: The round has no performances
        """
        self._get_forms_category(category_id)
        if not is_terminal_level(FORMS, level):
            raise ValidationError(
                f"Placements are only assigned in the last round, not '{level}'",
                {"level": level},
            )

        ranked = self._ranked(category_id, level)
        if not ranked:
            raise NotFoundError(
                f"No performances in {level} for category {category_id}",
                {"category_id": category_id, "level": level},
            )
        unscored = [p.id for p in ranked if p.final_score is None]
        if unscored:
            raise ValidationError(
                "Every performance needs a final score before placements",
                {"pending_performance_ids": unscored},
            )

        for performance in self.get_round(category_id, level):
            performance.place = None
        for performance, place in zip(ranked, placements_for([p.final_score for p in ranked])):
            performance.place = place
        self.session.flush()

        logger.info(
            "Assigned placements for category %s: %s",
            category_id, [(p.competitor_id, p.place) for p in ranked],
        )
        return ranked

    def scoreboard(self, category_id: int, level: str) -> list[ScoreboardRow]:
        """Round standings, best score first."""
        return [
            ScoreboardRow(
                performance_id=p.id,
                competitor_id=p.competitor_id,
                competitor_name=p.competitor.name,
                performance_order=p.performance_order,
                status=p.status,
                final_score=p.final_score,
                place=p.place,
            )
            for p in self._ranked(category_id, level, include_cancelled=True)
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ranked(self, category_id: int, level: str, include_cancelled: bool = False) -> list[Performance]:
        performances = self.get_round(category_id, level)
        if not include_cancelled:
            performances = [p for p in performances if p.status != CANCELLED]
        return sorted(performances, key=ranking_key)

    def _round_exists(self, category_id: int, level: str) -> bool:
        if self.session.query(LevelGeneration.id).filter_by(category_id=category_id, level=level).first():
            return True
        return (
            self.session.query(Performance.id)
            .filter(Performance.category_id == category_id, Performance.level == level)
            .first()
            is not None
        )

    def _check_eligibility(self, category_id: int, competitor_ids: list[int]) -> None:
        eligibility = self.registrations.eligibility(category_id, competitor_ids)
        approved = [c for c in competitor_ids if eligibility[c].registered and eligibility[c].approved]
        paid = [c for c in approved if eligibility[c].paid]
        if len(paid) == len(competitor_ids):
            return

        missing = [
            {"competitor_id": c, "reason": eligibility[c].reason}
            for c in competitor_ids
            if not eligibility[c].is_eligible
        ]
        raise ValidationError(
            f"{len(missing)} of {len(competitor_ids)} competitors are not eligible",
            {
                "requested": len(competitor_ids),
                "approved": len(approved),
                "paid": len(paid),
                "missing": missing,
            },
        )

    def _get_forms_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found", {"category_id": category_id})
        if category.discipline != FORMS:
            raise ValidationError(
                "Forms rounds only apply to forms categories",
                {"category_id": category_id, "discipline": category.discipline},
            )
        return category

    def _get_performance(self, performance_id: int) -> Performance:
        performance = self.session.get(Performance, performance_id)
        if performance is None:
            raise NotFoundError(f"Performance {performance_id} not found", {"performance_id": performance_id})
        return performance
