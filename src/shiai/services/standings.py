"""
Category standings (medal tables).

Sparring: the Final winner takes gold, the Final loser silver, and each
Bronze-level match winner takes a bronze (place 3).

Forms: places written by FormsRoundEngine.assign_placements in the last
round, with 1/2/3 mapped to gold/silver/bronze.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from shiai.db.models import Competitor, Match, Performance
from shiai.levels import BRONZE, FINAL, FORMS_PROGRESSION
from shiai.unit_statuses import COMPLETED

logger = logging.getLogger(__name__)

MEDALS = {1: "Gold", 2: "Silver", 3: "Bronze"}


@dataclass
class Standing:
    place: int
    competitor_id: int
    competitor_name: str
    medal: Optional[str]
    final_score: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "place": self.place,
            "competitor_id": self.competitor_id,
            "competitor_name": self.competitor_name,
            "medal": self.medal,
            "final_score": str(self.final_score) if self.final_score is not None else None,
        }


def _names(session: Session, competitor_ids: list[int]) -> dict[int, str]:
    if not competitor_ids:
        return {}
    rows = session.query(Competitor.id, Competitor.name).filter(Competitor.id.in_(competitor_ids)).all()
    return {cid: name for cid, name in rows}


def sparring_standings(session: Session, category_id: int) -> list[Standing]:
    """Medal standings for a sparring category. Empty until the Final is decided."""
    placed: list[tuple[int, int]] = []

    final = (
        session.query(Match)
        .filter(Match.category_id == category_id, Match.level == FINAL, Match.status == COMPLETED)
        .order_by(Match.position)
        .first()
    )
    if final is not None and final.winner_id is not None:
        placed.append((1, final.winner_id))
        for competitor_id in final.competitor_ids:
            if competitor_id != final.winner_id:
                placed.append((2, competitor_id))

    bronze_matches = (
        session.query(Match)
        .filter(Match.category_id == category_id, Match.level == BRONZE, Match.status == COMPLETED)
        .order_by(Match.position)
        .all()
    )
    for match in bronze_matches:
        if match.winner_id is not None:
            placed.append((3, match.winner_id))

    names = _names(session, [cid for _, cid in placed])
    return [
        Standing(place=place, competitor_id=cid, competitor_name=names.get(cid, ""), medal=MEDALS.get(place))
        for place, cid in placed
    ]


def forms_standings(session: Session, category_id: int) -> list[Standing]:
    """Placed competitors of a forms category's last round, best first."""
    performances = (
        session.query(Performance)
        .filter(
            Performance.category_id == category_id,
            Performance.level == FORMS_PROGRESSION[-1],
            Performance.place.isnot(None),
        )
        .order_by(Performance.place, Performance.final_score.desc(), Performance.performance_order)
        .all()
    )
    names = _names(session, [p.competitor_id for p in performances])
    return [
        Standing(
            place=p.place,
            competitor_id=p.competitor_id,
            competitor_name=names.get(p.competitor_id, ""),
            medal=MEDALS.get(p.place),
            final_score=p.final_score,
        )
        for p in performances
    ]
