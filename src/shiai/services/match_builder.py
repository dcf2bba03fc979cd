"""
Helpers shared by draw generation and bracket progression.

Both create sparring matches at a level from an ordered list of
competitors. Positions follow single-elimination bracket math: winners of
positions 2p-1 and 2p meet at position p of the next level, so pairing an
ordered winners list two at a time keeps the bracket shape.
"""

import logging
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from shiai.collaborators import PanelJudge
from shiai.db.models import Match, MatchJudge, MatchParticipant
from shiai.unit_statuses import COMPLETED, RESULT_WIN, SCHEDULED

logger = logging.getLogger(__name__)

DECIDED_BY_BYE = "bye"


def pair_entrants(competitor_ids: Sequence[int]) -> list[list[int]]:
    """
    Pair competitors in order. An odd competitor out gets a bye.

    Examples:
        >>> pair_entrants([1, 2, 3, 4])
        [[1, 2], [3, 4]]
        >>> pair_entrants([1, 2, 3])
        [[1, 2], [3]]
    """
    return [list(competitor_ids[i:i + 2]) for i in range(0, len(competitor_ids), 2)]


def attach_panel(match: Match, judges: Iterable[PanelJudge]) -> int:
    """
    Attach tatami judges to a match. A judge already on the match is skipped.

    Returns:
        Number of judges newly attached
    """
    present = {j.judge_id for j in match.judges}
    attached = 0
    for judge in judges:
        if judge.judge_id in present:
            continue
        match.judges.append(
            MatchJudge(judge_id=judge.judge_id, judge_role=judge.role, is_confirmed=True)
        )
        present.add(judge.judge_id)
        attached += 1
    return attached


def complete_bye(match: Match) -> None:
    """Complete a single-participant match, advancing its only competitor."""
    participant = match.participants[0]
    participant.result = RESULT_WIN
    match.winner_id = participant.competitor_id
    match.status = COMPLETED
    match.decided_by = DECIDED_BY_BYE
    match.completed_at = datetime.utcnow()


def build_level(
    session: Session,
    category_id: int,
    level: str,
    groups: Sequence[Sequence[int]],
    judges: Sequence[PanelJudge] = (),
) -> list[Match]:
    """
    Create one match per group at ``level`` and flush.

    Groups with a single competitor become byes and complete immediately.
    """
    matches = []
    for position, group in enumerate(groups, start=1):
        match = Match(category_id=category_id, level=level, position=position, status=SCHEDULED)
        for slot, competitor_id in enumerate(group, start=1):
            match.participants.append(MatchParticipant(competitor_id=competitor_id, slot=slot))
        attach_panel(match, judges)
        if len(group) == 1:
            complete_bye(match)
        session.add(match)
        matches.append(match)

    session.flush()
    byes = sum(1 for m in matches if m.decided_by == DECIDED_BY_BYE)
    logger.info(
        "Created %d matches at %s for category %s (%d byes, %d judges each)",
        len(matches), level, category_id, byes, len(judges),
    )
    return matches
