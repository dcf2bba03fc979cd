"""
Draw generation - builds a sparring category's opening bracket.

Two stages:

1. Proposal. The seeding assistant (if enabled) proposes pairings. Its
   output is untrusted.
2. Verification. repair_proposal checks that every eligible competitor
   sits in exactly one slot: unknown and repeated ids are dropped, missing
   competitors are inserted into an open second slot or into a new match,
   and leftover byes are paired up so at most one remains.

If the assistant fails or its proposal is unusable, a random bracket from
build_fallback_bracket is used instead. Only the opening level is stored;
later levels are created by bracket progression as results come in.

Generating draws always replaces the category's existing bracket: every
match, participant, judge attachment and score is deleted first.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiai.collaborators import (
    BracketProposal,
    DbJudgePanel,
    DbRegistrationGateway,
    JudgePanel,
    ProposedMatch,
    RegistrationGateway,
    SeedingAssistant,
    SeedingEntrant,
)
from shiai.config import settings
from shiai.db.models import (
    Category,
    Competitor,
    LevelGeneration,
    Match,
    MatchJudge,
    MatchParticipant,
    MatchScore,
)
from shiai.errors import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from shiai.events import DRAWS_GENERATED, EventPublisher, NullPublisher, safe_publish
from shiai.levels import SPARRING, level_names_for_rounds, rounds_for_entrants
from shiai.services.match_builder import DECIDED_BY_BYE, build_level, pair_entrants

logger = logging.getLogger(__name__)

SOURCE_ASSISTANT = "assistant"
SOURCE_FALLBACK = "fallback"


def opening_level_for(entrant_count: int) -> str:
    """Name of the first level of a bracket for ``entrant_count`` competitors."""
    return level_names_for_rounds(rounds_for_entrants(entrant_count))[0]


@dataclass
class RepairReport:
    """What repair_proposal changed."""

    proposal: Optional[BracketProposal]
    dropped_ids: list[int] = field(default_factory=list)
    inserted_ids: list[int] = field(default_factory=list)
    merged_byes: int = 0
    discarded_matches: int = 0

    @property
    def usable(self) -> bool:
        return self.proposal is not None

    @property
    def changed(self) -> bool:
        return bool(self.dropped_ids or self.inserted_ids or self.merged_byes or self.discarded_matches)


def repair_proposal(proposal: BracketProposal, competitor_ids: Sequence[int]) -> RepairReport:
    """
    Make a proposal place every competitor in exactly one opening slot.

    Only matches from the proposal's first round are kept, and they are
    renamed to the opening level for the entrant count. A proposal with no
    usable first-round match is rejected (report.proposal is None).
    """
    eligible = list(competitor_ids)
    eligible_set = set(eligible)
    report = RepairReport(proposal=None)

    if not proposal.matches:
        return report

    first_round = min(m.round_number for m in proposal.matches)
    opening = [m for m in proposal.matches if m.round_number == first_round]
    report.discarded_matches = len(proposal.matches) - len(opening)

    seen: set[int] = set()
    groups: list[list[int]] = []
    for proposed in opening:
        group = []
        for competitor_id in (proposed.participant1_id, proposed.participant2_id):
            if competitor_id is None:
                continue
            if competitor_id not in eligible_set or competitor_id in seen:
                report.dropped_ids.append(competitor_id)
                continue
            seen.add(competitor_id)
            group.append(competitor_id)
        if group:
            groups.append(group)
        else:
            report.discarded_matches += 1

    if not groups:
        return report

    for competitor_id in eligible:
        if competitor_id in seen:
            continue
        open_group = next((g for g in groups if len(g) == 1), None)
        if open_group is not None:
            open_group.append(competitor_id)
        else:
            groups.append([competitor_id])
        seen.add(competitor_id)
        report.inserted_ids.append(competitor_id)

    # Pair up surplus byes so at most one remains
    singles = [g for g in groups if len(g) == 1]
    while len(singles) >= 2:
        keep, absorbed = singles[0], singles[1]
        keep.append(absorbed[0])
        groups.remove(absorbed)
        singles = singles[2:]
        report.merged_byes += 1

    level = opening_level_for(len(eligible))
    report.proposal = BracketProposal(
        matches=[
            ProposedMatch(
                level=level,
                participant1_id=group[0],
                participant2_id=group[1] if len(group) > 1 else None,
                match_number=number,
            )
            for number, group in enumerate(groups, start=1)
        ],
        total_rounds=rounds_for_entrants(len(eligible)),
        bracket_type=proposal.bracket_type,
        explanation=proposal.explanation,
    )
    return report


def build_fallback_bracket(
    competitor_ids: Sequence[int],
    rng: Optional[random.Random] = None,
) -> BracketProposal:
    """
    Random single-elimination opening level.

    Competitors are shuffled and paired in order; an odd one out gets a bye.
    """
    shuffled = list(competitor_ids)
    (rng or random.Random()).shuffle(shuffled)
    level = opening_level_for(len(shuffled))
    return BracketProposal(
        matches=[
            ProposedMatch(
                level=level,
                participant1_id=group[0],
                participant2_id=group[1] if len(group) > 1 else None,
                match_number=number,
            )
            for number, group in enumerate(pair_entrants(shuffled), start=1)
        ],
        total_rounds=rounds_for_entrants(len(shuffled)),
        explanation="Random draw",
    )


@dataclass
class Bracket:
    """A stored opening level plus the levels it is planned to run through."""

    category_id: int
    source: str
    planned_levels: list[str]
    matches: list[Match]
    entrant_count: int
    explanation: Optional[str] = None
    repair: Optional[RepairReport] = None

    @property
    def opening_level(self) -> str:
        return self.planned_levels[0]

    @property
    def bye_count(self) -> int:
        return sum(1 for m in self.matches if m.decided_by == DECIDED_BY_BYE)

    def summary(self) -> str:
        return (
            f"Draw for category {self.category_id} ({self.source}): "
            f"{self.entrant_count} entrants, {len(self.matches)} matches at {self.opening_level}, "
            f"{self.bye_count} byes, {len(self.planned_levels)} levels"
        )

    def to_dict(self) -> dict:
        return {
            "category_id": self.category_id,
            "source": self.source,
            "planned_levels": self.planned_levels,
            "entrant_count": self.entrant_count,
            "explanation": self.explanation,
            "matches": [
                {
                    "match_id": m.id,
                    "level": m.level,
                    "position": m.position,
                    "status": m.status,
                    "competitor_ids": m.competitor_ids,
                }
                for m in self.matches
            ],
        }


class DrawGenerator:
    """
    Generates sparring draws.

    Args:
        session: Database session (caller owns the transaction)
        registrations: Source of approved and paid competitors
        judge_panel: Confirmed judges to attach to every match
        assistant: Optional seeding assistant
        publisher: Receives draws.generated
        rng: Random source for the fallback bracket
        use_assistant: Overrides settings.seeding_assistant_enabled
    """

    def __init__(
        self,
        session: Session,
        registrations: Optional[RegistrationGateway] = None,
        judge_panel: Optional[JudgePanel] = None,
        assistant: Optional[SeedingAssistant] = None,
        publisher: Optional[EventPublisher] = None,
        rng: Optional[random.Random] = None,
        use_assistant: Optional[bool] = None,
    ):
        self.session = session
        self.registrations = registrations or DbRegistrationGateway(session)
        self.judge_panel = judge_panel or DbJudgePanel(session)
        self.assistant = assistant
        self.publisher = publisher or NullPublisher()
        self.rng = rng
        self.use_assistant = settings.seeding_assistant_enabled if use_assistant is None else use_assistant

    def generate_draws(self, category_id: int) -> Bracket:
        """
        Replace the category's bracket with a new opening level.

        Raises:
            NotFoundError: Unknown category
            ValidationError: Not a sparring category, or fewer than 2 eligible competitors
            ConflictError: Another draw for the category is being written concurrently
        """
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found", {"category_id": category_id})
        if category.discipline != SPARRING:
            raise ValidationError(
                "Draws only apply to sparring categories",
                {"category_id": category_id, "discipline": category.discipline},
            )

        competitor_ids = self.registrations.eligible_competitor_ids(category_id)
        if len(competitor_ids) < 2:
            raise ValidationError(
                "A draw needs at least 2 approved and paid competitors",
                {"category_id": category_id, "eligible": len(competitor_ids)},
            )

        proposal, source, repair = self._propose(category, competitor_ids)

        removed = self.clear_bracket(category_id)
        if removed:
            logger.warning("Replacing bracket for category %s: deleted %d matches", category_id, removed)

        opening_level = opening_level_for(len(competitor_ids))
        try:
            with self.session.begin_nested():
                self.session.add(
                    LevelGeneration(category_id=category_id, level=opening_level, source="draw")
                )
                self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"A draw for category {category_id} is being generated concurrently",
                {"category_id": category_id},
            ) from e

        groups = [m.competitor_ids for m in proposal.matches]
        matches = build_level(
            self.session,
            category_id,
            opening_level,
            groups,
            self.judge_panel.confirmed_judges(category_id),
        )

        bracket = Bracket(
            category_id=category_id,
            source=source,
            planned_levels=level_names_for_rounds(rounds_for_entrants(len(competitor_ids))),
            matches=matches,
            entrant_count=len(competitor_ids),
            explanation=proposal.explanation,
            repair=repair,
        )
        logger.info(bracket.summary())
        safe_publish(self.publisher, DRAWS_GENERATED, {
            "category_id": category_id,
            "source": source,
            "level": opening_level,
            "match_ids": [m.id for m in matches],
        })
        return bracket

    def clear_bracket(self, category_id: int) -> int:
        """Delete every match of a category with its participants, judges and scores."""
        match_ids = [
            mid for (mid,) in self.session.query(Match.id).filter(Match.category_id == category_id).all()
        ]
        if match_ids:
            for model in (MatchScore, MatchJudge, MatchParticipant):
                self.session.query(model).filter(
                    model.match_id.in_(match_ids)
                ).delete(synchronize_session="fetch")
            self.session.query(Match).filter(Match.id.in_(match_ids)).delete(synchronize_session="fetch")
        self.session.query(LevelGeneration).filter(
            LevelGeneration.category_id == category_id
        ).delete(synchronize_session="fetch")
        self.session.flush()
        self.session.expire_all()
        return len(match_ids)

    def _propose(
        self, category: Category, competitor_ids: list[int]
    ) -> tuple[BracketProposal, str, Optional[RepairReport]]:
        if self.use_assistant and self.assistant is not None:
            competitors = (
                self.session.query(Competitor).filter(Competitor.id.in_(competitor_ids)).all()
            )
            by_id = {c.id: c for c in competitors}
            entrants = [
                SeedingEntrant.from_competitor(by_id[c]) if c in by_id else SeedingEntrant(c, f"#{c}")
                for c in competitor_ids
            ]
            try:
                raw = self.assistant.propose(category.name, entrants)
            except ExternalServiceError as e:
                logger.warning("Seeding assistant failed for category %s, using random draw: %s", category.id, e)
            except Exception:
                # Assistant ports other than Gemini may raise anything
                logger.exception("Seeding assistant raised for category %s, using random draw", category.id)
            else:
                report = repair_proposal(raw, competitor_ids)
                if report.usable:
                    if report.changed:
                        logger.info(
                            "Repaired assistant proposal for category %s: dropped %s, inserted %s, merged %d byes",
                            category.id, report.dropped_ids, report.inserted_ids, report.merged_byes,
                        )
                    return report.proposal, SOURCE_ASSISTANT, report
                logger.warning("Seeding assistant proposal for category %s is unusable, using random draw", category.id)

        return build_fallback_bracket(competitor_ids, self.rng), SOURCE_FALLBACK, None
