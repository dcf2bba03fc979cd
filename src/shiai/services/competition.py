"""
Competition service - one entry point over every engine.

Web handlers and scripts build a CompetitionService per session and call
it instead of wiring the engines themselves. Operations dispatch on the
category's discipline where forms and sparring differ.
"""

import logging
import random
from typing import Any, Optional, Sequence

from sqlalchemy.orm import Session

from shiai.collaborators import (
    DbJudgePanel,
    DbRegistrationGateway,
    JudgePanel,
    RegistrationGateway,
    SeedingAssistant,
)
from shiai.config import Settings, settings as default_settings
from shiai.db.models import Category, Match, Performance
from shiai.errors import NotFoundError, ValidationError
from shiai.events import EventPublisher, NullPublisher
from shiai.levels import FORMS, SPARRING, is_known_level
from shiai.services.bracket_progression import BracketProgressionEngine, ProgressionOutcome
from shiai.services.draw_generation import Bracket, DrawGenerator
from shiai.services.forms_rounds import FormsRoundEngine
from shiai.services.score_aggregator import ScoreAggregator, ScoreReceipt, UnitResult
from shiai.services.sparring_matches import SparringMatchEngine
from shiai.services.standings import Standing, forms_standings, sparring_standings
from shiai.tasks.progression import ProgressionTrigger

logger = logging.getLogger(__name__)


class CompetitionService:
    """
    Facade over the score aggregator, forms, sparring, progression and draw engines.

    Args:
        session: Database session (caller commits)
        registrations: Eligibility source
        judge_panel: Tatami panel source
        seeding_assistant: Optional assistant for draws
        publisher: Event publisher shared by every engine
        progression: Trigger used when matches complete
        rules: Scoring and seeding settings
        rng: Random source for fallback draws
    """

    def __init__(
        self,
        session: Session,
        registrations: Optional[RegistrationGateway] = None,
        judge_panel: Optional[JudgePanel] = None,
        seeding_assistant: Optional[SeedingAssistant] = None,
        publisher: Optional[EventPublisher] = None,
        progression: Optional[ProgressionTrigger] = None,
        rules: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.rules = rules or default_settings
        self.publisher = publisher or NullPublisher()
        self.registrations = registrations or DbRegistrationGateway(session)
        self.judge_panel = judge_panel or DbJudgePanel(session)

        self.matches = SparringMatchEngine(
            session,
            publisher=self.publisher,
            progression=progression,
            senshu_gap=self.rules.sparring_senshu_gap,
        )
        self.scores = ScoreAggregator(
            session,
            judge_panel=self.judge_panel,
            publisher=self.publisher,
            match_engine=self.matches,
            rules=self.rules,
        )
        self.forms = FormsRoundEngine(session, registrations=self.registrations, publisher=self.publisher)
        self.progression = BracketProgressionEngine(
            session, judge_panel=self.judge_panel, publisher=self.publisher
        )
        self.draws = DrawGenerator(
            session,
            registrations=self.registrations,
            judge_panel=self.judge_panel,
            assistant=seeding_assistant,
            publisher=self.publisher,
            rng=rng,
            use_assistant=self.rules.seeding_assistant_enabled,
        )

    # =========================================================================
    # Scores and results
    # =========================================================================

    def submit_score(
        self, judge_id: int, unit_kind: str, unit_id: int, competitor_id: int, value: Any
    ) -> ScoreReceipt:
        return self.scores.submit(judge_id, unit_kind, unit_id, competitor_id, value)

    def get_result(self, unit_kind: str, unit_id: int) -> UnitResult:
        return self.scores.get_result(unit_kind, unit_id)

    def resolve_match(self, match_id: int) -> Match:
        return self.matches.resolve_winner(match_id)

    # =========================================================================
    # Levels
    # =========================================================================

    def create_round(
        self, category_id: int, level: str, competitor_ids: Sequence[int], *, replace: bool = False
    ) -> list[Performance]:
        return self.forms.create_round(category_id, level, competitor_ids, replace=replace)

    def generate_draws(self, category_id: int) -> Bracket:
        return self.draws.generate_draws(category_id)

    def generate_next_level(self, category_id: int, from_level: str) -> ProgressionOutcome:
        """
        Build the level after ``from_level``.

        Sparring categories advance through bracket progression. Forms
        categories create the next round from the ranking of the previous one.
        """
        category = self.get_category(category_id)
        if category.discipline == SPARRING:
            return self.progression.generate_next_level(category_id, from_level)

        performances = self.forms.advance_round(category_id, from_level)
        return ProgressionOutcome(
            "created", category_id, from_level, performances[0].level if performances else None
        )

    def assign_placements(self, category_id: int, level: str) -> list[Performance]:
        return self.forms.assign_placements(category_id, level)

    # =========================================================================
    # Read side
    # =========================================================================

    def get_scoreboard(self, category_id: int, level: str) -> list[dict]:
        category = self.get_category(category_id)
        if not is_known_level(category.discipline, level):
            raise ValidationError(f"Unknown level '{level}'", {"level": level})
        if category.discipline == FORMS:
            return [row.to_dict() for row in self.forms.scoreboard(category_id, level)]
        return self.matches.scoreboard(category_id, level)

    def standings(self, category_id: int) -> list[Standing]:
        category = self.get_category(category_id)
        if category.discipline == FORMS:
            return forms_standings(self.session, category_id)
        return sparring_standings(self.session, category_id)

    def get_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found", {"category_id": category_id})
        return category
