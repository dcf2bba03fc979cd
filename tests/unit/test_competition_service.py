"""Unit tests for the CompetitionService facade."""

import random

import pytest

from shiai.errors import NotFoundError, ValidationError
from shiai.levels import FIRST_ROUND, FORMS, SECOND_ROUND, SEMIFINAL, SPARRING
from shiai.services.competition import CompetitionService
from shiai.services.score_aggregator import UNIT_MATCH, UNIT_PERFORMANCE
from shiai.tasks.progression import BackgroundProgression


@pytest.fixture
def service(db_session, publisher):
    return CompetitionService(
        db_session,
        publisher=publisher,
        progression=BackgroundProgression(inline=True, publisher=publisher),
        rng=random.Random(11),
    )


def test_forms_next_level_advances_the_round(service, make_category, make_competitors, make_panel):
    category = make_category(FORMS)
    make_panel(category, 5)
    competitors = make_competitors(category, 3)
    performances = service.create_round(category.id, FIRST_ROUND, [c.id for c in competitors])
    for performance in performances:
        for judge_id, value in enumerate(["8.0", "8.1", "8.2", "8.3", "8.4"], start=1):
            service.submit_score(judge_id, UNIT_PERFORMANCE, performance.id, performance.competitor_id, value)

    outcome = service.generate_next_level(category.id, FIRST_ROUND)

    assert outcome.status == "created"
    assert outcome.level == SECOND_ROUND
    assert len(service.forms.get_round(category.id, SECOND_ROUND)) == 3


def test_sparring_category_runs_to_a_champion(service, make_category, make_competitors, make_panel):
    category = make_category(SPARRING)
    make_panel(category, 3)
    make_competitors(category, 4)

    bracket = service.generate_draws(category.id)
    assert bracket.opening_level == SEMIFINAL

    for match in bracket.matches:
        first, second = match.competitor_ids
        service.submit_score(1, UNIT_MATCH, match.id, first, {"ippon": 1})
        service.resolve_match(match.id)

    final_rows = service.get_scoreboard(category.id, "Final")
    assert len(final_rows) == 1
    final_id = final_rows[0]["match_id"]
    service.resolve_match(final_id)

    standings = service.standings(category.id)
    assert [s.medal for s in standings] == ["Gold", "Silver"]
    assert service.get_result(UNIT_MATCH, final_id).winner_id == standings[0].competitor_id


def test_scoreboard_rejects_unknown_level(service, make_category):
    category = make_category(FORMS)
    with pytest.raises(ValidationError):
        service.get_scoreboard(category.id, "Semifinal")


def test_unknown_category(service):
    with pytest.raises(NotFoundError):
        service.standings(999999)
