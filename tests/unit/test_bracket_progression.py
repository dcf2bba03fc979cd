"""
Unit tests for sparring matches and bracket progression.

Tests:
- Winners are paired in bracket order into the next level
- Generation is idempotent per (category, level)
- Incomplete, blocked, terminal and decided levels create nothing
- Byes complete on creation and carry their competitor forward
- Completing the last match of a level advances the bracket inline
"""

import random

import pytest

from shiai.collaborators import PanelJudge
from shiai.db.models import LevelGeneration, Match, MatchParticipant
from shiai.errors import NotFoundError, ValidationError
from shiai.events import LEVEL_GENERATED, UNIT_COMPLETED
from shiai.levels import BRONZE, FINAL, FORMS, PRELIMINARY, QUARTERFINAL, SEMIFINAL, SPARRING
from shiai.services.bracket_progression import (
    ALREADY_EXISTS,
    BLOCKED,
    CREATED,
    DECIDED,
    INCOMPLETE,
    TERMINAL,
    BracketProgressionEngine,
)
from shiai.services.draw_generation import DrawGenerator
from shiai.services.match_builder import DECIDED_BY_BYE, build_level, pair_entrants
from shiai.services.sparring_matches import SparringMatchEngine
from shiai.services.standings import sparring_standings
from shiai.tasks.progression import BackgroundProgression
from shiai.unit_statuses import CANCELLED, COMPLETED, IN_PROGRESS, POSTPONED, SCHEDULED


@pytest.fixture
def category(make_category, make_panel):
    category = make_category(SPARRING)
    make_panel(category, 3)
    return category


@pytest.fixture
def progression(db_session, publisher):
    return BracketProgressionEngine(db_session, publisher=publisher)


def _panel():
    return [PanelJudge(judge_id) for judge_id in (1, 2, 3)]


def _decide(match, winner_id, db_session):
    match.status = COMPLETED
    match.winner_id = winner_id
    db_session.flush()


def _level(db_session, category, level, groups):
    return build_level(db_session, category.id, level, groups, _panel())


def _matches_at(db_session, category, level):
    return (
        db_session.query(Match)
        .filter(Match.category_id == category.id, Match.level == level)
        .order_by(Match.position)
        .all()
    )


def test_pair_entrants():
    assert pair_entrants([5, 6, 7, 8, 9]) == [[5, 6], [7, 8], [9]]


class TestGenerateNextLevel:
    """Tests for BracketProgressionEngine.generate_next_level."""

    def test_winners_paired_in_bracket_order(self, db_session, category, make_competitors, progression, publisher):
        ids = [c.id for c in make_competitors(category, 8)]
        quarterfinals = _level(db_session, category, QUARTERFINAL, pair_entrants(ids))
        for match in quarterfinals:
            _decide(match, match.competitor_ids[1], db_session)

        outcome = progression.generate_next_level(category.id, QUARTERFINAL)

        assert outcome.status == CREATED
        assert outcome.level == SEMIFINAL
        assert [m.competitor_ids for m in outcome.matches] == [[ids[1], ids[3]], [ids[5], ids[7]]]
        assert [m.position for m in outcome.matches] == [1, 2]
        assert all(m.status == SCHEDULED for m in outcome.matches)
        assert publisher.of(LEVEL_GENERATED)[0].payload["level"] == SEMIFINAL

    def test_judges_carried_onto_new_matches(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 4)]
        for match in _level(db_session, category, SEMIFINAL, pair_entrants(ids)):
            _decide(match, match.competitor_ids[0], db_session)

        outcome = progression.generate_next_level(category.id, SEMIFINAL)

        final = outcome.matches[0]
        assert sorted(j.judge_id for j in final.judges) == [1, 2, 3]

    def test_second_call_is_a_no_op(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 4)]
        for match in _level(db_session, category, SEMIFINAL, pair_entrants(ids)):
            _decide(match, match.competitor_ids[0], db_session)

        first = progression.generate_next_level(category.id, SEMIFINAL)
        second = progression.generate_next_level(category.id, SEMIFINAL)

        assert first.status == CREATED
        assert second.status == ALREADY_EXISTS
        assert len(_matches_at(db_session, category, FINAL)) == 1
        assert db_session.query(LevelGeneration).filter_by(category_id=category.id, level=FINAL).count() == 1

    def test_incomplete_level(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 4)]
        semifinals = _level(db_session, category, SEMIFINAL, pair_entrants(ids))
        _decide(semifinals[0], ids[0], db_session)

        outcome = progression.generate_next_level(category.id, SEMIFINAL)

        assert outcome.status == INCOMPLETE
        assert outcome.pending_match_ids == [semifinals[1].id]
        assert _matches_at(db_session, category, FINAL) == []

    def test_completed_without_winner_blocks(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 4)]
        semifinals = _level(db_session, category, SEMIFINAL, pair_entrants(ids))
        _decide(semifinals[0], ids[0], db_session)
        _decide(semifinals[1], None, db_session)

        outcome = progression.generate_next_level(category.id, SEMIFINAL)

        assert outcome.status == BLOCKED
        assert outcome.pending_match_ids == [semifinals[1].id]

    def test_final_is_terminal(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 2)]
        _level(db_session, category, FINAL, [ids])
        assert progression.generate_next_level(category.id, FINAL).status == TERMINAL

    def test_bronze_is_terminal(self, db_session, category, progression):
        assert progression.generate_next_level(category.id, BRONZE).status == TERMINAL

    def test_single_winner_is_decided(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 2)]
        semifinal = _level(db_session, category, SEMIFINAL, [ids])[0]
        _decide(semifinal, ids[0], db_session)

        outcome = progression.generate_next_level(category.id, SEMIFINAL)

        assert outcome.status == DECIDED
        assert _matches_at(db_session, category, FINAL) == []

    def test_byes_carry_forward(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 5)]
        preliminary = _level(db_session, category, PRELIMINARY, pair_entrants(ids))
        assert preliminary[2].decided_by == DECIDED_BY_BYE
        assert preliminary[2].winner_id == ids[4]
        _decide(preliminary[0], ids[0], db_session)
        _decide(preliminary[1], ids[3], db_session)

        outcome = progression.generate_next_level(category.id, PRELIMINARY)

        assert outcome.status == CREATED
        assert [m.competitor_ids for m in outcome.matches] == [[ids[0], ids[3]], [ids[4]]]
        bye = outcome.matches[1]
        assert bye.status == COMPLETED
        assert bye.winner_id == ids[4]
        assert bye.decided_by == DECIDED_BY_BYE

    @pytest.mark.parametrize("status", [CANCELLED, POSTPONED])
    def test_cancelled_or_postponed_match_holds_the_level(
        self, db_session, category, make_competitors, progression, status
    ):
        ids = [c.id for c in make_competitors(category, 8)]
        quarterfinals = _level(db_session, category, QUARTERFINAL, pair_entrants(ids))
        for match in quarterfinals[:3]:
            _decide(match, match.competitor_ids[0], db_session)
        quarterfinals[3].status = status
        db_session.flush()

        outcome = progression.generate_next_level(category.id, QUARTERFINAL)

        assert outcome.status == INCOMPLETE
        assert outcome.pending_match_ids == [quarterfinals[3].id]
        assert _matches_at(db_session, category, SEMIFINAL) == []

    def test_large_preliminary_feeds_another_preliminary(self, db_session, category, make_competitors, progression):
        ids = [c.id for c in make_competitors(category, 17)]
        preliminary = _level(db_session, category, PRELIMINARY, pair_entrants(ids))
        for match in preliminary:
            if match.status != COMPLETED:
                _decide(match, match.competitor_ids[0], db_session)

        outcome = progression.generate_next_level(category.id, PRELIMINARY)

        assert outcome.status == CREATED
        assert outcome.level == "Preliminary 2"
        assert len(outcome.matches) == 5
        assert _matches_at(db_session, category, QUARTERFINAL) == []

    def test_no_matches_at_level(self, category, progression):
        with pytest.raises(NotFoundError):
            progression.generate_next_level(category.id, SEMIFINAL)

    def test_unknown_level(self, category, progression):
        with pytest.raises(ValidationError):
            progression.generate_next_level(category.id, "Round of 32")

    def test_forms_category_rejected(self, make_category, progression):
        forms = make_category(FORMS)
        with pytest.raises(ValidationError):
            progression.generate_next_level(forms.id, SEMIFINAL)


class TestSparringMatchEngine:
    """Tests for match resolution and inline advancement."""

    @pytest.fixture
    def inline(self, publisher):
        return BackgroundProgression(inline=True, publisher=publisher)

    @pytest.fixture
    def engine(self, db_session, publisher, inline):
        return SparringMatchEngine(db_session, publisher=publisher, progression=inline)

    def test_last_semifinal_builds_the_final(self, db_session, category, make_competitors, engine, inline, publisher):
        ids = [c.id for c in make_competitors(category, 4)]
        semifinals = _level(db_session, category, SEMIFINAL, pair_entrants(ids))

        engine.resolve_winner(semifinals[0].id)
        assert _matches_at(db_session, category, FINAL) == []

        engine.resolve_winner(semifinals[1].id)
        finals = _matches_at(db_session, category, FINAL)

        # No scores at all: first-listed wins by default
        assert [m.competitor_ids for m in finals] == [[ids[0], ids[2]]]
        assert [r.status for r in inline.results] == [INCOMPLETE, CREATED]
        assert len(publisher.of(UNIT_COMPLETED)) == 2

    def test_seventeen_entrants_play_down_to_one_final(
        self, db_session, category, make_competitors, engine, publisher
    ):
        ids = [c.id for c in make_competitors(category, 17)]
        drawer = DrawGenerator(db_session, publisher=publisher, rng=random.Random(7), use_assistant=False)
        bracket = drawer.generate_draws(category.id)
        assert bracket.planned_levels == [PRELIMINARY, "Preliminary 2", QUARTERFINAL, SEMIFINAL, FINAL]

        for level in bracket.planned_levels:
            for match in _matches_at(db_session, category, level):
                if match.status != COMPLETED:
                    engine.resolve_winner(match.id)

        counts = [len(_matches_at(db_session, category, level)) for level in bracket.planned_levels]
        assert counts == [9, 5, 3, 2, 1]

        participants = (
            db_session.query(MatchParticipant)
            .join(Match)
            .filter(Match.category_id == category.id)
            .all()
        )
        assert {p.competitor_id for p in participants} == set(ids)
        assert all(p.result is not None for p in participants)

        standings = sparring_standings(db_session, category.id)
        final = _matches_at(db_session, category, FINAL)[0]
        assert [(s.place, s.competitor_id) for s in standings] == [
            (1, final.winner_id),
            (2, next(cid for cid in final.competitor_ids if cid != final.winner_id)),
        ]

    def test_resolving_twice_returns_the_match(self, db_session, category, make_competitors, engine):
        ids = [c.id for c in make_competitors(category, 2)]
        final = _level(db_session, category, FINAL, [ids])[0]

        engine.resolve_winner(final.id)
        completed_at = final.completed_at
        again = engine.resolve_winner(final.id)

        assert again.winner_id == ids[0]
        assert again.completed_at == completed_at

    def test_bye_resolves_for_its_only_competitor(self, db_session, category, make_competitor, engine):
        competitor = make_competitor(category)
        match = Match(category_id=category.id, level=SEMIFINAL, position=1, status=SCHEDULED)
        match.participants.append(MatchParticipant(competitor_id=competitor.id, slot=1))
        db_session.add(match)
        db_session.flush()

        engine.resolve_winner(match.id)

        assert match.status == COMPLETED
        assert match.winner_id == competitor.id
        assert match.decided_by == DECIDED_BY_BYE

    @pytest.mark.parametrize("status", [CANCELLED, POSTPONED])
    def test_cancelled_or_postponed_cannot_resolve(self, db_session, category, make_competitors, engine, status):
        ids = [c.id for c in make_competitors(category, 2)]
        match = _level(db_session, category, FINAL, [ids])[0]
        engine.set_status(match.id, status)

        with pytest.raises(ValidationError):
            engine.resolve_winner(match.id)

    def test_status_changes(self, db_session, category, make_competitors, engine):
        ids = [c.id for c in make_competitors(category, 2)]
        match = _level(db_session, category, FINAL, [ids])[0]

        engine.start_match(match.id)
        assert match.status == IN_PROGRESS
        assert match.started_at is not None

        with pytest.raises(ValidationError):
            engine.set_status(match.id, COMPLETED)
        engine.set_status(match.id, POSTPONED)
        engine.set_status(match.id, SCHEDULED)
        assert match.status == SCHEDULED

    def test_unknown_match(self, engine):
        with pytest.raises(NotFoundError):
            engine.resolve_winner(999999)

    def test_scoreboard(self, db_session, category, make_competitors, engine):
        ids = [c.id for c in make_competitors(category, 4)]
        _level(db_session, category, SEMIFINAL, pair_entrants(ids))

        rows = engine.scoreboard(category.id, SEMIFINAL)

        assert [r["position"] for r in rows] == [1, 2]
        assert [p["competitor_id"] for p in rows[0]["participants"]] == ids[:2]
        assert rows[0]["participants"][0]["total"] is not None


class TestBronzeAndStandings:
    """Tests for bronze matches and sparring medal standings."""

    def _play_to_final(self, db_session, category, make_competitors):
        ids = [c.id for c in make_competitors(category, 4)]
        semifinals = _level(db_session, category, SEMIFINAL, pair_entrants(ids))
        _decide(semifinals[0], ids[0], db_session)
        _decide(semifinals[1], ids[3], db_session)
        final = _level(db_session, category, FINAL, [[ids[0], ids[3]]])[0]
        _decide(final, ids[3], db_session)
        return ids

    def test_bronze_between_semifinal_losers(self, db_session, category, make_competitors, publisher):
        ids = self._play_to_final(db_session, category, make_competitors)
        engine = SparringMatchEngine(db_session, publisher=publisher)

        bronze = engine.create_bronze_match(category.id, [ids[1], ids[2]])
        assert bronze.level == BRONZE
        assert sorted(j.judge_id for j in bronze.judges) == [1, 2, 3]

        engine.resolve_winner(bronze.id)
        standings = sparring_standings(db_session, category.id)

        assert [(s.place, s.competitor_id, s.medal) for s in standings] == [
            (1, ids[3], "Gold"),
            (2, ids[0], "Silver"),
            (3, ids[1], "Bronze"),
        ]

    def test_bronze_rejects_semifinal_winner(self, db_session, category, make_competitors):
        ids = self._play_to_final(db_session, category, make_competitors)
        engine = SparringMatchEngine(db_session)

        with pytest.raises(ValidationError):
            engine.create_bronze_match(category.id, [ids[0], ids[2]])

    def test_standings_empty_before_final(self, db_session, category):
        assert sparring_standings(db_session, category.id) == []
