"""
End-to-end tests for the JSON API.

Runs the FastAPI app against a file-backed SQLite database, with inline
progression and no seeding assistant.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from shiai.db.models import Category, Competitor, JudgeAssignment, Registration
from shiai.db.session import get_db
from shiai.events import LEVEL_GENERATED, RecordingPublisher
from shiai.tasks.progression import BackgroundProgression
from shiai.web.main import app, get_progression, get_publisher, get_seeding_assistant


@pytest.fixture
def Session(file_engine):
    return sessionmaker(bind=file_engine, autoflush=False)


@pytest.fixture
def events():
    return RecordingPublisher()


@pytest.fixture
def client(Session, events):
    def override_get_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: events
    app.dependency_overrides[get_progression] = lambda: BackgroundProgression(inline=True, publisher=events)
    app.dependency_overrides[get_seeding_assistant] = lambda: None
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seed(Session):
    """Create a category with registered competitors and a confirmed panel."""
    def _seed(discipline, competitors, judges=5):
        with Session() as session:
            category = Category(name=f"Open {discipline}", discipline=discipline, tatami_number=2)
            session.add(category)
            session.flush()
            ids = []
            for i in range(competitors):
                competitor = Competitor(category_id=category.id, name=f"Karateka {i + 1}", club=f"Club {i % 2}")
                session.add(competitor)
                session.flush()
                session.add(Registration(
                    competitor_id=competitor.id,
                    category_id=category.id,
                    approval_status="Approved",
                    payment_status="Paid",
                ))
                ids.append(competitor.id)
            for judge_id in range(1, judges + 1):
                session.add(JudgeAssignment(judge_id=judge_id, category_id=category.id, is_confirmed=True))
            session.commit()
            return category.id, ids

    return _seed


class TestFormsFlow:
    """Create a round, score it, read the result."""

    def test_round_scores_and_result(self, client, seed):
        category_id, ids = seed("forms", 2)

        response = client.post(
            f"/api/categories/{category_id}/rounds",
            json={"level": "First Round", "competitor_ids": ids},
        )
        assert response.status_code == 201
        performance = response.json()["performances"][0]

        for judge_id, value in enumerate(["7.0", "7.5", "8.0", "8.2", "9.0"], start=1):
            response = client.post(
                f"/api/units/performance/{performance['performance_id']}/scores",
                json={"judge_id": judge_id, "competitor_id": performance["competitor_id"], "value": value},
            )
            assert response.status_code == 200

        body = response.json()
        assert body["replaced"] is False
        assert body["result"]["pending"] is False

        result = client.get(f"/api/units/performance/{performance['performance_id']}/result").json()
        assert Decimal(result["final_score"]) == Decimal("23.7")
        assert result["status"] == "Completed"

    def test_pending_result(self, client, seed):
        category_id, ids = seed("forms", 1)
        performance = client.post(
            f"/api/categories/{category_id}/rounds",
            json={"level": "First Round", "competitor_ids": ids},
        ).json()["performances"][0]

        client.post(
            f"/api/units/performance/{performance['performance_id']}/scores",
            json={"judge_id": 1, "competitor_id": ids[0], "value": 8.5},
        )
        result = client.get(f"/api/units/performance/{performance['performance_id']}/result").json()

        assert result["pending"] is True
        assert result["scores_received"] == 1

    def test_error_status_codes(self, client, seed):
        category_id, ids = seed("forms", 1)
        created = client.post(
            f"/api/categories/{category_id}/rounds",
            json={"level": "First Round", "competitor_ids": ids},
        )
        performance_id = created.json()["performances"][0]["performance_id"]

        duplicate = client.post(
            f"/api/categories/{category_id}/rounds",
            json={"level": "First Round", "competitor_ids": ids},
        )
        assert duplicate.status_code == 409

        unknown_judge = client.post(
            f"/api/units/performance/{performance_id}/scores",
            json={"judge_id": 99, "competitor_id": ids[0], "value": 8.0},
        )
        assert unknown_judge.status_code == 403
        assert unknown_judge.json()["error"]

        out_of_range = client.post(
            f"/api/units/performance/{performance_id}/scores",
            json={"judge_id": 1, "competitor_id": ids[0], "value": 12},
        )
        assert out_of_range.status_code == 422

        missing = client.get("/api/categories/999999/standings")
        assert missing.status_code == 404


class TestSparringFlow:
    """Draw a bracket and play it through to standings."""

    def _win(self, client, match):
        first = match["competitor_ids"][0]
        response = client.post(
            f"/api/units/match/{match['match_id']}/scores",
            json={"judge_id": 1, "competitor_id": first, "tally": {"ippon": 3}},
        )
        assert response.status_code == 200
        assert response.json()["result"]["winner_id"] == first

    def test_bracket_to_standings(self, client, seed, events):
        category_id, ids = seed("sparring", 4, judges=3)

        draw = client.post(f"/api/categories/{category_id}/draws")
        assert draw.status_code == 201
        bracket = draw.json()
        assert bracket["source"] == "fallback"
        assert bracket["planned_levels"] == ["Semifinal", "Final"]
        assert sorted(c for m in bracket["matches"] for c in m["competitor_ids"]) == sorted(ids)

        for match in bracket["matches"]:
            self._win(client, match)

        board = client.get(f"/api/categories/{category_id}/scoreboard", params={"level": "Final"}).json()
        assert len(board["rows"]) == 1
        final = board["rows"][0]
        assert final["status"] == "Scheduled"
        assert LEVEL_GENERATED in events.names()

        again = client.post(f"/api/categories/{category_id}/levels/next", json={"from_level": "Semifinal"})
        assert again.json()["status"] == "already_exists"

        resolved = client.post(f"/api/matches/{final['match_id']}/resolve").json()
        assert resolved["status"] == "Completed"

        standings = client.get(f"/api/categories/{category_id}/standings").json()["standings"]
        assert [s["medal"] for s in standings] == ["Gold", "Silver"]
        assert standings[0]["competitor_id"] == resolved["winner_id"]

    def test_cancel_then_resolve_is_rejected(self, client, seed):
        category_id, _ = seed("sparring", 2, judges=1)
        match = client.post(f"/api/categories/{category_id}/draws").json()["matches"][0]

        cancelled = client.post(f"/api/matches/{match['match_id']}/status", json={"status": "Cancelled"})
        assert cancelled.json()["status"] == "Cancelled"

        resolve = client.post(f"/api/matches/{match['match_id']}/resolve")
        assert resolve.status_code == 422
