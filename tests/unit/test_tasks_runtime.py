"""Unit tests for background progression and lock helpers."""

from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from shiai.db.models import Category, Competitor, Match
from shiai.config import settings
from shiai.levels import FINAL, PRELIMINARY, QUARTERFINAL, SEMIFINAL, SPARRING
from shiai.services.match_builder import build_level
from shiai.tasks.locks import advisory_lock_key, level_generation_lock, level_lock_name
from shiai.tasks.progression import PENDING_JOBS_KEY, BackgroundProgression, ProgressionJobResult
from shiai.unit_statuses import COMPLETED


def test_advisory_lock_key_is_stable_and_signed_64_bit():
    key = advisory_lock_key(level_lock_name(7, FINAL))
    assert key == advisory_lock_key("shiai:level:7:Final")
    assert -(2 ** 63) <= key < 2 ** 63
    assert key != advisory_lock_key(level_lock_name(8, FINAL))


def test_level_lock_is_skipped_off_postgres(test_engine):
    with level_generation_lock(test_engine, 1, FINAL) as acquired:
        assert acquired is False


def test_job_result_duration_and_payload():
    started = datetime(2026, 10, 19, 9, 0, 0)
    result = ProgressionJobResult(
        category_id=3,
        from_level=SEMIFINAL,
        status="created",
        started_at=started,
        ended_at=started + timedelta(seconds=1.5),
        level=FINAL,
        metrics={"matches_created": 1},
    )

    assert result.duration_s == 1.5
    payload = result.to_dict()
    assert payload["level"] == FINAL
    assert payload["metrics"] == {"matches_created": 1}
    assert payload["error"] is None


def test_threaded_mode_needs_a_session_factory():
    with pytest.raises(ValueError):
        BackgroundProgression()


def test_result_history_is_capped(db_session):
    progression = BackgroundProgression(inline=True, history_size=2)

    # Unknown category: every job fails and is still recorded
    for from_level in (PRELIMINARY, QUARTERFINAL, SEMIFINAL):
        progression.schedule(db_session, 999999, from_level)

    assert [r.from_level for r in progression.results] == [QUARTERFINAL, SEMIFINAL]
    assert all(r.status == "failed" for r in progression.results)


def test_result_history_defaults_to_settings():
    progression = BackgroundProgression(inline=True)
    assert progression.results.maxlen == settings.progression_history_size


class TestDeferredDispatch:
    """Threaded jobs wait for the scheduling session to commit."""

    @pytest.fixture
    def session_factory(self, file_engine):
        Session = sessionmaker(bind=file_engine, autoflush=False)

        @contextmanager
        def factory():
            session = Session()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        return factory

    @pytest.fixture
    def finished_semifinals(self, session_factory):
        with session_factory() as session:
            category = Category(name="Senior Kumite", discipline=SPARRING)
            session.add(category)
            session.flush()
            competitors = [Competitor(category_id=category.id, name=f"C{i}") for i in range(4)]
            session.add_all(competitors)
            session.flush()
            ids = [c.id for c in competitors]
            for match in build_level(session, category.id, SEMIFINAL, [ids[:2], ids[2:]]):
                match.status = COMPLETED
                match.winner_id = match.competitor_ids[0]
            category_id = category.id
        return category_id, ids

    def test_job_runs_after_commit(self, session_factory, finished_semifinals):
        category_id, ids = finished_semifinals
        progression = BackgroundProgression(session_factory, max_workers=1)

        with session_factory() as session:
            session.get(Category, category_id)
            progression.schedule(session, category_id, SEMIFINAL)
            assert len(session.info[PENDING_JOBS_KEY]) == 1
        progression.shutdown(wait=True)

        assert [r.status for r in progression.results] == ["created"]
        with session_factory() as session:
            finals = session.query(Match).filter_by(category_id=category_id, level=FINAL).all()
            assert [m.competitor_ids for m in finals] == [[ids[0], ids[2]]]

    def test_rollback_discards_jobs(self, session_factory, finished_semifinals):
        category_id, _ = finished_semifinals
        progression = BackgroundProgression(session_factory, max_workers=1)

        with session_factory() as session:
            session.get(Category, category_id)
            progression.schedule(session, category_id, SEMIFINAL)
            session.rollback()
            assert PENDING_JOBS_KEY not in session.info
        progression.shutdown(wait=True)

        assert list(progression.results) == []

    def test_final_schedules_nothing(self, session_factory, finished_semifinals):
        category_id, _ = finished_semifinals
        progression = BackgroundProgression(session_factory, max_workers=1)

        with session_factory() as session:
            progression.schedule(session, category_id, FINAL)
            assert PENDING_JOBS_KEY not in session.info
