"""
Background bracket advancement.

Completing a sparring match schedules generate_next_level for its level.
The job runs off the request path and its failures are logged, never
raised back to whoever completed the match.

Two modes:
- Threaded (default): jobs wait until the scheduling session commits, then
  run on a thread pool in their own session under the level lock. A
  rollback discards them.
- Inline: the job runs immediately inside the caller's session, under a
  savepoint so a failure does not undo the completed match. Used by
  scripts and tests.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

from shiai.config import settings
from shiai.events import EventPublisher
from shiai.levels import SPARRING, get_next_level
from shiai.tasks.locks import level_generation_lock

logger = logging.getLogger(__name__)

PENDING_JOBS_KEY = "shiai.pending_progressions"

SessionFactory = Callable[[], AbstractContextManager[Session]]


class ProgressionTrigger(Protocol):
    def schedule(self, session: Session, category_id: int, from_level: str) -> None:
        ...


@dataclass
class ProgressionJobResult:
    """Normalized result of one advancement job."""

    category_id: int
    from_level: str
    status: str
    started_at: datetime
    ended_at: datetime
    level: Optional[str] = None
    metrics: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def duration_s(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id,
            "from_level": self.from_level,
            "status": self.status,
            "level": self.level,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_s": self.duration_s,
            "metrics": self.metrics,
            "error": self.error,
        }


class BackgroundProgression:
    """
    ProgressionTrigger that runs bracket advancement off the request path.

    Args:
        session_factory: Context manager factory yielding a committed-on-exit
                         session (shiai.db.get_session). Required for
                         threaded mode.
        max_workers: Thread pool size (defaults to settings.progression_workers)
        inline: Run jobs immediately in the caller's session
        publisher: Passed to BracketProgressionEngine for level.generated events
        history_size: How many recent job results to keep in ``results``
                      (defaults to settings.progression_history_size)
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        *,
        max_workers: Optional[int] = None,
        inline: bool = False,
        publisher: Optional[EventPublisher] = None,
        lock_timeout_seconds: Optional[float] = None,
        history_size: Optional[int] = None,
    ):
        if not inline and session_factory is None:
            raise ValueError("session_factory is required unless inline=True")
        self.session_factory = session_factory
        self.inline = inline
        self.publisher = publisher
        self.max_workers = max_workers or settings.progression_workers
        self.lock_timeout_seconds = (
            settings.progression_lock_timeout_seconds
            if lock_timeout_seconds is None else lock_timeout_seconds
        )
        # Oldest results fall off once the history is full
        self.results: deque[ProgressionJobResult] = deque(
            maxlen=settings.progression_history_size if history_size is None else history_size
        )
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def schedule(self, session: Session, category_id: int, from_level: str) -> None:
        """Queue advancement past ``from_level`` for a category."""
        if get_next_level(SPARRING, from_level) is None:
            return

        if self.inline:
            self._record(self._run_inline(session, category_id, from_level))
            return

        session.info.setdefault(PENDING_JOBS_KEY, []).append((self, category_id, from_level))
        logger.debug("Deferred progression for category %s past %s until commit", category_id, from_level)

    def submit(self, category_id: int, from_level: str) -> Future:
        """Run a job on the thread pool now, in a fresh session."""
        return self._get_executor().submit(self._run_threaded, category_id, from_level)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="shiai-progression",
                )
            return self._executor

    def _run_inline(self, session: Session, category_id: int, from_level: str) -> ProgressionJobResult:
        started_at = datetime.utcnow()
        try:
            with session.begin_nested():
                outcome = self._engine(session).generate_next_level(category_id, from_level)
        except Exception as e:
            logger.exception("Progression failed for category %s past %s", category_id, from_level)
            return ProgressionJobResult(
                category_id, from_level, "failed", started_at, datetime.utcnow(), error=str(e)
            )
        return self._result_from(outcome, started_at)

    def _run_threaded(self, category_id: int, from_level: str) -> ProgressionJobResult:
        started_at = datetime.utcnow()
        try:
            with self.session_factory() as session:
                with level_generation_lock(
                    session.get_bind(), category_id, from_level,
                    timeout_seconds=self.lock_timeout_seconds,
                ):
                    outcome = self._engine(session).generate_next_level(category_id, from_level)
                    session.commit()
                    result = self._result_from(outcome, started_at)
        except Exception as e:
            logger.exception("Progression failed for category %s past %s", category_id, from_level)
            result = ProgressionJobResult(
                category_id, from_level, "failed", started_at, datetime.utcnow(), error=str(e)
            )
        self._record(result)
        return result

    def _engine(self, session: Session):
        from shiai.services.bracket_progression import BracketProgressionEngine

        return BracketProgressionEngine(session, publisher=self.publisher)

    def _result_from(self, outcome, started_at: datetime) -> ProgressionJobResult:
        result = ProgressionJobResult(
            category_id=outcome.category_id,
            from_level=outcome.from_level,
            status=outcome.status,
            started_at=started_at,
            ended_at=datetime.utcnow(),
            level=outcome.level,
            metrics={"matches_created": len(outcome.matches)},
            error=outcome.reason if outcome.status == "blocked" else None,
        )
        logger.info("Progression job: %s (%.3fs)", outcome.summary(), result.duration_s)
        return result

    def _record(self, result: ProgressionJobResult) -> None:
        self.results.append(result)


@event.listens_for(Session, "after_commit")
def _dispatch_pending_jobs(session: Session) -> None:
    for runner, category_id, from_level in session.info.pop(PENDING_JOBS_KEY, []):
        runner.submit(category_id, from_level)


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending_jobs(session: Session, previous_transaction) -> None:
    if previous_transaction.nested or previous_transaction.parent is not None:
        return
    dropped = session.info.pop(PENDING_JOBS_KEY, None)
    if dropped:
        logger.info("Discarded %d progression jobs after rollback", len(dropped))
