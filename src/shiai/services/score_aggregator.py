"""
Score aggregator - accepts judge scores and turns them into unit results.

Every submission is an upsert keyed by (judge, unit, competitor): a judge
who submits again for the same competitor replaces their previous value.
After each accepted submission the unit is finalized:

- Performances get a final score once the forms rule can produce one.
  Until then the score stays NULL (pending), never zero.
- Matches are checked for a decisive condition and resolved early when
  one holds. Otherwise they wait for resolve_winner.

Only judges confirmed on the category's tatami panel may submit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiai.collaborators import DbJudgePanel, JudgePanel
from shiai.config import Settings, settings as default_settings
from shiai.db.models import Match, MatchScore, Performance, PerformanceScore
from shiai.errors import AuthorizationError, NotFoundError, ValidationError
from shiai.events import SCORE_CHANGED, UNIT_COMPLETED, EventPublisher, NullPublisher, safe_publish
from shiai.scoring.forms import FormsBreakdown, forms_breakdown, validate_forms_score
from shiai.scoring.sparring import SparringTally
from shiai.services.sparring_matches import SparringMatchEngine
from shiai.unit_statuses import (
    CANCELLED,
    COMPLETED,
    IN_PROGRESS,
    SCHEDULED,
)

logger = logging.getLogger(__name__)

UNIT_PERFORMANCE = "performance"
UNIT_MATCH = "match"
UNIT_KINDS = (UNIT_PERFORMANCE, UNIT_MATCH)

# Performances keep accepting corrections after completion; matches do not
FORMS_SCORABLE = (SCHEDULED, IN_PROGRESS, COMPLETED)
SPARRING_SCORABLE = (SCHEDULED, IN_PROGRESS)


@dataclass
class FinalResult:
    """A unit's decided result."""

    unit_kind: str
    unit_id: int
    status: str
    completed_at: Optional[datetime] = None
    final_score: Optional[Decimal] = None
    winner_id: Optional[int] = None
    decided_by: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)

    is_pending = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": False,
            "unit_kind": self.unit_kind,
            "unit_id": self.unit_id,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "final_score": str(self.final_score) if self.final_score is not None else None,
            "winner_id": self.winner_id,
            "decided_by": self.decided_by,
            "detail": self.detail,
        }


@dataclass
class PendingResult:
    """Returned instead of a result while a unit is below quorum or undecided."""

    unit_kind: str
    unit_id: int
    status: str
    scores_received: int
    detail: dict[str, Any] = field(default_factory=dict)

    is_pending = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": True,
            "unit_kind": self.unit_kind,
            "unit_id": self.unit_id,
            "status": self.status,
            "scores_received": self.scores_received,
            "detail": self.detail,
        }


UnitResult = Union[FinalResult, PendingResult]


@dataclass
class ScoreReceipt:
    """What happened to one submission."""

    unit_kind: str
    unit_id: int
    judge_id: int
    competitor_id: int
    replaced: bool
    result: UnitResult


class ScoreAggregator:
    """
    Collects judge scores for performances and matches.

    Args:
        session: Database session (caller owns the transaction)
        judge_panel: Confirms judges against the category's tatami panel
        publisher: Receives score.changed and unit.completed events
        match_engine: Resolves matches when a decisive condition appears
        rules: Settings carrying the scoring constants
    """

    def __init__(
        self,
        session: Session,
        judge_panel: Optional[JudgePanel] = None,
        publisher: Optional[EventPublisher] = None,
        match_engine: Optional[SparringMatchEngine] = None,
        rules: Optional[Settings] = None,
    ):
        self.session = session
        self.judge_panel = judge_panel or DbJudgePanel(session)
        self.publisher = publisher or NullPublisher()
        self.rules = rules or default_settings
        self.match_engine = match_engine or SparringMatchEngine(
            session, publisher=self.publisher, senshu_gap=self.rules.sparring_senshu_gap
        )

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        judge_id: int,
        unit_kind: str,
        unit_id: int,
        competitor_id: int,
        value: Any,
    ) -> ScoreReceipt:
        """
        Record a judge's score and finalize the unit.

        Args:
            judge_id: Submitting judge
            unit_kind: 'performance' or 'match'
            unit_id: Performance or match id
            competitor_id: Competitor the score is for
            value: A number for performances; a dict of tally counts for matches

        Raises:
            NotFoundError: Unknown unit
            AuthorizationError: Judge not confirmed on the category's panel
            ValidationError: Bad value, wrong competitor, or unit not accepting scores
        """
        if unit_kind == UNIT_PERFORMANCE:
            return self.submit_forms_score(judge_id, unit_id, competitor_id, value)
        if unit_kind == UNIT_MATCH:
            tally = value if isinstance(value, SparringTally) else SparringTally.from_dict(value or {})
            return self.submit_sparring_tally(judge_id, unit_id, competitor_id, tally)
        raise ValidationError(f"Unknown unit kind '{unit_kind}'", {"unit_kind": unit_kind})

    def submit_forms_score(self, judge_id: int, performance_id: int, competitor_id: int, value: Any) -> ScoreReceipt:
        performance = self._get_performance(performance_id)
        self._check_judge(judge_id, performance.category_id)
        if competitor_id != performance.competitor_id:
            raise ValidationError(
                "Competitor does not belong to this performance",
                {"performance_id": performance.id, "competitor_id": competitor_id},
            )
        if performance.status not in FORMS_SCORABLE:
            raise ValidationError(
                f"Performance is {performance.status} and not accepting scores",
                {"performance_id": performance.id, "status": performance.status},
            )
        score = validate_forms_score(
            value, minimum=self.rules.forms_min_score, maximum=self.rules.forms_max_score
        )

        replaced = self._upsert(
            PerformanceScore,
            {"judge_id": judge_id, "performance_id": performance.id, "competitor_id": competitor_id},
            {"value": score},
        )
        if performance.status == SCHEDULED:
            performance.status = IN_PROGRESS
            performance.started_at = performance.started_at or datetime.utcnow()
        self.session.flush()

        safe_publish(self.publisher, SCORE_CHANGED, {
            "unit_kind": UNIT_PERFORMANCE,
            "unit_id": performance.id,
            "category_id": performance.category_id,
            "judge_id": judge_id,
            "competitor_id": competitor_id,
            "value": str(score),
        })
        result = self.finalize(UNIT_PERFORMANCE, performance.id)
        return ScoreReceipt(UNIT_PERFORMANCE, performance.id, judge_id, competitor_id, replaced, result)

    def submit_sparring_tally(
        self, judge_id: int, match_id: int, competitor_id: int, tally: SparringTally
    ) -> ScoreReceipt:
        match = self._get_match(match_id)
        self._check_judge(judge_id, match.category_id)
        if competitor_id not in match.competitor_ids:
            raise ValidationError(
                "Competitor is not a participant of this match",
                {"match_id": match.id, "competitor_id": competitor_id},
            )
        if match.status not in SPARRING_SCORABLE:
            raise ValidationError(
                f"Match is {match.status} and not accepting scores",
                {"match_id": match.id, "status": match.status},
            )
        tally.validate()

        replaced = self._upsert(
            MatchScore,
            {"judge_id": judge_id, "match_id": match.id, "competitor_id": competitor_id},
            tally.to_dict(),
        )
        if match.status == SCHEDULED:
            match.status = IN_PROGRESS
            match.started_at = match.started_at or datetime.utcnow()
        self.session.flush()

        safe_publish(self.publisher, SCORE_CHANGED, {
            "unit_kind": UNIT_MATCH,
            "unit_id": match.id,
            "category_id": match.category_id,
            "judge_id": judge_id,
            "competitor_id": competitor_id,
            "tally": tally.to_dict(),
        })
        result = self.finalize(UNIT_MATCH, match.id)
        return ScoreReceipt(UNIT_MATCH, match.id, judge_id, competitor_id, replaced, result)

    def _upsert(self, model, keys: dict[str, Any], values: dict[str, Any]) -> bool:
        """
        Insert or overwrite the score row for ``keys``.

        Returns:
            True if an existing row was replaced
        """
        existing = self.session.query(model).filter_by(**keys).first()
        if existing is None:
            try:
                with self.session.begin_nested():
                    self.session.add(model(**keys, **values))
                    self.session.flush()
                return False
            except IntegrityError:
                # Same judge submitted concurrently; fall through to overwrite
                existing = self.session.query(model).filter_by(**keys).one()

        for name, value in values.items():
            setattr(existing, name, value)
        existing.updated_at = datetime.utcnow()
        return True

    # =========================================================================
    # Finalization
    # =========================================================================

    def finalize(self, unit_kind: str, unit_id: int) -> UnitResult:
        """Recompute a unit's result from its current scores."""
        if unit_kind == UNIT_PERFORMANCE:
            self._finalize_performance(self._get_performance(unit_id))
        elif unit_kind == UNIT_MATCH:
            self.match_engine.finalize(self._get_match(unit_id))
        else:
            raise ValidationError(f"Unknown unit kind '{unit_kind}'", {"unit_kind": unit_kind})
        return self.get_result(unit_kind, unit_id)

    def _finalize_performance(self, performance: Performance) -> None:
        if performance.status == CANCELLED:
            return
        breakdown = self.forms_breakdown(performance.id)
        if not breakdown.is_final:
            return

        first_completion = performance.status != COMPLETED
        performance.final_score = breakdown.total
        if first_completion:
            performance.status = COMPLETED
            performance.completed_at = datetime.utcnow()
        self.session.flush()

        logger.info(
            "Performance %s final score %s from %d scores",
            performance.id, breakdown.total, len(breakdown.submitted),
        )
        if first_completion:
            safe_publish(self.publisher, UNIT_COMPLETED, {
                "unit_kind": UNIT_PERFORMANCE,
                "unit_id": performance.id,
                "category_id": performance.category_id,
                "level": performance.level,
                "final_score": str(breakdown.total),
            })

    def forms_breakdown(self, performance_id: int) -> FormsBreakdown:
        """How the current scores of a performance are counted."""
        values = [
            value for (value,) in self.session.query(PerformanceScore.value)
            .filter(PerformanceScore.performance_id == performance_id)
            .order_by(PerformanceScore.id)
            .all()
        ]
        return forms_breakdown(
            values,
            minimum=self.rules.forms_min_score,
            maximum=self.rules.forms_max_score,
            quorum=self.rules.forms_quorum,
        )

    # =========================================================================
    # Results
    # =========================================================================

    def get_result(self, unit_kind: str, unit_id: int) -> UnitResult:
        """The unit's final result, or a PendingResult if it has none yet."""
        if unit_kind == UNIT_PERFORMANCE:
            performance = self._get_performance(unit_id)
            breakdown = self.forms_breakdown(performance.id)
            if performance.final_score is None:
                return PendingResult(
                    UNIT_PERFORMANCE, performance.id, performance.status,
                    scores_received=len(breakdown.submitted),
                    detail=breakdown.to_dict(),
                )
            return FinalResult(
                UNIT_PERFORMANCE, performance.id, performance.status,
                completed_at=performance.completed_at,
                final_score=performance.final_score,
                detail=breakdown.to_dict(),
            )

        if unit_kind == UNIT_MATCH:
            match = self._get_match(unit_id)
            scores_received = (
                self.session.query(MatchScore).filter(MatchScore.match_id == match.id).count()
            )
            detail: dict[str, Any] = {"level": match.level, "participants": match.competitor_ids}
            if len(match.participants) == 2:
                first, second = self.match_engine.compute_totals(match)
                detail["totals"] = [first.to_dict(), second.to_dict()]
            if match.status != COMPLETED or match.winner_id is None:
                return PendingResult(UNIT_MATCH, match.id, match.status, scores_received, detail)
            return FinalResult(
                UNIT_MATCH, match.id, match.status,
                completed_at=match.completed_at,
                winner_id=match.winner_id,
                decided_by=match.decided_by,
                detail=detail,
            )

        raise ValidationError(f"Unknown unit kind '{unit_kind}'", {"unit_kind": unit_kind})

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_performance(self, performance_id: int) -> Performance:
        performance = self.session.get(Performance, performance_id)
        if performance is None:
            raise NotFoundError(f"Performance {performance_id} not found", {"performance_id": performance_id})
        return performance

    def _get_match(self, match_id: int) -> Match:
        return self.match_engine.get_match(match_id)

    def _check_judge(self, judge_id: int, category_id: int) -> None:
        if not self.judge_panel.is_confirmed(judge_id, category_id):
            raise AuthorizationError(
                f"Judge {judge_id} is not confirmed for category {category_id}",
                {"judge_id": judge_id, "category_id": category_id},
            )
