"""
Collaborator ports and their database-backed implementations.

The engine depends on three outside concerns it does not own:

- RegistrationGateway: who is approved and paid for a category
- JudgePanel: which judges are confirmed on a category's tatami
- SeedingAssistant: an untrusted bracket proposal for a draw

Services take these as constructor arguments. The Db* classes answer from
the shared store; tests can pass any object with the same methods.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from sqlalchemy.orm import Session

from shiai.db.models import Competitor, JudgeAssignment, Registration


# =============================================================================
# Registration
# =============================================================================

@dataclass
class Eligibility:
    """Registration state of one competitor in one category."""

    competitor_id: int
    registered: bool = False
    approved: bool = False
    paid: bool = False
    payment_status: Optional[str] = None

    @property
    def is_eligible(self) -> bool:
        return self.registered and self.approved and self.paid

    @property
    def reason(self) -> Optional[str]:
        """Why the competitor cannot be placed, or None when eligible."""
        if not self.registered:
            return "not registered"
        if not self.approved:
            return "not approved"
        if not self.paid:
            return f"not paid (payment status: {self.payment_status or 'unknown'})"
        return None


class RegistrationGateway(Protocol):
    def eligibility(self, category_id: int, competitor_ids: Iterable[int]) -> dict[int, Eligibility]:
        ...

    def eligible_competitor_ids(self, category_id: int) -> list[int]:
        ...


class DbRegistrationGateway:
    """Reads eligibility from the registrations table."""

    def __init__(self, session: Session):
        self.session = session

    def eligibility(self, category_id: int, competitor_ids: Iterable[int]) -> dict[int, Eligibility]:
        ids = list(competitor_ids)
        rows = (
            self.session.query(Registration)
            .filter(Registration.category_id == category_id)
            .filter(Registration.competitor_id.in_(ids))
            .all()
        )
        by_competitor = {row.competitor_id: row for row in rows}

        result = {}
        for competitor_id in ids:
            row = by_competitor.get(competitor_id)
            if row is None:
                result[competitor_id] = Eligibility(competitor_id=competitor_id)
                continue
            result[competitor_id] = Eligibility(
                competitor_id=competitor_id,
                registered=True,
                approved=row.is_approved,
                paid=row.is_paid,
                payment_status=row.payment_status,
            )
        return result

    def eligible_competitor_ids(self, category_id: int) -> list[int]:
        rows = (
            self.session.query(Registration.competitor_id)
            .filter(Registration.category_id == category_id)
            .filter(Registration.approval_status == "Approved")
            .filter(Registration.payment_status == "Paid")
            .order_by(Registration.id)
            .all()
        )
        return [competitor_id for (competitor_id,) in rows]


# =============================================================================
# Judges
# =============================================================================

@dataclass
class PanelJudge:
    judge_id: int
    role: str = "Judge"


class JudgePanel(Protocol):
    def is_confirmed(self, judge_id: int, category_id: int) -> bool:
        ...

    def confirmed_judges(self, category_id: int) -> list[PanelJudge]:
        ...


class DbJudgePanel:
    """Reads the tatami panel from confirmed judge assignments."""

    def __init__(self, session: Session):
        self.session = session

    def is_confirmed(self, judge_id: int, category_id: int) -> bool:
        return (
            self.session.query(JudgeAssignment.id)
            .filter_by(judge_id=judge_id, category_id=category_id, is_confirmed=True)
            .first()
            is not None
        )

    def confirmed_judges(self, category_id: int) -> list[PanelJudge]:
        rows = (
            self.session.query(JudgeAssignment)
            .filter_by(category_id=category_id, is_confirmed=True)
            .order_by(JudgeAssignment.id)
            .all()
        )
        return [PanelJudge(judge_id=row.judge_id, role=row.judge_role) for row in rows]


# =============================================================================
# Seeding
# =============================================================================

@dataclass
class SeedingEntrant:
    """What the seeding assistant is told about a competitor."""

    competitor_id: int
    name: str
    club: Optional[str] = None

    @classmethod
    def from_competitor(cls, competitor: Competitor) -> "SeedingEntrant":
        return cls(competitor_id=competitor.id, name=competitor.name, club=competitor.club)


@dataclass
class ProposedMatch:
    """One opening-level pairing. A None slot is a bye."""

    level: str
    participant1_id: Optional[int]
    participant2_id: Optional[int] = None
    match_number: Optional[int] = None
    round_number: int = 1

    @property
    def competitor_ids(self) -> list[int]:
        return [c for c in (self.participant1_id, self.participant2_id) if c is not None]


@dataclass
class BracketProposal:
    """An untrusted bracket as returned by a seeding assistant."""

    matches: list[ProposedMatch] = field(default_factory=list)
    total_rounds: Optional[int] = None
    bracket_type: str = "single_elimination"
    explanation: Optional[str] = None


class SeedingAssistant(Protocol):
    def propose(self, category_name: str, entrants: list[SeedingEntrant]) -> BracketProposal:
        """Return a proposal, or raise ExternalServiceError."""
        ...
