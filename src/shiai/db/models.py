"""
SQLAlchemy ORM models for Shiai.

This module defines all database tables and their relationships.
The schema is built around contest units: a forms performance or a
sparring match. Every unit belongs to one category and one level, and
judges score units from a shared tatami panel.

Key design decisions:
- Score entries are keyed by (judge, unit, competitor) so a resubmission
  overwrites the previous value instead of adding a row
- Sparring matches hold participants in explicit slots; a match with a
  single slot is a bye
- level_generations records each (category, level) that has been created,
  which makes bracket advancement idempotent under concurrent triggers

Tables:
- categories: Divisions competitors enter (forms or sparring)
- competitors: Individuals or teams entered in a category
- registrations: Approval and payment state per competitor and category
- judge_assignments: Judges confirmed onto a category's tatami panel
- performances: Forms contest units
- performance_scores: One scalar per judge per performance
- matches: Sparring contest units
- match_participants: Competitor slots inside a match
- match_judges: Judges attached to a single match
- match_scores: One point/penalty tally per judge per participant
- level_generations: Audit and uniqueness guard for created levels
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from shiai.unit_statuses import COMPLETED, SCHEDULED


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Category and Entry Models
# =============================================================================

class Category(Base):
    """
    A division of the tournament.

    The discipline decides which unit type the category runs: forms
    categories hold performances, sparring categories hold matches.
    Each category is staffed from one tatami panel.
    """
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # 'forms' or 'sparring'
    discipline: Mapped[str] = mapped_column(String(20), nullable=False)
    # 'Individual' or 'Team'
    participation_type: Mapped[str] = mapped_column(String(20), default="Individual")
    tatami_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    competitors: Mapped[list["Competitor"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name='{self.name}', discipline='{self.discipline}')>"


class Competitor(Base):
    """An individual or a team entered in a category."""
    __tablename__ = "competitors"

    id: Mapped[int] = mapped_column(primary_key=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # 'individual' or 'team'
    kind: Mapped[str] = mapped_column(String(20), default="individual")
    # Home club, used by the seeding assistant to keep clubmates apart
    club: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    category: Mapped["Category"] = relationship(back_populates="competitors")

    __table_args__ = (
        Index("idx_competitors_category", "category_id"),
    )

    def __repr__(self) -> str:
        return f"<Competitor(id={self.id}, name='{self.name}')>"


class Registration(Base):
    """
    Approval and payment state of a competitor's entry.

    Only registrations that are both approved and paid are eligible to be
    placed into a round or draw.
    """
    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(primary_key=True)
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id", ondelete="CASCADE"))
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))

    # 'Pending', 'Approved', 'Rejected'
    approval_status: Mapped[str] = mapped_column(String(20), default="Pending")
    # 'Pending', 'Paid', 'Failed', 'Refunded'
    payment_status: Mapped[str] = mapped_column(String(20), default="Pending")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("competitor_id", "category_id", name="uq_registration_competitor_category"),
    )

    @property
    def is_approved(self) -> bool:
        return self.approval_status == "Approved"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "Paid"

    def __repr__(self) -> str:
        return (
            f"<Registration(competitor_id={self.competitor_id}, "
            f"approval='{self.approval_status}', payment='{self.payment_status}')>"
        )


class JudgeAssignment(Base):
    """
    A judge's seat on a category's tatami panel.

    Only confirmed assignments may submit scores, and confirmed judges are
    carried onto every unit the category creates.
    """
    __tablename__ = "judge_assignments"

    id: Mapped[int] = mapped_column(primary_key=True)
    judge_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))

    # 'Referee', 'Judge', ...
    judge_role: Mapped[str] = mapped_column(String(50), default="Judge")
    is_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)

    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("judge_id", "category_id", name="uq_judge_assignment"),
        Index("idx_judge_assignments_category", "category_id", "is_confirmed"),
    )

    def __repr__(self) -> str:
        return f"<JudgeAssignment(judge_id={self.judge_id}, category_id={self.category_id})>"


# =============================================================================
# Forms Models
# =============================================================================

class Performance(Base):
    """
    One competitor's forms performance in one round.

    final_score stays NULL until the aggregation rule has enough valid
    judge scores. place is only written for the last forms round.
    """
    __tablename__ = "performances"

    id: Mapped[int] = mapped_column(primary_key=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id", ondelete="CASCADE"))
    level: Mapped[str] = mapped_column(String(50), nullable=False)

    # 1-indexed running order within the round
    performance_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=SCHEDULED)

    final_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    place: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    competitor: Mapped["Competitor"] = relationship()
    scores: Mapped[list["PerformanceScore"]] = relationship(
        back_populates="performance", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("category_id", "competitor_id", "level", name="uq_performance_level"),
        Index("idx_performances_round", "category_id", "level", "performance_order"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    def __repr__(self) -> str:
        return (
            f"<Performance(id={self.id}, competitor_id={self.competitor_id}, "
            f"level='{self.level}', final_score={self.final_score})>"
        )


class PerformanceScore(Base):
    """A single judge's score for a forms performance."""
    __tablename__ = "performance_scores"

    id: Mapped[int] = mapped_column(primary_key=True)
    performance_id: Mapped[int] = mapped_column(ForeignKey("performances.id", ondelete="CASCADE"))
    judge_id: Mapped[int] = mapped_column(Integer, nullable=False)
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id", ondelete="CASCADE"))

    value: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)

    # First submission time survives resubmission; updated_at tracks the latest
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    performance: Mapped["Performance"] = relationship(back_populates="scores")

    __table_args__ = (
        UniqueConstraint("judge_id", "performance_id", "competitor_id", name="uq_performance_score"),
    )

    def __repr__(self) -> str:
        return f"<PerformanceScore(judge_id={self.judge_id}, value={self.value})>"


# =============================================================================
# Sparring Models
# =============================================================================

class Match(Base):
    """
    A sparring bout between two competitors, or a bye with one.

    Match status lifecycle:
    - 'Scheduled': Created by a draw or by bracket progression
    - 'In Progress': Bout running on the tatami
    - 'Completed': Winner decided (byes complete on creation)
    - 'Cancelled': Withdrawn; holds the level like any unfinished match
    - 'Postponed': Held; blocks the level until resumed

    decided_by records which precedence rule picked the winner.
    """
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(primary_key=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))
    level: Mapped[str] = mapped_column(String(50), nullable=False)

    # 1-indexed bracket position within the level
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=SCHEDULED)

    winner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("competitors.id", ondelete="SET NULL"), nullable=True
    )
    decided_by: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    participants: Mapped[list["MatchParticipant"]] = relationship(
        back_populates="match", cascade="all, delete-orphan", order_by="MatchParticipant.slot"
    )
    judges: Mapped[list["MatchJudge"]] = relationship(
        back_populates="match", cascade="all, delete-orphan"
    )
    winner: Mapped[Optional["Competitor"]] = relationship(foreign_keys=[winner_id])

    __table_args__ = (
        Index("idx_matches_level", "category_id", "level", "position"),
        Index("idx_matches_status", "status"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def is_bye(self) -> bool:
        """A match with a single participant slot."""
        return len(self.participants) == 1

    @property
    def competitor_ids(self) -> list[int]:
        return [p.competitor_id for p in self.participants]

    def __repr__(self) -> str:
        return (
            f"<Match(id={self.id}, level='{self.level}', position={self.position}, "
            f"status='{self.status}')>"
        )


class MatchParticipant(Base):
    """A competitor's slot in a match, with the outcome once decided."""
    __tablename__ = "match_participants"

    id: Mapped[int] = mapped_column(primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"))
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id", ondelete="CASCADE"))

    # 1 = first-listed, 2 = second-listed
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    # 'Win', 'Loss', 'Disqualified'
    result: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    match: Mapped["Match"] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("match_id", "slot", name="uq_match_participant_slot"),
        UniqueConstraint("match_id", "competitor_id", name="uq_match_participant_competitor"),
    )

    def __repr__(self) -> str:
        return f"<MatchParticipant(match_id={self.match_id}, slot={self.slot}, competitor_id={self.competitor_id})>"


class MatchJudge(Base):
    """A judge attached to a single match from the category's tatami panel."""
    __tablename__ = "match_judges"

    id: Mapped[int] = mapped_column(primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"))
    judge_id: Mapped[int] = mapped_column(Integer, nullable=False)
    judge_role: Mapped[str] = mapped_column(String(50), default="Judge")
    is_confirmed: Mapped[bool] = mapped_column(Boolean, default=True)

    match: Mapped["Match"] = relationship(back_populates="judges")

    __table_args__ = (
        UniqueConstraint("match_id", "judge_id", name="uq_match_judge"),
    )

    def __repr__(self) -> str:
        return f"<MatchJudge(match_id={self.match_id}, judge_id={self.judge_id})>"


class MatchScore(Base):
    """
    One judge's tally for one participant of a match.

    Points are counted by technique (yuko 1, waza-ari 2, ippon 3) and
    penalties by grade. Totals are derived in scoring/sparring.py.
    """
    __tablename__ = "match_scores"

    id: Mapped[int] = mapped_column(primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"))
    judge_id: Mapped[int] = mapped_column(Integer, nullable=False)
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id", ondelete="CASCADE"))

    # Points
    yuko: Mapped[int] = mapped_column(Integer, default=0)
    waza_ari: Mapped[int] = mapped_column(Integer, default=0)
    ippon: Mapped[int] = mapped_column(Integer, default=0)

    # Penalties
    chukoku: Mapped[int] = mapped_column(Integer, default=0)
    keikoku: Mapped[int] = mapped_column(Integer, default=0)
    hansoku_chui: Mapped[int] = mapped_column(Integer, default=0)
    hansoku: Mapped[int] = mapped_column(Integer, default=0)

    # First submission time decides senshu ties; survives resubmission
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("judge_id", "match_id", "competitor_id", name="uq_match_score"),
        Index("idx_match_scores_match", "match_id"),
    )

    def __repr__(self) -> str:
        return f"<MatchScore(match_id={self.match_id}, judge_id={self.judge_id}, competitor_id={self.competitor_id})>"


# =============================================================================
# Progression Models
# =============================================================================

class LevelGeneration(Base):
    """
    Record of a level created for a category.

    The unique (category, level) constraint is what keeps two concurrent
    advancement triggers from both creating the same level: the second
    insert fails and that trigger becomes a no-op.
    """
    __tablename__ = "level_generations"

    id: Mapped[int] = mapped_column(primary_key=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))
    level: Mapped[str] = mapped_column(String(50), nullable=False)

    # 'draw', 'round', 'progression'
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("category_id", "level", name="uq_level_generation"),
    )

    def __repr__(self) -> str:
        return f"<LevelGeneration(category_id={self.category_id}, level='{self.level}', source='{self.source}')>"
