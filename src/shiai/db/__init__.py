"""
Database module for Shiai.

Provides SQLAlchemy ORM models and session management.

Usage:
    from shiai.db import get_session, Category, Match

    with get_session() as session:
        matches = session.query(Match).filter_by(category_id=1).all()
"""

from shiai.db.models import (
    Base,
    Category,
    Competitor,
    Registration,
    JudgeAssignment,
    Performance,
    PerformanceScore,
    Match,
    MatchParticipant,
    MatchJudge,
    MatchScore,
    LevelGeneration,
)
from shiai.db.session import SessionLocal, create_db_engine, get_engine, get_session

__all__ = [
    # Base
    "Base",
    # Models
    "Category",
    "Competitor",
    "Registration",
    "JudgeAssignment",
    "Performance",
    "PerformanceScore",
    "Match",
    "MatchParticipant",
    "MatchJudge",
    "MatchScore",
    "LevelGeneration",
    # Session
    "get_session",
    "get_engine",
    "create_db_engine",
    "SessionLocal",
]
