"""
Error types raised by the competition engine.

Every failure the engine reports is a CompetitionError subclass so callers
(web handlers, scripts, background jobs) can map them to a response without
knowing which service raised them.
"""

from typing import Any, Optional


class CompetitionError(Exception):
    """Base class for all engine failures."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": type(self).__name__, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CompetitionError):
    """Input breaks a rule: score out of range, ineligible competitors, bad level."""


class AuthorizationError(CompetitionError):
    """Judge is not a confirmed member of the unit's tatami panel."""


class ConflictError(CompetitionError):
    """Requested structure already exists and was not asked to be replaced."""


class NotFoundError(CompetitionError):
    """Category, unit or competitor does not exist."""


class ExternalServiceError(CompetitionError):
    """The advisory seeding assistant failed or returned something unusable."""
