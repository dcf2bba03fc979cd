"""Shared contest-unit status definitions and helpers.

A contest unit is either a forms performance or a sparring match. Both move
through the same statuses, and this module is the single source of truth
for which moves are allowed.
"""

from __future__ import annotations

from shiai.errors import ValidationError

SCHEDULED = "Scheduled"
IN_PROGRESS = "In Progress"
COMPLETED = "Completed"
CANCELLED = "Cancelled"
POSTPONED = "Postponed"

# Individual statuses currently used in the system.
ALL_UNIT_STATUSES: tuple[str, ...] = (
    SCHEDULED,
    IN_PROGRESS,
    COMPLETED,
    CANCELLED,
    POSTPONED,
)

# Canonical status groups.
UNIT_STATUS_GROUPS: dict[str, tuple[str, ...]] = {
    # Units not yet decided.
    "pending": (SCHEDULED, IN_PROGRESS),
    # Units no longer actionable.
    "terminal": (COMPLETED, CANCELLED),
    # Statuses only an outside caller (table official, organizer) sets.
    "externally_set": (CANCELLED, POSTPONED),
    "all": ALL_UNIT_STATUSES,
}

# Allowed moves. Completed and Cancelled are final.
ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    SCHEDULED: (IN_PROGRESS, COMPLETED, CANCELLED, POSTPONED),
    IN_PROGRESS: (COMPLETED, CANCELLED, POSTPONED),
    POSTPONED: (SCHEDULED, IN_PROGRESS, CANCELLED),
    COMPLETED: (),
    CANCELLED: (),
}

# Participant outcomes inside a sparring match.
RESULT_WIN = "Win"
RESULT_LOSS = "Loss"
RESULT_DISQUALIFIED = "Disqualified"
ALL_PARTICIPANT_RESULTS: tuple[str, ...] = (RESULT_WIN, RESULT_LOSS, RESULT_DISQUALIFIED)


def get_status_group(group_name: str) -> tuple[str, ...]:
    """Return a named status group, raising KeyError for unknown names."""
    return UNIT_STATUS_GROUPS[group_name]


def is_terminal(status: str) -> bool:
    return status in UNIT_STATUS_GROUPS["terminal"]


def validate_transition(current: str, new: str) -> None:
    """Raise ValidationError unless ``current -> new`` is an allowed move.

    Re-applying the current status is accepted as a no-op.
    """
    if new not in ALL_UNIT_STATUSES:
        raise ValidationError(f"Unknown status '{new}'", {"status": new})
    if current == new:
        return
    if new not in ALLOWED_TRANSITIONS.get(current, ()):
        raise ValidationError(
            f"Cannot move a unit from '{current}' to '{new}'",
            {"current": current, "requested": new},
        )
