"""Background advancement and the locks that keep level generation single-run."""

from shiai.tasks.locks import (
    advisory_lock_key,
    level_generation_lock,
    level_lock_name,
    advisory_xact_lock,
)

__all__ = [
    "advisory_lock_key",
    "level_generation_lock",
    "level_lock_name",
    "advisory_xact_lock",
]
