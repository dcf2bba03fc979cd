"""Database advisory lock helpers that serialize level generation per category."""

from __future__ import annotations

import hashlib
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)


def advisory_lock_key(name: str) -> int:
    """Return a deterministic signed 64-bit lock key from a lock name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


def level_lock_name(category_id: int, level: str) -> str:
    """Lock name shared by every job advancing a category past ``level``."""
    return f"shiai:level:{category_id}:{level}"


@contextmanager
def advisory_xact_lock(
    engine: Engine,
    key: int,
    *,
    timeout_seconds: float = 0.0,
) -> Generator[bool, None, None]:
    """
    Hold a transaction-scoped PostgreSQL advisory lock.

    The lock lives on a dedicated connection whose transaction stays open for
    the body of the ``with`` block. PostgreSQL drops it when that transaction
    ends, so there is no explicit unlock. With no timeout the lock is tried
    once; otherwise the server waits up to ``lock_timeout``.

    Raises:
        TimeoutError: if another holder keeps the lock past the timeout.
    """
    with engine.begin() as connection:
        if timeout_seconds <= 0:
            acquired = connection.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": key}
            ).scalar()
            if not acquired:
                raise TimeoutError(f"Advisory lock {key} is held elsewhere")
        else:
            connection.execute(
                text("SELECT set_config('lock_timeout', :timeout, true)"),
                {"timeout": f"{int(timeout_seconds * 1000)}ms"},
            )
            try:
                connection.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
            except OperationalError as e:
                raise TimeoutError(
                    f"Advisory lock {key} not acquired within {timeout_seconds}s"
                ) from e

        yield True


@contextmanager
def level_generation_lock(
    engine: Engine,
    category_id: int,
    level: str,
    *,
    timeout_seconds: float = 0.0,
) -> Generator[bool, None, None]:
    """
    Hold the lock for advancing a category past ``level``.

    Jobs advancing past the same level would create the same next level,
    so they run one at a time.

    Only PostgreSQL has advisory locks. On other backends this yields False
    and the unique (category, level) row in level_generations is the only
    guard against a duplicate level.
    """
    if engine.dialect.name != "postgresql":
        yield False
        return

    key = advisory_lock_key(level_lock_name(category_id, level))
    with advisory_xact_lock(engine, key, timeout_seconds=timeout_seconds) as acquired:
        logger.debug("Holding level lock for category %s level '%s'", category_id, level)
        yield acquired
