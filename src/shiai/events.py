"""
Event publishing port.

The engine announces state changes (a score landed, a unit completed, a
level was created) through an injected publisher. Delivery is fire and
forget: a publisher failure is logged and never undoes the change that
triggered it.

Event names:
- score.changed: A judge score was written for a unit
- unit.completed: A performance or match reached Completed
- level.generated: Bracket progression or a forms round created a level
- draws.generated: A category's opening bracket was (re)drawn
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SCORE_CHANGED = "score.changed"
UNIT_COMPLETED = "unit.completed"
LEVEL_GENERATED = "level.generated"
DRAWS_GENERATED = "draws.generated"


@dataclass
class Event:
    name: str
    payload: dict[str, Any]
    emitted_at: datetime = field(default_factory=datetime.utcnow)


class EventPublisher(Protocol):
    def publish(self, name: str, payload: dict[str, Any]) -> None:
        ...


class NullPublisher:
    """Publisher that drops every event."""

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        return None


class LoggingPublisher:
    """Publisher that writes each event to the log. Default for scripts and the API."""

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        logger.info("Event %s: %s", name, payload)


class RecordingPublisher:
    """Publisher that keeps events in memory, for tests and debugging."""

    def __init__(self):
        self.events: list[Event] = []

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append(Event(name=name, payload=dict(payload)))

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def of(self, name: str) -> list[Event]:
        return [e for e in self.events if e.name == name]


def safe_publish(publisher: EventPublisher, name: str, payload: dict[str, Any]) -> None:
    """Publish without letting a transport failure reach the caller."""
    try:
        publisher.publish(name, payload)
    except Exception as e:
        logger.warning("Failed to publish %s event: %s", name, e)
