"""
Tournament event notification.

Events are immutable and addressed to a tournament. The default publisher
is an in-process bus; transports (websocket, SSE) subscribe per tournament.
A failing subscriber is logged and never breaks the operation that
published the event.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TournamentEventType(str, Enum):
    POOLS_UPDATED = "POOLS_UPDATED"
    MATCHES_GENERATED = "MATCHES_GENERATED"
    MATCH_STATUS_UPDATED = "MATCH_STATUS_UPDATED"
    MATCH_FINALIZED = "MATCH_FINALIZED"
    MATCH_UNFINALIZED = "MATCH_UNFINALIZED"
    PLAYOFFS_BRACKET_UPDATED = "PLAYOFFS_BRACKET_UPDATED"
    STANDINGS_UPDATED = "STANDINGS_UPDATED"


@dataclass(frozen=True)
class TournamentEvent:
    tournament_id: int
    type: TournamentEventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[TournamentEvent], None]


class EventPublisher:
    """In-process publish/subscribe keyed by tournament id."""

    def __init__(self) -> None:
        self._subscribers: Dict[int, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, tournament_id: int, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(tournament_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(tournament_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, tournament_id: int, event_type: TournamentEventType, data: Optional[Dict[str, Any]] = None) -> TournamentEvent:
        event = TournamentEvent(tournament_id=tournament_id, type=event_type, data=dict(data or {}))
        with self._lock:
            callbacks = list(self._subscribers.get(tournament_id, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber failed for %s on tournament %s", event_type.value, tournament_id)
        logger.debug("Published %s for tournament %s", event_type.value, tournament_id)
        return event


_publisher = EventPublisher()


def get_event_publisher() -> EventPublisher:
    """FastAPI dependency; tests may override it."""
    return _publisher
