from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from vision_console.domain.models import EventEnvelope, EventRecord

EventHandler = Callable[[EventEnvelope], None]

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def record(self, event: EventEnvelope, session: Session) -> None:
        """Stage the event row in ``session`` so it commits with the caller's writes."""
        session.add(
            EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                client_id=event.client_id,
                ts=event.ts,
                actor_id=event.actor_id,
                payload=event.payload,
            )
        )

    def dispatch(self, event: EventEnvelope) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)
        logger.debug("dispatched %s to %d handler(s)", event.event_type, len(handlers))

    def build(
        self,
        event_type: str,
        client_id: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> EventEnvelope:
        return EventEnvelope(
            event_type=event_type,
            client_id=client_id,
            actor_id=actor_id,
            payload=payload,
        )


event_bus = EventBus()
