from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from scope_engine.domain.models import EventEnvelope, EventRecord
from scope_engine.infra.db import engine
from scope_engine.infra.logging import get_logger

EventHandler = Callable[[EventEnvelope], None]

ENTITY_CREATED = "hierarchy.entity.created"
ENTITY_UPDATED = "hierarchy.entity.updated"
ENTITY_MOVED = "hierarchy.entity.moved"
ENTITY_DELETED = "hierarchy.entity.deleted"
PATHS_REBUILT = "hierarchy.paths.rebuilt"
ASSIGNMENT_CREATED = "assignment.created"
ASSIGNMENT_REVOKED = "assignment.revoked"
ASSIGNMENT_SUPERSEDED = "assignment.superseded"

logger = get_logger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        """Persist ``event`` and notify subscribers.

        When a session is passed the record joins the caller's transaction and
        is committed (or rolled back) together with the mutation it describes.
        """
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            record = EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                tenant_id=event.tenant_id,
                ts=event.ts,
                actor_id=event.actor_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
            session.add(record)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()

        logger.debug("event.published", event_type=event.event_type, event_id=event.event_id)
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def record(
        self,
        session: Session,
        event_type: str,
        tenant_id: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            tenant_id=tenant_id,
            actor_id=actor_id,
            payload=payload,
        )
        self.publish(event, session=session)
        return event


event_bus = EventBus()
