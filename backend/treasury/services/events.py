"""
Fire-and-forget notifications for lifecycle changes.

Routers call ``emit`` after their session block has committed. Subscribers
(websocket fan-out, mailers) are optional; a failing subscriber is logged and
never affects the request that emitted the event.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable


logger = logging.getLogger(__name__)

Event = dict[str, Any]
Subscriber = Callable[[Event], None]

MOVEMENT_CREATED = "movement.created"
MOVEMENT_UPDATED = "movement.updated"
MOVEMENT_DELETED = "movement.deleted"
MOVEMENT_APPROVED = "movement.approved"
MOVEMENT_REJECTED = "movement.rejected"
MOVEMENTS_BULK_APPROVED = "movements.bulk_approved"
MOVEMENTS_BULK_REJECTED = "movements.bulk_rejected"
DRAFTS_FINALIZED = "drafts.finalized"
DRAFTS_IMPORTED = "drafts.imported"

_subscribers: list[Subscriber] = []


def subscribe(subscriber: Subscriber) -> None:
    if subscriber not in _subscribers:
        _subscribers.append(subscriber)


def unsubscribe(subscriber: Subscriber) -> None:
    if subscriber in _subscribers:
        _subscribers.remove(subscriber)


def emit(event_type: str, **data: Any) -> Event:
    event: Event = {
        "type": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.debug("Emitting %s %s", event_type, data)
    for subscriber in list(_subscribers):
        try:
            subscriber(event)
        except Exception:
            logger.exception("Event subscriber %r failed for %s", subscriber, event_type)
    return event


def subscriber_count() -> int:
    return len(_subscribers)
