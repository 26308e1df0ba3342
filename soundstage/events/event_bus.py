"""
Event Bus for SoundStage.

Synchronous, in-process publish/subscribe channel. Every playback state
transition is announced here.

Delivery rules:
- publish() calls handlers synchronously, in subscription order
- a handler that raises does not stop delivery to the remaining handlers
- handler failures never propagate to the publisher; they are logged and
  (optionally) re-announced as an ERROR event
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from soundstage.errors import HandlerFailure

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types published by the engine."""
    SONG_START = "SONG_START"
    SONG_END = "SONG_END"
    PLAYLIST_START = "PLAYLIST_START"
    PLAYLIST_END = "PLAYLIST_END"
    PLAYLIST_LOOP = "PLAYLIST_LOOP"
    VOLUME_CHANGE = "VOLUME_CHANGE"
    MUTE_CHANGE = "MUTE_CHANGE"
    CROSSFADE_START = "CROSSFADE_START"
    CROSSFADE_END = "CROSSFADE_END"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Event:
    """Transient event delivered to subscribers."""
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], Any]


class EventBus:
    """
    Thread-safe subscriber registry with synchronous delivery.

    Subscriptions are identified by an opaque handler id so the same callable
    may be subscribed more than once (and removed individually).
    """

    def __init__(self, surface_handler_errors: bool = True):
        """
        Initialize the event bus.

        Args:
            surface_handler_errors: Re-publish handler failures as ERROR events
        """
        self._lock = threading.RLock()
        # handler_id -> (event_type, handler), insertion ordered
        self._subscriptions: Dict[str, Tuple[EventType, EventHandler]] = {}
        self._surface_handler_errors = surface_handler_errors

    def subscribe(self, event_type: EventType, handler: EventHandler) -> str:
        """
        Subscribe a handler to an event type.

        Args:
            event_type: EventType (or its string value)
            handler: Callable receiving the Event

        Returns:
            Handler id for unsubscribe()

        Raises:
            ValueError: If event_type is unknown or handler is not callable
        """
        event_type = EventType(event_type)
        if not callable(handler):
            raise ValueError(f"Event handler for {event_type.value} must be callable")

        handler_id = str(uuid.uuid4())
        with self._lock:
            self._subscriptions[handler_id] = (event_type, handler)
        logger.debug(f"[EVENTS] Subscribed {handler_id} to {event_type.value}")
        return handler_id

    def unsubscribe(self, handler_id: str) -> bool:
        """Remove a subscription. Returns False if the id is unknown."""
        with self._lock:
            removed = self._subscriptions.pop(handler_id, None)
        if removed is None:
            return False
        logger.debug(f"[EVENTS] Unsubscribed {handler_id} from {removed[0].value}")
        return True

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        with self._lock:
            if event_type is None:
                return len(self._subscriptions)
            event_type = EventType(event_type)
            return sum(1 for et, _ in self._subscriptions.values() if et is event_type)

    def publish(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Deliver an event to every handler subscribed to its type.

        Args:
            event_type: EventType to publish
            payload: Event data (copied)

        Returns:
            Number of handlers that completed without raising
        """
        event = Event(type=EventType(event_type), payload=dict(payload or {}))

        # Copy handlers so callbacks may (un)subscribe without deadlocking or
        # mutating the list under iteration
        with self._lock:
            handlers: List[Tuple[str, EventHandler]] = [
                (handler_id, handler)
                for handler_id, (et, handler) in self._subscriptions.items()
                if et is event.type
            ]

        delivered = 0
        for handler_id, handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                self._handle_failure(event, handler_id, e)
        return delivered

    def _handle_failure(self, event: Event, handler_id: str, error: Exception) -> None:
        failure = HandlerFailure(
            f"Error in {event.type.value} event handler {handler_id}: {error}",
            event_type=event.type.value,
        )
        logger.warning(f"[EVENTS] {failure}", exc_info=True)

        # An ERROR handler that fails is only logged, never re-published
        if self._surface_handler_errors and event.type is not EventType.ERROR:
            self.publish(EventType.ERROR, {
                "message": str(failure),
                "source": "event_bus",
                "error": failure.code,
                "event_type": event.type.value,
            })

    def publish_error(self, error: Exception, source: str, **extra: Any) -> int:
        """
        Publish an ERROR event describing error.

        Args:
            error: The failure (SoundStageError subclasses supply their code)
            source: Operation or component that failed
            extra: Additional payload fields
        """
        payload = {
            "message": str(error),
            "source": source,
            "error": getattr(error, "code", type(error).__name__),
        }
        payload.update(extra)
        return self.publish(EventType.ERROR, payload)
